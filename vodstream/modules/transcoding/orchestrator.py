"""Transcode orchestration: quality ladder to HLS renditions plus master playlist.

A job encodes every applicable rung sequentially into a private staging
directory. The staging directory is moved into place only after every rung
and the master playlist have been written, so a failed, timed-out or
cancelled job never leaves partial output behind.
"""

import logging
import os
import shutil
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from vodstream.core.config import settings
from vodstream.core.errors import (
    ConflictError,
    EncodeError,
    TranscodeCancelledError,
    TranscodeTimeoutError,
)
from vodstream.core.logging import log_error, log_info
from vodstream.core.metrics import (
    TRANSCODE_JOBS_IN_PROGRESS,
    TRANSCODE_JOBS_TOTAL,
    TRANSCODE_RUNG_DURATION_SECONDS,
)
from vodstream.modules.relay.playlist import parse_playlist, segment_uris, target_duration
from vodstream.modules.transcoding.ffmpeg import PLAYLIST_NAME, FFmpegTranscoder
from vodstream.modules.transcoding.ladder import QualityRung, select_rungs

logger = logging.getLogger(__name__)

MASTER_PLAYLIST_NAME = "master.m3u8"
STAGING_DIR_NAME = ".staging"


@dataclass(frozen=True)
class RenditionPlaylist:
    """An encoded rendition and the segments its playlist lists."""
    rung: QualityRung
    target_duration: int
    segments: tuple[str, ...]

    @property
    def path(self) -> str:
        return self.rung.playlist_path


@dataclass
class TranscodeResult:
    """Result of a completed transcode job."""
    asset_id: str
    output_dir: str
    renditions: list[RenditionPlaylist] = field(default_factory=list)
    master_playlist_path: str = MASTER_PLAYLIST_NAME
    duration_seconds: float = 0.0


def render_master_playlist(renditions: list[RenditionPlaylist]) -> str:
    """Render the master playlist text for a set of renditions.

    Args:
        renditions: Encoded renditions, highest rung first

    Returns:
        Master playlist text
    """
    if not renditions:
        raise ValueError("A master playlist needs at least one rendition")

    text = "#EXTM3U\n#EXT-X-VERSION:3\n\n"
    for rendition in renditions:
        rung = rendition.rung
        text += f"#EXT-X-STREAM-INF:BANDWIDTH={rung.bandwidth},RESOLUTION={rung.resolution}\n"
        text += f"{rendition.path}\n\n"
    return text


def read_rendition_playlist(path: str, rung: QualityRung, default_duration: int) -> RenditionPlaylist:
    """Parse an encoded rendition playlist from disk."""
    lines = parse_playlist(Path(path).read_text(encoding="utf-8"))
    return RenditionPlaylist(
        rung=rung,
        target_duration=target_duration(lines) or default_duration,
        segments=tuple(segment_uris(lines)),
    )


class TranscodeOrchestrator:
    """Runs ABR transcode jobs.

    At most one job runs per asset at a time; jobs for distinct assets run
    concurrently on separate threads. Jobs are never retried here.
    """

    def __init__(
        self,
        transcoder: Optional[FFmpegTranscoder] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.transcoder = transcoder or FFmpegTranscoder()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.TRANSCODE_TIMEOUT_SECONDS
        )
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def _claim(self, asset_id: str) -> None:
        with self._lock:
            if asset_id in self._active:
                raise ConflictError(f"A transcode job is already running for {asset_id}")
            self._active.add(asset_id)

    def _release(self, asset_id: str) -> None:
        with self._lock:
            self._active.discard(asset_id)

    def is_running(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self._active

    def run(
        self,
        source: str,
        output_dir: str,
        *,
        asset_id: Optional[str] = None,
        source_height: Optional[int] = None,
        source_width: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscodeResult:
        """Transcode a source into an HLS ladder under ``output_dir``.

        Args:
            source: Path to the source video
            output_dir: Final output directory; replaced on success
            asset_id: Asset identifier, defaults to the output directory name
            source_height: Source height; probed when not given
            source_width: Source width, used only for the fallback rung
            cancel_event: Event that cancels the job when set

        Returns:
            TranscodeResult describing the encoded renditions

        Raises:
            ConflictError: If a job for the same asset is already running
            InputError: If the source cannot be probed
            EncodeError: If any rung fails; nothing is written to output_dir
        """
        asset_id = asset_id or os.path.basename(os.path.normpath(output_dir))
        self._claim(asset_id)
        started = time.monotonic()
        deadline = started + self.timeout_seconds if self.timeout_seconds else None
        staging_dir = os.path.join(
            os.path.dirname(os.path.abspath(output_dir)),
            STAGING_DIR_NAME,
            f"{asset_id}-{uuid.uuid4().hex}",
        )

        TRANSCODE_JOBS_IN_PROGRESS.inc()
        try:
            if source_height is None:
                info = self.transcoder.probe(source)
                source_height, source_width = info.height, info.width
            rungs = select_rungs(source_height, source_width)

            log_info(
                logger,
                "Transcode started",
                asset_id=asset_id,
                source_height=source_height,
                rungs=[r.name for r in rungs],
            )

            os.makedirs(staging_dir)
            renditions = []
            for rung in rungs:
                renditions.append(
                    self._encode_rung(source, rung, staging_dir, deadline, cancel_event)
                )

            master_path = os.path.join(staging_dir, MASTER_PLAYLIST_NAME)
            Path(master_path).write_text(render_master_playlist(renditions), encoding="utf-8")

            self._publish(staging_dir, output_dir)
        except TranscodeTimeoutError:
            TRANSCODE_JOBS_TOTAL.labels(status="timeout").inc()
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        except TranscodeCancelledError:
            TRANSCODE_JOBS_TOTAL.labels(status="cancelled").inc()
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        except Exception as e:
            TRANSCODE_JOBS_TOTAL.labels(status="failed").inc()
            shutil.rmtree(staging_dir, ignore_errors=True)
            log_error(logger, "Transcode failed", e, asset_id=asset_id)
            raise
        finally:
            TRANSCODE_JOBS_IN_PROGRESS.dec()
            self._release(asset_id)

        TRANSCODE_JOBS_TOTAL.labels(status="completed").inc()
        result = TranscodeResult(
            asset_id=asset_id,
            output_dir=output_dir,
            renditions=renditions,
            duration_seconds=time.monotonic() - started,
        )
        log_info(
            logger,
            "Transcode completed",
            asset_id=asset_id,
            renditions=[r.rung.name for r in renditions],
            duration_seconds=round(result.duration_seconds, 2),
        )
        return result

    def _encode_rung(
        self,
        source: str,
        rung: QualityRung,
        staging_dir: str,
        deadline: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> RenditionPlaylist:
        if cancel_event is not None and cancel_event.is_set():
            raise TranscodeCancelledError(rung.name, "job cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise TranscodeTimeoutError(rung.name, "wall-clock budget exceeded")

        rung_dir = os.path.join(staging_dir, rung.name)
        os.makedirs(rung_dir, exist_ok=True)
        cmd = self.transcoder.build_encode_command(source, rung, staging_dir)

        rung_started = time.monotonic()
        self.transcoder.encode(cmd, rung.name, deadline=deadline, cancel_event=cancel_event)
        TRANSCODE_RUNG_DURATION_SECONDS.labels(rung=rung.name).observe(
            time.monotonic() - rung_started
        )

        playlist_path = os.path.join(rung_dir, PLAYLIST_NAME)
        if not os.path.exists(playlist_path):
            raise EncodeError(rung.name, "encoder produced no playlist")
        return read_rendition_playlist(
            playlist_path, rung, self.transcoder.segment_duration
        )

    @staticmethod
    def _publish(staging_dir: str, output_dir: str) -> None:
        """Move the staging directory into place, replacing earlier output."""
        os.makedirs(os.path.dirname(os.path.abspath(output_dir)), exist_ok=True)
        previous = None
        if os.path.exists(output_dir):
            previous = f"{staging_dir}.old"
            os.replace(output_dir, previous)
        os.replace(staging_dir, output_dir)
        if previous:
            shutil.rmtree(previous, ignore_errors=True)


_orchestrator: Optional[TranscodeOrchestrator] = None


def get_orchestrator() -> TranscodeOrchestrator:
    """Get the process-wide orchestrator, which owns the per-asset job guard."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TranscodeOrchestrator()
    return _orchestrator
