"""FFmpeg transcoding utilities.

Wraps ffprobe for source inspection and ffmpeg for HLS rendition encoding.
The encoder is treated as a fixed command-line contract.
"""

import json
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Optional

from vodstream.core.config import settings
from vodstream.core.errors import (
    EncodeError,
    InputError,
    TranscodeCancelledError,
    TranscodeTimeoutError,
)
from vodstream.modules.transcoding.ladder import QualityRung

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_HEIGHT = 1080
SEGMENT_PATTERN = "segment_%03d.ts"
PLAYLIST_NAME = "playlist.m3u8"

# How often a running encoder is checked for cancellation and deadline.
POLL_INTERVAL_SECONDS = 0.5

# Diagnostics keep only the end of stderr, where ffmpeg reports the failure.
STDERR_TAIL_CHARS = 2000


@dataclass
class SourceInfo:
    """Probed properties of a source video."""
    width: Optional[int]
    height: int
    duration: Optional[float] = None
    codec: Optional[str] = None


class FFmpegTranscoder:
    """FFmpeg-based HLS rendition encoder."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        segment_duration: Optional[int] = None,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            segment_duration: Target HLS segment duration in seconds
        """
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.segment_duration = segment_duration or settings.HLS_SEGMENT_DURATION

    def probe(self, source: str) -> SourceInfo:
        """Get source video dimensions using ffprobe.

        Args:
            source: Path to the source video

        Returns:
            SourceInfo for the first video stream

        Raises:
            InputError: If the source cannot be probed or has no video stream
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            source,
        ]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=True,
                timeout=60,
            )
            info = json.loads(result.stdout or "{}")
        except FileNotFoundError as e:
            raise InputError(f"ffprobe not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise InputError(f"Probing {source} timed out") from e
        except subprocess.CalledProcessError as e:
            raise InputError(f"Could not probe {source}: {(e.stderr or '').strip()}") from e
        except json.JSONDecodeError as e:
            raise InputError(f"Unreadable ffprobe output for {source}") from e

        stream = next(
            (s for s in info.get("streams", []) if s.get("codec_type") == "video"),
            None,
        )
        if stream is None:
            raise InputError(f"No video stream found in {source}")

        duration = info.get("format", {}).get("duration")
        return SourceInfo(
            width=stream.get("width"),
            height=stream.get("height") or DEFAULT_SOURCE_HEIGHT,
            duration=float(duration) if duration else None,
            codec=stream.get("codec_name"),
        )

    def build_encode_command(
        self, source: str, rung: QualityRung, output_dir: str
    ) -> list[str]:
        """Build the FFmpeg command for one HLS rendition.

        Args:
            source: Path to the source video
            rung: Ladder rung to encode
            output_dir: Job output directory; the rendition lands in
                ``<output_dir>/<rung.name>/``

        Returns:
            FFmpeg command as list of arguments
        """
        rung_dir = os.path.join(output_dir, rung.name)
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", source,
            # Video settings
            "-c:v", "libx264",
            "-b:v", f"{rung.video_bitrate}k",
            "-maxrate", f"{rung.max_bitrate}k",
            "-bufsize", f"{rung.buffer_size}k",
            "-vf", f"scale={rung.width}:{rung.height}",
            "-preset", "fast",
            "-profile:v", "main",
            "-level", "4.0",
            # Audio settings
            "-c:a", "aac",
            "-b:a", f"{rung.audio_bitrate}k",
            # HLS output
            "-f", "hls",
            "-hls_time", str(self.segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_list_size", "0",
            "-hls_segment_filename", os.path.join(rung_dir, SEGMENT_PATTERN),
            os.path.join(rung_dir, PLAYLIST_NAME),
        ]

    def encode(
        self,
        cmd: list[str],
        rung_name: str,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Run an encode command to completion.

        Args:
            cmd: Command built by build_encode_command
            rung_name: Rung being encoded, for error reporting
            deadline: ``time.monotonic()`` value after which the encoder is killed
            cancel_event: Event that terminates the encoder when set

        Raises:
            EncodeError: If the encoder exits non-zero or cannot be started
            TranscodeTimeoutError: If the deadline passes
            TranscodeCancelledError: If cancel_event is set
        """
        logger.debug("Running encoder", extra={"rung": rung_name, "command": cmd})
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                # Source metadata echoed to stderr is often not UTF-8.
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise EncodeError(rung_name, f"could not start encoder: {e}") from e

        while True:
            try:
                _, stderr = process.communicate(timeout=POLL_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    self._kill(process)
                    raise TranscodeCancelledError(rung_name, "job cancelled")
                if deadline is not None and time.monotonic() >= deadline:
                    self._kill(process)
                    raise TranscodeTimeoutError(
                        rung_name, "wall-clock budget exceeded"
                    )

        if process.returncode != 0:
            diagnostic = (stderr or "").strip()[-STDERR_TAIL_CHARS:]
            raise EncodeError(
                rung_name,
                diagnostic or f"encoder exited with code {process.returncode}",
            )

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        process.kill()
        process.communicate()
