"""Adaptive Bitrate (ABR) quality ladder.

The ladder is fixed and ordered from the highest rung to the lowest. Only
rungs no taller than the source are encoded, so sources are never upscaled.
"""

from dataclasses import dataclass
from typing import Optional

# Synthesized rungs never go below these bitrates (kbps).
MIN_VIDEO_BITRATE = 200
MIN_AUDIO_BITRATE = 64


@dataclass(frozen=True)
class QualityRung:
    """A single rendition in the ABR ladder.

    Bitrates are in kbps, as passed to the encoder.
    """
    name: str
    width: int
    height: int
    video_bitrate: int
    audio_bitrate: int

    @property
    def max_bitrate(self) -> int:
        return round(self.video_bitrate * 1.07)

    @property
    def buffer_size(self) -> int:
        return round(self.max_bitrate * 1.5)

    @property
    def bandwidth(self) -> int:
        """Peak bandwidth in bits per second, as advertised in the master playlist."""
        return (self.video_bitrate + self.audio_bitrate) * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def playlist_path(self) -> str:
        """Playlist path relative to the master playlist."""
        return f"{self.name}/playlist.m3u8"


LADDER: tuple[QualityRung, ...] = (
    QualityRung("1080p", 1920, 1080, 5000, 192),
    QualityRung("720p", 1280, 720, 2800, 128),
    QualityRung("480p", 854, 480, 1400, 128),
    QualityRung("360p", 640, 360, 800, 96),
)


def _even(value: float) -> int:
    """Round down to an even integer, at least 2 (libx264 requires even sizes)."""
    return max(2, int(value) // 2 * 2)


def synthesize_rung(source_height: int, source_width: Optional[int] = None) -> QualityRung:
    """Build a single rung at the source resolution.

    Used when the source is shorter than every ladder rung. Bitrates scale
    linearly by height from the lowest ladder rung.

    Args:
        source_height: Probed source height in pixels
        source_width: Probed source width, or None to assume 16:9

    Returns:
        QualityRung named after the even-rounded height, never taller
        than the source (except the 2 pixel minimum)
    """
    base = LADDER[-1]
    height = _even(source_height)
    if source_width:
        width = _even(source_width * height / source_height)
    else:
        width = _even(height * 16 / 9)

    scale = source_height / base.height
    return QualityRung(
        name=f"{height}p",
        width=width,
        height=height,
        video_bitrate=max(MIN_VIDEO_BITRATE, round(base.video_bitrate * scale)),
        audio_bitrate=max(MIN_AUDIO_BITRATE, round(base.audio_bitrate * scale)),
    )


def select_rungs(source_height: int, source_width: Optional[int] = None) -> list[QualityRung]:
    """Get the rungs to encode for a source, highest first.

    Args:
        source_height: Probed source height in pixels
        source_width: Probed source width, used only for the fallback rung

    Returns:
        Non-empty list of rungs with height <= source_height, in descending
        height order, or a single synthesized rung when none qualifies.
    """
    if source_height < 1:
        raise ValueError(f"Invalid source height: {source_height}")

    rungs = [rung for rung in LADDER if rung.height <= source_height]
    if not rungs:
        rungs = [synthesize_rung(source_height, source_width)]
    return rungs
