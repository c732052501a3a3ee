"""Tests for the ffmpeg wrapper.

**Feature: vodstream, Property 3: Encoder Command Contract**
"""

import json
import os
import subprocess
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import given, settings, strategies as st

from vodstream.core.errors import (
    EncodeError,
    InputError,
    TranscodeCancelledError,
    TranscodeTimeoutError,
)
from vodstream.modules.transcoding.ffmpeg import DEFAULT_SOURCE_HEIGHT, FFmpegTranscoder
from vodstream.modules.transcoding.ladder import LADDER, QualityRung


rung_strategy = st.sampled_from(list(LADDER))


def flag_value(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class TestBuildEncodeCommand:
    """Property tests for the encoder flag contract."""

    @given(rung=rung_strategy)
    @settings(max_examples=100)
    def test_command_carries_fixed_flags(self, rung: QualityRung) -> None:
        """**Feature: vodstream, Property 3: Encoder Command Contract**

        For any rung, the command SHALL scale to the rung and pass its
        bitrates, max rate and buffer size with a 6 second VOD target.
        """
        transcoder = FFmpegTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", segment_duration=6)

        cmd = transcoder.build_encode_command("/in/source.mp4", rung, "/out/job")

        assert cmd[0] == "ffmpeg"
        assert flag_value(cmd, "-i") == "/in/source.mp4"
        assert flag_value(cmd, "-vf") == f"scale={rung.width}:{rung.height}"
        assert flag_value(cmd, "-b:v") == f"{rung.video_bitrate}k"
        assert flag_value(cmd, "-b:a") == f"{rung.audio_bitrate}k"
        assert flag_value(cmd, "-maxrate") == f"{rung.max_bitrate}k"
        assert flag_value(cmd, "-bufsize") == f"{rung.buffer_size}k"
        assert flag_value(cmd, "-hls_time") == "6"
        assert flag_value(cmd, "-hls_playlist_type") == "vod"
        assert flag_value(cmd, "-f") == "hls"
        assert flag_value(cmd, "-hls_segment_filename") == os.path.join(
            "/out/job", rung.name, "segment_%03d.ts"
        )
        assert cmd[-1] == os.path.join("/out/job", rung.name, "playlist.m3u8")

    def test_720p_rates(self) -> None:
        transcoder = FFmpegTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", segment_duration=6)
        rung = next(r for r in LADDER if r.name == "720p")

        cmd = transcoder.build_encode_command("in.mp4", rung, "out")

        assert flag_value(cmd, "-maxrate") == "2996k"
        assert flag_value(cmd, "-bufsize") == "4494k"

    def test_encoder_only_logs_errors(self) -> None:
        transcoder = FFmpegTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", segment_duration=6)

        cmd = transcoder.build_encode_command("in.mp4", LADDER[0], "out")

        assert flag_value(cmd, "-loglevel") == "error"
        assert cmd.index("-loglevel") < cmd.index("-i")


class TestProbe:
    """Tests for ffprobe parsing."""

    def _completed(self, payload: dict) -> MagicMock:
        result = MagicMock()
        result.stdout = json.dumps(payload)
        return result

    def test_reads_first_video_stream(self) -> None:
        payload = {
            "streams": [
                {"codec_type": "audio", "codec_name": "aac"},
                {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
            ],
            "format": {"duration": "12.5"},
        }
        with patch("subprocess.run", return_value=self._completed(payload)):
            info = FFmpegTranscoder().probe("movie.mp4")

        assert (info.width, info.height) == (1280, 720)
        assert info.duration == 12.5
        assert info.codec == "h264"

    def test_missing_height_defaults_to_1080(self) -> None:
        payload = {"streams": [{"codec_type": "video"}], "format": {}}
        with patch("subprocess.run", return_value=self._completed(payload)):
            info = FFmpegTranscoder().probe("movie.mp4")

        assert info.height == DEFAULT_SOURCE_HEIGHT
        assert info.duration is None

    def test_no_video_stream_is_input_error(self) -> None:
        payload = {"streams": [{"codec_type": "audio"}], "format": {}}
        with patch("subprocess.run", return_value=self._completed(payload)):
            with pytest.raises(InputError):
                FFmpegTranscoder().probe("song.mp3")

    def test_probe_failure_is_input_error(self) -> None:
        error = subprocess.CalledProcessError(1, ["ffprobe"], stderr="Invalid data found")
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(InputError) as exc_info:
                FFmpegTranscoder().probe("broken.mp4")

        assert "Invalid data found" in exc_info.value.message

    def test_latin1_metadata_in_stream_info(self, tmp_path) -> None:
        payload = b'{"streams": [{"codec_type": "video", "width": 640, "height": 360, "tags": {"title": "\xe9t\xe9"}}], "format": {}}'
        script = tmp_path / "fake-stream-info"
        script.write_text(
            f"#!{sys.executable}\n"
            "import sys\n"
            f"sys.stdout.buffer.write({payload!r})\n"
            "sys.stderr.buffer.write(b'\\xff\\xfe')\n"
        )
        script.chmod(0o755)

        info = FFmpegTranscoder(ffprobe_path=str(script)).probe("movie.mp4")

        assert (info.width, info.height) == (640, 360)

    def test_latin1_stream_info_error_is_input_error(self, tmp_path) -> None:
        script = tmp_path / "fake-stream-info"
        script.write_text(
            f"#!{sys.executable}\n"
            "import sys\n"
            "sys.stderr.buffer.write(b'movie.mp4: Invalid data found \\xe9\\xff')\n"
            "sys.exit(1)\n"
        )
        script.chmod(0o755)

        with pytest.raises(InputError) as exc_info:
            FFmpegTranscoder(ffprobe_path=str(script)).probe("movie.mp4")

        assert "Invalid data found" in exc_info.value.message


class TestEncode:
    """Tests for running the encoder process."""

    def test_nonzero_exit_raises_with_diagnostic(self) -> None:
        cmd = [sys.executable, "-c", "import sys; sys.stderr.write('Conversion failed!'); sys.exit(1)"]

        with pytest.raises(EncodeError) as exc_info:
            FFmpegTranscoder().encode(cmd, "720p")

        assert exc_info.value.rung == "720p"
        assert "Conversion failed!" in exc_info.value.diagnostic

    def test_successful_exit(self) -> None:
        FFmpegTranscoder().encode([sys.executable, "-c", "pass"], "720p")

    def test_non_utf8_stderr_is_reported_not_crashed(self) -> None:
        cmd = [
            sys.executable,
            "-c",
            "import sys; sys.stderr.buffer.write(b'title: \\xe9t\\xe9 \\xff\\nConversion failed!\\n'); sys.exit(1)",
        ]

        with pytest.raises(EncodeError) as exc_info:
            FFmpegTranscoder().encode(cmd, "720p")

        assert "title" in exc_info.value.diagnostic
        assert "Conversion failed!" in exc_info.value.diagnostic

    def test_non_utf8_stderr_on_success(self) -> None:
        cmd = [sys.executable, "-c", "import sys; sys.stderr.buffer.write(b'encoder: \\xff\\xfe\\n')"]

        FFmpegTranscoder().encode(cmd, "480p")

    def test_missing_binary_raises_encode_error(self) -> None:
        with pytest.raises(EncodeError):
            FFmpegTranscoder().encode(["/nonexistent/ffmpeg-binary"], "360p")

    def test_deadline_kills_encoder(self) -> None:
        cmd = [sys.executable, "-c", "import time; time.sleep(30)"]
        started = time.monotonic()

        with pytest.raises(TranscodeTimeoutError):
            FFmpegTranscoder().encode(cmd, "1080p", deadline=time.monotonic() + 0.2)

        assert time.monotonic() - started < 10

    def test_cancel_event_kills_encoder(self) -> None:
        cmd = [sys.executable, "-c", "import time; time.sleep(30)"]
        cancel = threading.Event()
        threading.Timer(0.2, cancel.set).start()

        with pytest.raises(TranscodeCancelledError):
            FFmpegTranscoder().encode(cmd, "480p", cancel_event=cancel)
