"""Tests for structured logging context and request metrics labels."""

import json
import logging
import sys

from hypothesis import given, settings, strategies as st

from vodstream.core.logging import (
    ContextFilter,
    JsonFormatter,
    bind_context,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from vodstream.core.middleware import endpoint_label


def format_record(message: str, exc_info=None, **extra) -> dict:
    record = logging.LogRecord("vodstream.test", logging.ERROR, __file__, 1, message, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    ContextFilter().filter(record)
    return json.loads(JsonFormatter().format(record))


class TestLogContext:
    """Tests for bound context fields."""

    def test_bound_fields_appear_on_records(self) -> None:
        clear_correlation_id()
        with bind_context(correlation_id="req-1", video_id="abc"):
            entry = format_record("Processing started")

        assert entry["correlation_id"] == "req-1"
        assert entry["video_id"] == "abc"
        assert entry["msg"] == "Processing started"

    def test_context_is_restored_after_block(self) -> None:
        set_correlation_id("outer")
        with bind_context(correlation_id="inner", session_id="s1"):
            assert get_correlation_id() == "inner"

        entry = format_record("after")
        assert entry["correlation_id"] == "outer"
        assert "session_id" not in entry
        clear_correlation_id()

    def test_extra_fields_and_exception(self) -> None:
        try:
            raise ValueError("bad rung")
        except ValueError:
            entry = format_record("Transcode failed", exc_info=sys.exc_info(), asset_id="abc")

        assert entry["extra"] == {"asset_id": "abc"}
        assert entry["error"]["type"] == "ValueError"
        assert entry["error"]["message"] == "bad rung"
        assert any("bad rung" in line for line in entry["error"]["stack"])


class TestEndpointLabel:
    """Tests for metrics path normalization."""

    @given(video_id=st.from_regex(r"[A-Za-z0-9-]{1,36}", fullmatch=True))
    @settings(max_examples=50)
    def test_status_paths_collapse(self, video_id: str) -> None:
        assert endpoint_label(f"/api/video/{video_id}/status") == "/api/video/{video_id}/status"

    def test_stream_paths_collapse(self) -> None:
        assert endpoint_label("/streams/abc/720p/segment_001.ts") == "/streams/{key}"

    def test_fixed_routes_unchanged(self) -> None:
        assert endpoint_label("/api/upload/chunk") == "/api/upload/chunk"
        assert endpoint_label("/api/hls-proxy") == "/api/hls-proxy"
