"""Property-based tests for quality ladder selection.

**Feature: vodstream, Property 1: Ladder Selection**
"""

from hypothesis import given, settings, strategies as st

from vodstream.modules.transcoding.ladder import (
    LADDER,
    MIN_AUDIO_BITRATE,
    MIN_VIDEO_BITRATE,
    QualityRung,
    select_rungs,
    synthesize_rung,
)


source_height_strategy = st.integers(min_value=1, max_value=4320)


class TestLadderSelection:
    """Property tests for rung selection against source height."""

    @given(source_height=st.integers(min_value=360, max_value=4320))
    @settings(max_examples=100)
    def test_selected_rungs_are_exactly_those_not_taller_than_source(self, source_height: int) -> None:
        """**Feature: vodstream, Property 1: Ladder Selection**

        For any source height H >= 360, the selected set SHALL equal
        {rung | rung.height <= H}.
        """
        selected = select_rungs(source_height)
        expected = [rung for rung in LADDER if rung.height <= source_height]

        assert selected == expected
        assert len(selected) >= 1

    @given(source_height=source_height_strategy)
    @settings(max_examples=100)
    def test_selected_rungs_descend_by_height(self, source_height: int) -> None:
        """**Feature: vodstream, Property 1: Ladder Selection**

        Selected rungs SHALL be ordered from tallest to shortest.
        """
        heights = [rung.height for rung in select_rungs(source_height)]

        assert heights == sorted(heights, reverse=True)

    @given(source_height=source_height_strategy)
    @settings(max_examples=100)
    def test_selection_never_empty(self, source_height: int) -> None:
        """**Feature: vodstream, Property 1: Ladder Selection**

        For any source height, at least one rung SHALL be selected.
        """
        assert len(select_rungs(source_height)) >= 1

    @given(source_height=st.integers(min_value=2, max_value=359))
    @settings(max_examples=100)
    def test_short_source_gets_single_synthesized_rung(self, source_height: int) -> None:
        """**Feature: vodstream, Property 1: Ladder Selection**

        A source shorter than every rung SHALL get one rung that is not
        taller than the source and has even dimensions.
        """
        selected = select_rungs(source_height)

        assert len(selected) == 1
        rung = selected[0]
        assert rung not in LADDER
        assert rung.height <= source_height
        assert rung.height % 2 == 0
        assert rung.width % 2 == 0
        assert rung.video_bitrate >= MIN_VIDEO_BITRATE
        assert rung.audio_bitrate >= MIN_AUDIO_BITRATE


class TestRungDerivedValues:
    """Tests for bitrate derivations on ladder rungs."""

    def test_720p_bandwidth_is_exact(self) -> None:
        rung = next(r for r in LADDER if r.name == "720p")

        assert rung.bandwidth == 2_928_000

    def test_max_bitrate_and_buffer_size(self) -> None:
        rung = QualityRung("720p", 1280, 720, 2800, 128)

        assert rung.max_bitrate == 2996
        assert rung.buffer_size == 4494

    def test_1080p_derived_values(self) -> None:
        rung = LADDER[0]

        assert rung.max_bitrate == 5350
        assert rung.buffer_size == 8025
        assert rung.bandwidth == 5_192_000
        assert rung.resolution == "1920x1080"
        assert rung.playlist_path == "1080p/playlist.m3u8"

    def test_ladder_is_fixed(self) -> None:
        assert [(r.name, r.width, r.height, r.video_bitrate, r.audio_bitrate) for r in LADDER] == [
            ("1080p", 1920, 1080, 5000, 192),
            ("720p", 1280, 720, 2800, 128),
            ("480p", 854, 480, 1400, 128),
            ("360p", 640, 360, 800, 96),
        ]

    def test_synthesized_rung_keeps_aspect_ratio(self) -> None:
        rung = synthesize_rung(240, 320)

        assert (rung.width, rung.height) == (320, 240)
        assert rung.name == "240p"
        assert rung.video_bitrate == round(800 * 240 / 360)

    def test_synthesized_rung_defaults_to_16_by_9(self) -> None:
        rung = synthesize_rung(180)

        assert (rung.width, rung.height) == (320, 180)

    def test_tiny_source_uses_bitrate_floors(self) -> None:
        rung = synthesize_rung(20, 36)

        assert rung.video_bitrate == MIN_VIDEO_BITRATE
        assert rung.audio_bitrate == MIN_AUDIO_BITRATE
