"""
Break Detector Tests
====================
Row classification and the four-state break detection pass.
"""

from __future__ import annotations

import random

import pytest

from wordlist.break_detector import BreakDetector, DetectorState, PixelBuffer
from wordlist.config import DEFAULT_OVERRIDES, ExtractorConfig

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


def make_buffer(pattern: str, width: int = 2, channels: int = 3) -> PixelBuffer:
    """Build a buffer from a row pattern: 'w' = white row, 'b' = black row."""
    rows = []
    for ch in pattern:
        pixel = WHITE if ch == "w" else BLACK
        pixel = pixel[:channels] + (255,) * max(0, channels - 3)
        rows.append(bytes(pixel[:channels]) * width)
    return PixelBuffer(
        samples=b"".join(rows),
        width=width,
        height=len(pattern),
        channels=channels,
    )


def pairs(ranges) -> list[tuple[int, int]]:
    return [r.as_pair() for r in ranges]


# ═══════════════════════════════════════════════════════════════════════════════
# PIXEL BUFFER / ROW TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPixelBuffer:

    def test_rejects_short_buffer(self):
        with pytest.raises(ValueError):
            PixelBuffer(samples=b"\x00" * 5, width=2, height=1, channels=3)

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            PixelBuffer(samples=b"", width=1, height=1, channels=0)

    def test_row_slicing(self):
        buf = make_buffer("wb")
        assert buf.row(0) == bytes(WHITE) * 2
        assert buf.row(1) == bytes(BLACK) * 2


class TestRowIsEmpty:

    def test_white_grey_red(self):
        samples = bytes(WHITE) + bytes((100, 100, 100)) + bytes((255, 0, 0))
        buf = PixelBuffer(samples=samples, width=1, height=3, channels=3)
        detector = BreakDetector()

        assert detector.row_is_empty(buf, 0) is True
        assert detector.row_is_empty(buf, 1) is False
        assert detector.row_is_empty(buf, 2) is False

    def test_cutoff_tolerates_antialiasing(self):
        samples = bytes((245, 250, 241)) + bytes((240, 240, 239))
        buf = PixelBuffer(samples=samples, width=1, height=2, channels=3)
        detector = BreakDetector(white_cutoff=240)

        assert detector.row_is_empty(buf, 0) is True
        assert detector.row_is_empty(buf, 1) is False

    def test_single_dark_pixel_makes_row_non_empty(self):
        samples = bytes(WHITE) * 9 + bytes((0, 255, 255))
        buf = PixelBuffer(samples=samples, width=10, height=1, channels=3)
        assert BreakDetector().row_is_empty(buf, 0) is False

    def test_channels_beyond_three_are_ignored(self):
        # RGBA with fully transparent alpha still reads as white
        samples = bytes((255, 255, 255, 0)) * 4
        buf = PixelBuffer(samples=samples, width=4, height=1, channels=4)
        assert BreakDetector().row_is_empty(buf, 0) is True

    def test_grayscale_buffer(self):
        buf = PixelBuffer(samples=bytes((255, 255, 10, 255)), width=2, height=2, channels=1)
        detector = BreakDetector()
        assert detector.row_is_empty(buf, 0) is True
        assert detector.row_is_empty(buf, 1) is False

    def test_zero_width_row_is_empty(self):
        buf = PixelBuffer(samples=b"", width=0, height=1, channels=3)
        assert BreakDetector().row_is_empty(buf, 0) is True


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDetect:

    def test_white_black_white_threshold_zero(self):
        # Row 2 opens a gap but the buffer ends before it can close, so
        # the trailing flush yields one range from row 0.
        detector = BreakDetector(threshold=0)
        assert pairs(detector.detect(make_buffer("wbw"))) == [(0, 3)]

    def test_all_white_yields_nothing(self):
        assert BreakDetector(threshold=0).detect(make_buffer("wwwww")) == []

    def test_empty_buffer(self):
        assert BreakDetector().detect(make_buffer("")) == []

    def test_all_content_yields_single_range(self):
        assert pairs(BreakDetector().detect(make_buffer("bbbb"))) == [(0, 4)]

    def test_gap_longer_than_threshold_closes_block(self):
        detector = BreakDetector(threshold=2)
        # gap starts at row 2 and closes at row 5 (5 > 2 + 2)
        ranges = detector.detect(make_buffer("bbwwwwbb"))
        assert pairs(ranges) == [(0, 5), (5, 8)]

    def test_gap_within_threshold_does_not_close(self):
        detector = BreakDetector(threshold=2)
        assert pairs(detector.detect(make_buffer("bwwb"))) == [(0, 4)]

    def test_closed_block_followed_by_whitespace_only(self):
        detector = BreakDetector(threshold=1)
        # closes at row 3, stays in TRAIL to the end: no trailing flush
        assert pairs(detector.detect(make_buffer("bwwwwww"))) == [(0, 3)]

    def test_multiple_blocks(self):
        detector = BreakDetector(threshold=1)
        ranges = detector.detect(make_buffer("wbbwwwbwwwbb"))
        assert pairs(ranges) == [(0, 5), (5, 9), (9, 12)]

    def test_ranges_are_ordered_and_disjoint(self):
        rng = random.Random(1234)
        pattern = "".join(rng.choice("wwwb") for _ in range(500))
        for threshold in (0, 1, 3, 8):
            ranges = BreakDetector(threshold=threshold).detect(make_buffer(pattern))
            for prev, cur in zip(ranges, ranges[1:]):
                assert prev.start < prev.end <= cur.start
            if ranges:
                assert ranges[-1].end <= len(pattern)


class TestOverrides:

    def test_override_forces_closure_below_threshold(self):
        plain = BreakDetector(threshold=10)
        forced = BreakDetector(threshold=10, overrides={2})

        assert pairs(plain.detect(make_buffer("bbwbb"))) == [(0, 5)]
        assert pairs(forced.detect(make_buffer("bbwbb"))) == [(0, 2), (2, 5)]

    def test_override_inside_gap_closes_immediately(self):
        detector = BreakDetector(threshold=10, overrides={2})
        ranges = detector.detect(make_buffer("bwwwb"))
        assert pairs(ranges) == [(0, 2), (2, 5)]

    def test_override_on_content_row_reverts_to_look(self):
        plain = BreakDetector(threshold=10)
        forced = BreakDetector(threshold=10, overrides={1})
        buffer = make_buffer("bbbwb")
        assert pairs(forced.detect(buffer)) == pairs(plain.detect(buffer))

    def test_override_takes_precedence_in_trail(self):
        # Block closes at row 3; the override at row 5 forces another
        # closure over pure whitespace.
        detector = BreakDetector(threshold=1, overrides={5})
        ranges = detector.detect(make_buffer("bwwwwwwb"))
        assert pairs(ranges) == [(0, 3), (3, 5), (5, 8)]

    def test_override_asymmetry_with_threshold(self):
        # Organic closure needs threshold + 2 empty rows; forced closure one.
        organic = BreakDetector(threshold=3)
        assert pairs(organic.detect(make_buffer("bwwwwwb"))) == [(0, 5), (5, 7)]

        forced = BreakDetector(threshold=3, overrides={1})
        assert pairs(forced.detect(make_buffer("bwbbbbb"))) == [(0, 1), (1, 7)]

    def test_states_enum(self):
        assert {s.value for s in DetectorState} == {
            "TRAIL", "LOOK", "FOUND", "OVERRIDDEN",
        }


class TestDefaults:

    def test_default_threshold_and_cutoff(self):
        config = ExtractorConfig()
        assert config.break_threshold == 42
        assert config.white_cutoff == 240

    def test_builtin_overrides(self):
        assert 2728 in DEFAULT_OVERRIDES.for_column(42, "l")
        assert 118 in DEFAULT_OVERRIDES.for_column(22, "l")
        assert DEFAULT_OVERRIDES.for_column(42, "r") == frozenset()
