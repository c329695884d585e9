"""
Break Detector
==============
Single forward pass over a column's pixel rows that splits it into
content blocks separated by runs of whitespace.

States:
    TRAIL       waiting for content after a closed block (or at start)
    LOOK        inside content, watching for an empty row
    FOUND       inside a candidate gap that started at `gap_start`
    OVERRIDDEN  forced break row: closes on an empty row regardless of
                the gap threshold

A hand-curated override row takes precedence over the measured signal:
the state is forced before the row is classified. Forced closure needs a
single empty row while organic closure needs more than `threshold` of
them; downstream fixtures depend on that asymmetry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .models import BreakRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PixelBuffer:
    """Row-major raw pixels (width x height x channels, one byte each)."""
    samples: bytes
    width: int
    height: int
    channels: int

    def __post_init__(self):
        if self.width < 0 or self.height < 0 or self.channels < 1:
            raise ValueError(
                f"Invalid pixel buffer shape {self.width}x{self.height}"
                f"x{self.channels}"
            )
        expected = self.width * self.height * self.channels
        if len(self.samples) < expected:
            raise ValueError(
                f"Pixel buffer holds {len(self.samples)} bytes, "
                f"expected {expected}"
            )

    @property
    def stride(self) -> int:
        return self.width * self.channels

    def row(self, y: int) -> bytes:
        offset = y * self.stride
        return self.samples[offset:offset + self.stride]


class DetectorState(Enum):
    TRAIL = "TRAIL"
    LOOK = "LOOK"
    FOUND = "FOUND"
    OVERRIDDEN = "OVERRIDDEN"


class BreakDetector:
    """
    Detects content ranges in a cropped column image.

    Args:
        white_cutoff: Minimum value of each of the first three channels
            for a pixel to count as white.
        threshold: Empty rows beyond the first that a gap needs before
            it closes a block.
        overrides: Row indices that force a break for this column.
    """

    def __init__(
        self,
        white_cutoff: int = 240,
        threshold: int = 42,
        overrides: Union[frozenset[int], set[int], None] = None,
    ):
        self.white_cutoff = white_cutoff
        self.threshold = threshold
        self.overrides = frozenset(overrides or ())

    def detect(self, pixels: PixelBuffer) -> list[BreakRange]:
        """Scan every row once and return the ordered content ranges."""
        state = DetectorState.TRAIL
        gap_start = 0
        rect_start = 0
        ranges: list[BreakRange] = []

        for y in range(pixels.height):
            if y in self.overrides:
                state = DetectorState.OVERRIDDEN
                gap_start = 0

            empty = self.row_is_empty(pixels, y)

            if state == DetectorState.TRAIL:
                if not empty:
                    state = DetectorState.LOOK

            elif state == DetectorState.LOOK:
                if empty:
                    state = DetectorState.FOUND
                    gap_start = y

            else:  # FOUND or OVERRIDDEN
                if not empty:
                    state = DetectorState.LOOK
                elif (
                    state == DetectorState.OVERRIDDEN
                    or y > gap_start + self.threshold
                ):
                    ranges.append(BreakRange(start=rect_start, end=y))
                    rect_start = y
                    state = DetectorState.TRAIL

        if state != DetectorState.TRAIL:
            ranges.append(BreakRange(start=rect_start, end=pixels.height))

        logger.debug(
            f"Detected {len(ranges)} ranges over {pixels.height} rows "
            f"({len(self.overrides)} overrides)"
        )
        return ranges

    def row_is_empty(self, pixels: PixelBuffer, y: int) -> bool:
        """
        A row is empty when every pixel is at or above the white cutoff
        in its first three channels. Alpha and extra channels are ignored.
        """
        row = pixels.row(y)
        step = pixels.channels
        for channel in range(min(3, step)):
            if min(row[channel::step], default=255) < self.white_cutoff:
                return False
        return True
