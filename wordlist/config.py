"""
Configuration
=============
Static configuration for a run: page range, render DPI, per-column crop
geometry, break detection parameters and the hand-curated break
override table.

The configuration is passed explicitly to every component (and pickled
into worker processes); nothing here is mutated at run time.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

from .models import Column

_OVERRIDE_KEY = re.compile(r"^(\d{3,})-([lr])$")


def column_key(page: int, column: Union[Column, str]) -> str:
    """Key used for overrides and cache files, e.g. '042-l'."""
    return f"{page:03d}-{Column(column).value}"


# ─── Column Geometry ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ColumnGeometry:
    """
    Horizontal layout of one column in pixels at the render DPI.

    The crop band [crop_x, crop_x + crop_width) is what break detection
    scans. Text is read from two boxes inside it: the definition box
    [text_x, text_x + text_width) and the example box from there to the
    end of the crop band.
    """
    crop_x: int
    crop_width: int
    text_x: int
    text_width: int
    full_width: int

    @property
    def example_x(self) -> int:
        return self.text_x + self.text_width

    @property
    def example_width(self) -> int:
        return self.crop_width - self.text_width


DEFAULT_LEFT_COLUMN = ColumnGeometry(
    crop_x=140,
    crop_width=1200 - 140,
    text_x=140,
    text_width=540 - 140,
    full_width=1200,
)

DEFAULT_RIGHT_COLUMN = ColumnGeometry(
    crop_x=1300,
    crop_width=2340 - 1300,
    text_x=1300,
    text_width=1710 - 1300,
    full_width=2340,
)


# ─── Break Overrides ──────────────────────────────────────────────────────────


class OverrideTable(Mapping):
    """
    Immutable table of forced break rows keyed by '<page>-<column>'.

    Row indices are relative to the cropped column image.
    """

    def __init__(self, entries: Optional[Mapping] = None):
        table: dict[str, frozenset[int]] = {}
        for key, rows in (entries or {}).items():
            if not _OVERRIDE_KEY.match(str(key)):
                raise ValueError(f"Invalid override key: {key!r}")
            try:
                table[str(key)] = frozenset(int(r) for r in rows)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid override rows for {key}: {e}") from e
            if any(r < 0 for r in table[str(key)]):
                raise ValueError(f"Negative override row for {key}")
        self._table = table

    def __getitem__(self, key: str) -> frozenset[int]:
        return self._table[key]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._table))

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"OverrideTable({len(self._table)} keys)"

    @classmethod
    def from_dict(cls, mapping: Mapping) -> "OverrideTable":
        return cls(mapping)

    def for_column(self, page: int, column: Union[Column, str]) -> frozenset[int]:
        """Override rows for one (page, column); empty when none are set."""
        return self._table.get(column_key(page, column), frozenset())

    def to_dict(self) -> dict[str, list[int]]:
        return {key: sorted(rows) for key, rows in sorted(self._table.items())}


def load_overrides(path: Union[str, Path]) -> OverrideTable:
    """
    Load an override table from a JSON file such as:
        {"022-l": [118], "090-l": [486, 574, 715]}
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Override file must contain an object: {path}")
    return OverrideTable(data)


DEFAULT_OVERRIDES = OverrideTable({
    "022-l": [118],
    "026-l": [348],
    "028-l": [304, 395, 528, 665, 1032, 1175, 1307, 1720, 1954, 2086,
              2229, 2407, 2545, 2870],
    "032-l": [530],
    "033-l": [713],
    "035-l": [711, 991],
    "037-r": [1083],
    "040-l": [117],
    "041-l": [988],
    "042-l": [2728],
    "046-r": [711],
    "048-r": [2776],
    "050-l": [442],
    "054-l": [2274],
    "057-l": [2500],
    "058-l": [1676],
    "063-r": [1630],
    "064-r": [1218],
    "065-r": [1360],
    "067-l": [2502],
    "069-r": [1310],
    "075-l": [1037, 1079],
    "077-l": [576],
    "080-l": [530],
    "081-l": [1636],
    "082-l": [346],
    "086-r": [71],
    "087-r": [1080],
    "089-l": [2272],
    "089-r": [162],
    "090-l": [486, 574, 715],
    "090-r": [211],
    "093-l": [2640],
})


# ─── Extractor Config ─────────────────────────────────────────────────────────


@dataclass
class ExtractorConfig:
    """Configuration for the extraction engine."""

    # Source
    pdf_path: str = "Goethe-Zertifikat_B1_Wortliste.pdf"
    dpi: int = 300
    page_start: int = 16
    page_end: int = 102

    # Layout
    left: ColumnGeometry = DEFAULT_LEFT_COLUMN
    right: ColumnGeometry = DEFAULT_RIGHT_COLUMN
    y_offset: int = 320
    image_height: int = 3260 - 320

    # Break detection
    white_cutoff: int = 240
    break_threshold: int = 42
    overrides: OverrideTable = field(default_factory=lambda: DEFAULT_OVERRIDES)

    # Output
    output_dir: str = "output"
    write_snippets: bool = True
    write_annotations: bool = True

    # Processing
    workers: Optional[int] = None
    job_timeout: float = 30.0
    start_method: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def geometry(self, column: Union[Column, str]) -> ColumnGeometry:
        return self.left if Column(column) == Column.LEFT else self.right

    def pages(self) -> range:
        """Configured page numbers (1-indexed, inclusive)."""
        return range(self.page_start, self.page_end + 1)

    def worker_count(self) -> int:
        return self.workers or os.cpu_count() or 1

    @property
    def scale(self) -> float:
        """Pixels per PDF point at the configured DPI."""
        return self.dpi / 72

    def validate(self):
        """Reject inconsistent values before any work is scheduled."""
        if self.dpi <= 0:
            raise ValueError(f"dpi must be positive, got {self.dpi}")
        if self.page_start < 1 or self.page_end < self.page_start:
            raise ValueError(
                f"Invalid page range {self.page_start}-{self.page_end}"
            )
        if not 0 <= self.white_cutoff <= 255:
            raise ValueError(
                f"white_cutoff must be within 0-255, got {self.white_cutoff}"
            )
        if self.break_threshold < 0:
            raise ValueError(
                f"break_threshold must be >= 0, got {self.break_threshold}"
            )
        if self.y_offset < 0 or self.image_height <= 0:
            raise ValueError("Invalid vertical crop geometry")
        for name in ("left", "right"):
            geo = getattr(self, name)
            if geo.crop_width <= 0 or geo.text_width <= 0:
                raise ValueError(f"Invalid {name} column geometry: {geo}")
            if geo.text_width > geo.crop_width:
                raise ValueError(
                    f"{name} column text box is wider than its crop band"
                )
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.job_timeout <= 0:
            raise ValueError(
                f"job_timeout must be positive, got {self.job_timeout}"
            )
