"""
Page Cache
==========
Persists break ranges and extracted records per (page, column) so that
reruns skip detection and extraction entirely.

Files per key (e.g. 042-l):
    042-l.txt   one "start end" pair per line
    042-l.json  list of {index, definition, example, sourceImagePath}

The records file marks a complete artifact. A ranges file on its own is
a partial artifact: detection is reused and only extraction reruns.
Artifacts are never invalidated automatically; `clear()` is the
operator's way to force recomputation.

Unreadable artifacts raise CacheCorruptionError instead of being
recomputed.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Optional, Union

from pydantic import ValidationError

from .errors import CacheCorruptionError, ExtractionError
from .models import BreakRange, Column, PageArtifact, RawRecord
from .storage import StorageLayout, write_json_atomic, write_text_atomic

logger = logging.getLogger(__name__)

DetectFn = Callable[[], list[BreakRange]]
ExtractFn = Callable[[list[BreakRange]], list[RawRecord]]


class PageCache:
    """get/put contract over the on-disk cache directory."""

    def __init__(self, layout: StorageLayout):
        self.layout = layout

    def has(self, page: int, column: Union[Column, str]) -> bool:
        return self.layout.records_path(page, column).exists()

    def get(
        self,
        page: int,
        column: Union[Column, str],
        detect: DetectFn,
        extract: ExtractFn,
    ) -> tuple[PageArtifact, bool]:
        """
        Return the persisted artifact for (page, column), computing and
        persisting it first when absent.

        Returns:
            (artifact, from_cache) where from_cache is True when nothing
            had to be recomputed.
        """
        column = Column(column)
        cached = self.load(page, column)
        if cached is not None:
            return cached, True

        ranges = self.load_ranges(page, column)
        if ranges is None:
            logger.info(f"{page:03d}: Figuring out ranges for column {column.value}...")
            ranges = detect()
            self.put_ranges(page, column, ranges)

        logger.info(f"{page:03d}: Extracting text from column {column.value}...")
        records = extract(ranges)
        try:
            artifact = PageArtifact(ranges=ranges, records=records)
        except ValidationError as e:
            raise ExtractionError(
                f"Extraction produced an inconsistent artifact: {e}",
                page=page, column=column.value,
            ) from e
        self.put_records(page, column, artifact.records)
        return artifact, False

    # ─── Reads ────────────────────────────────────────────────────────────

    def load(self, page: int, column: Union[Column, str]) -> Optional[PageArtifact]:
        """Load a complete artifact, or None when the key is not cached."""
        column = Column(column)
        records_path = self.layout.records_path(page, column)
        if not records_path.exists():
            return None

        ranges = self.load_ranges(page, column)
        if ranges is None:
            raise CacheCorruptionError(
                f"Records present but ranges file missing: "
                f"{self.layout.ranges_path(page, column)}",
                page=page, column=column.value,
            )

        try:
            with open(records_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CacheCorruptionError(
                f"Unreadable records file {records_path}: {e}",
                page=page, column=column.value,
            ) from e
        if not isinstance(raw, list):
            raise CacheCorruptionError(
                f"Records file {records_path} does not hold a list",
                page=page, column=column.value,
            )

        try:
            records = [RawRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            raise CacheCorruptionError(
                f"Invalid record in {records_path}: {e}",
                page=page, column=column.value,
            ) from e
        return self._build(page, column, ranges, records)

    def load_ranges(
        self, page: int, column: Union[Column, str]
    ) -> Optional[list[BreakRange]]:
        column = Column(column)
        path = self.layout.ranges_path(page, column)
        if not path.exists():
            return None
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CacheCorruptionError(
                f"Unreadable ranges file {path}: {e}",
                page=page, column=column.value,
            ) from e
        return _parse_ranges(content, page, column)

    # ─── Writes ───────────────────────────────────────────────────────────

    def put_ranges(self, page: int, column: Union[Column, str], ranges: list[BreakRange]):
        content = "\n".join(f"{r.start} {r.end}" for r in ranges)
        write_text_atomic(self.layout.ranges_path(page, column), content)

    def put_records(self, page: int, column: Union[Column, str], records: list[RawRecord]):
        write_json_atomic(
            self.layout.records_path(page, column),
            [r.model_dump(by_alias=True) for r in records],
        )

    def put(self, page: int, column: Union[Column, str], artifact: PageArtifact):
        """Persist a complete artifact (ranges first, records last)."""
        self.put_ranges(page, column, artifact.ranges)
        self.put_records(page, column, artifact.records)

    def clear(
        self,
        page: Optional[int] = None,
        column: Optional[Union[Column, str]] = None,
    ) -> int:
        """
        Delete cached artifacts. With no arguments the whole cache is
        cleared. Returns the number of files removed.
        """
        pages = [page] if page is not None else None
        columns = [Column(column)] if column is not None else list(Column)
        removed = 0
        cache_dir = self.layout.cache_dir
        if not cache_dir.exists():
            return 0

        if pages is None:
            targets = [p for p in cache_dir.iterdir() if p.suffix in (".txt", ".json")]
            targets = [
                p for p in targets
                if any(p.stem.endswith(f"-{c.value}") for c in columns)
            ]
        else:
            targets = []
            for c in columns:
                targets.append(self.layout.ranges_path(page, c))
                targets.append(self.layout.records_path(page, c))

        for path in targets:
            if path.exists():
                path.unlink()
                removed += 1
        logger.info(f"Cleared {removed} cached file(s) from {cache_dir}")
        return removed

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _build(
        self,
        page: int,
        column: Column,
        ranges: list[BreakRange],
        records: list[RawRecord],
    ) -> PageArtifact:
        try:
            return PageArtifact(ranges=ranges, records=records)
        except ValidationError as e:
            raise CacheCorruptionError(
                f"Inconsistent artifact: {e}", page=page, column=column.value,
            ) from e


def _parse_ranges(content: str, page: int, column: Column) -> list[BreakRange]:
    ranges: list[BreakRange] = []
    for line_no, line in enumerate(content.strip().splitlines(), start=1):
        parts = line.split()
        try:
            if len(parts) != 2:
                raise ValueError(f"expected 2 values, got {len(parts)}")
            ranges.append(BreakRange(start=int(parts[0]), end=int(parts[1])))
        except (ValueError, ValidationError) as e:
            raise CacheCorruptionError(
                f"Bad ranges line {line_no} ({line!r}): {e}",
                page=page, column=column.value,
            ) from e
    return ranges
