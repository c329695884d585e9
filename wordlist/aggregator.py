"""
Aggregator
==========
Sequential merge of cached per-page records into one ordered entry list.

Pages are always walked in ascending order and, within a page, left
column before right column. Because it only reads persisted artifacts,
the completion order of concurrent page jobs never reaches the output.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .cache import PageCache
from .errors import CacheCorruptionError
from .models import AggregationResult, Column, RawRecord, VocabEntry

logger = logging.getLogger(__name__)


def merge_records(
    records: Iterable[RawRecord],
    entries: Optional[list[VocabEntry]] = None,
) -> tuple[list[VocabEntry], int]:
    """
    Append records to `entries`, folding continuation records (empty
    definition) into the example of the entry just before them.

    Only one step back is considered. A continuation with no previous
    entry is kept as its own entry with an empty definition.

    Returns:
        (entries, orphan_continuations)
    """
    entries = entries if entries is not None else []
    orphans = 0

    for record in records:
        if record.is_continuation and entries:
            previous = entries[-1]
            previous.example = previous.example + "\n" + record.example
            continue

        if record.is_continuation:
            orphans += 1
            logger.warning(
                f"Continuation record {record.index} has no preceding entry "
                f"({record.source_image_path or 'no image'})"
            )
        entries.append(VocabEntry(
            definition=record.definition,
            example=record.example,
        ))

    return entries, orphans


class Aggregator:
    """Builds entries from the page cache in strict document order."""

    def __init__(self, cache: PageCache):
        self.cache = cache

    def collect(self, pages: Iterable[int]) -> AggregationResult:
        """
        Merge every cached artifact of the given pages. Pages and columns
        without an artifact are omitted; corrupt artifacts are logged and
        omitted.
        """
        result = AggregationResult()

        for page in sorted(set(pages)):
            page_seen = False
            for column in (Column.LEFT, Column.RIGHT):
                try:
                    artifact = self.cache.load(page, column)
                except CacheCorruptionError as e:
                    logger.error(f"Skipping corrupt artifact: {e}")
                    result.skipped_artifacts.append(f"{page:03d}-{column.value}")
                    continue
                if artifact is None:
                    continue

                page_seen = True
                _, orphans = merge_records(artifact.records, result.entries)
                result.orphan_continuations += orphans

            if page_seen:
                result.pages.append(page)

        logger.info(
            f"Aggregated {len(result.entries)} entries from "
            f"{len(result.pages)} page(s)"
        )
        return result

    def collect_page(self, page: int) -> list[VocabEntry]:
        """Entries of a single page, merged on their own."""
        return self.collect([page]).entries
