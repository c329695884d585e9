"""
Extraction Engine
=================
Main orchestrator: schedules one page job per page on the worker pool,
reports successes and failures, then aggregates the cached artifacts of
the successful pages into ordered entries.

Usage:
    engine = ExtractionEngine(ExtractorConfig(pdf_path="wortliste.pdf"))
    result = engine.run()
    # result.report  -> RunReport (succeeded / failed pages)
    # result.entries -> ordered VocabEntry list

Architecture:
    PDF → PipelineScheduler (page jobs: left + right ColumnPipeline)
        → PageCache → Aggregator → RunResult (JSON)
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional

from .aggregator import Aggregator
from .cache import PageCache
from .config import ExtractorConfig
from .errors import MissingInputError
from .logging_setup import setup_logging
from .models import RunResult, VocabEntry
from .pipeline import WorkerContext, init_worker, process_page_job
from .report import RunReporter
from .scheduler import PipelineScheduler
from .storage import StorageLayout, write_json_atomic

logger = logging.getLogger(__name__)


class ExtractionEngine:
    """
    Runs the full extraction over a page range.

    A failed page never stops the run; it is listed in the report and
    left out of the aggregated entries.
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        self.config = config or ExtractorConfig()
        self.config.validate()
        setup_logging(self.config.log_level, self.config.log_file)
        self.layout = StorageLayout(
            self.config.output_dir, Path(self.config.pdf_path).stem
        )
        self.cache = PageCache(self.layout)

    def run(self, pages: Optional[Iterable[int]] = None) -> RunResult:
        """
        Process pages (default: the configured range) and aggregate.

        Raises:
            MissingInputError: If the PDF does not exist.
        """
        self._require_pdf()
        pages = list(pages) if pages is not None else list(self.config.pages())
        self.layout.init_storage()

        start_time = time.time()
        logger.info(
            f"Processing {len(pages)} page(s) of {self.config.pdf_path} "
            f"with {min(self.config.worker_count(), max(1, len(pages)))} worker(s)"
        )

        # ── Phase 1: Page jobs ────────────────────────────────────────
        with PipelineScheduler(
            process_page_job,
            workers=self.config.worker_count(),
            job_timeout=self.config.job_timeout,
            initializer=init_worker,
            initargs=(self.config,),
            start_method=self.config.start_method,
        ) as scheduler:
            outcomes = scheduler.run(pages, label=lambda p: f"page {p:03d}")
            if scheduler.replaced_workers:
                logger.warning(
                    f"Replaced {scheduler.replaced_workers} worker(s) during the run"
                )

        # ── Phase 2: Aggregation ──────────────────────────────────────
        succeeded = [int(o.payload) for o in outcomes if o.succeeded]
        aggregation = Aggregator(self.cache).collect(succeeded)

        # ── Phase 3: Report ───────────────────────────────────────────
        report = RunReporter().build(outcomes, aggregation)
        result = RunResult(report=report, entries=aggregation.entries)

        elapsed = time.time() - start_time
        logger.info(
            f"Run complete in {elapsed:.2f}s: {report.succeeded_count} "
            f"page(s) succeeded, {report.failed_count} failed"
        )

        self._save_outputs(result)
        return result

    def process_page(self, page: int) -> list[VocabEntry]:
        """
        Process a single page in this process (no worker pool) and return
        its merged entries. Errors propagate to the caller.
        """
        self._require_pdf()
        with WorkerContext(self.config) as context:
            context.processor.process_page(page)
        return Aggregator(self.cache).collect_page(page)

    def clear_cache(self, page: Optional[int] = None) -> int:
        """Operator-driven invalidation of cached artifacts."""
        return self.cache.clear(page=page)

    def _require_pdf(self):
        if not os.path.exists(self.config.pdf_path):
            raise MissingInputError(f"PDF file not found: {self.config.pdf_path}")

    def _save_outputs(self, result: RunResult):
        """Save entries and report snapshots as JSON."""
        try:
            write_json_atomic(
                self.layout.entries_path,
                [e.model_dump() for e in result.entries],
            )
            write_json_atomic(
                self.layout.report_path, result.report.model_dump()
            )
            logger.info(f"Output saved to: {self.layout.root}")
        except OSError as e:
            logger.error(f"Failed to save run outputs: {e}")
