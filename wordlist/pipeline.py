"""
Column Pipeline
===============
Per (page, column) unit of work: fetch pixels, detect breaks (or reuse
the cache), extract text per range and persist the artifact. A page job
runs the left column and then the right column, then shades the ranges
of both columns on the page annotation.

Worker processes build one WorkerContext at startup. It owns the only
DocumentHandle of that process and wires it into the collaborators.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Union

from .break_detector import BreakDetector, PixelBuffer
from .cache import PageCache
from .config import ExtractorConfig
from .errors import ExtractionError, PipelineError
from .logging_setup import setup_logging
from .models import BreakRange, Column, ColumnSummary, PageArtifact, PageResult, RawRecord
from .rasterizer import DocumentHandle, PageRasterizer
from .region_extractor import RegionTextExtractor, SnippetFn
from .storage import StorageLayout

logger = logging.getLogger(__name__)


class PixelSource(Protocol):
    def column_pixels(self, page: int, column: Column) -> PixelBuffer: ...


class RegionExtractor(Protocol):
    def extract_records(
        self,
        page: int,
        column: Column,
        ranges: list[BreakRange],
        snippet: Optional[SnippetFn] = None,
    ) -> list[RawRecord]: ...


class ColumnPipeline:
    """
    Runs detection + extraction for one (page, column) behind the
    PageCache get contract.
    """

    def __init__(
        self,
        pixel_source: PixelSource,
        extractor: RegionExtractor,
        cache: PageCache,
        config: ExtractorConfig,
        snippet: Optional[SnippetFn] = None,
    ):
        self.pixel_source = pixel_source
        self.extractor = extractor
        self.cache = cache
        self.config = config
        self.snippet = snippet

    def detector_for(self, page: int, column: Union[Column, str]) -> BreakDetector:
        return BreakDetector(
            white_cutoff=self.config.white_cutoff,
            threshold=self.config.break_threshold,
            overrides=self.config.overrides.for_column(page, column),
        )

    def run(self, page: int, column: Union[Column, str]) -> tuple[PageArtifact, bool]:
        column = Column(column)

        def detect() -> list[BreakRange]:
            pixels = _call(
                lambda: self.pixel_source.column_pixels(page, column),
                page, column, "Pixel read failed",
            )
            return self.detector_for(page, column).detect(pixels)

        def extract(ranges: list[BreakRange]) -> list[RawRecord]:
            return _call(
                lambda: self.extractor.extract_records(
                    page, column, ranges, snippet=self.snippet
                ),
                page, column, "Text extraction failed",
            )

        return self.cache.get(page, column, detect, extract)


# Annotation writer: (page, left_ranges, right_ranges) -> image path
AnnotateFn = Callable[[int, list[BreakRange], list[BreakRange]], str]


class PageProcessor:
    """
    Processes both columns of a page, left first, then draws the
    page annotation from the ranges of both columns.
    """

    def __init__(
        self,
        column_pipeline: ColumnPipeline,
        annotate: Optional[AnnotateFn] = None,
    ):
        self.column_pipeline = column_pipeline
        self.annotate = annotate

    def process_page(self, page: int) -> PageResult:
        logger.info(f"Processing page {page:03d}...")
        summaries: list[ColumnSummary] = []
        ranges: dict[Column, list[BreakRange]] = {}

        for column in (Column.LEFT, Column.RIGHT):
            try:
                artifact, from_cache = self.column_pipeline.run(page, column)
            except PipelineError as e:
                logger.error(f"Page {page:03d} column {column.value} failed: {e}")
                raise
            ranges[column] = artifact.ranges
            summaries.append(ColumnSummary(
                column=column,
                range_count=len(artifact.ranges),
                record_count=len(artifact.records),
                from_cache=from_cache,
            ))

        if self.annotate is not None:
            try:
                self.annotate(page, ranges[Column.LEFT], ranges[Column.RIGHT])
            except PipelineError:
                raise
            except Exception as e:
                logger.error(f"Page {page:03d} annotation failed: {e}")
                raise ExtractionError(f"Annotation failed: {e}", page=page) from e

        logger.info(f"Page {page:03d} completed")
        return PageResult(page=page, columns=summaries)


# ─── Worker Process Wiring ────────────────────────────────────────────────────


class WorkerContext:
    """
    Everything one process needs to run page jobs. Owns the process's
    DocumentHandle.
    """

    def __init__(self, config: ExtractorConfig):
        self.config = config
        self.handle = DocumentHandle(config.pdf_path)
        self.layout = StorageLayout(config.output_dir, self.handle.stem)
        self.layout.init_storage()
        self.cache = PageCache(self.layout)
        self.rasterizer = PageRasterizer(self.handle, config, self.layout)
        self.extractor = RegionTextExtractor(self.handle, config)
        self.column_pipeline = ColumnPipeline(
            pixel_source=self.rasterizer,
            extractor=self.extractor,
            cache=self.cache,
            config=config,
            snippet=self.rasterizer.render_snippet if config.write_snippets else None,
        )
        self.processor = PageProcessor(
            self.column_pipeline,
            annotate=(
                self.rasterizer.render_annotation
                if config.write_annotations else None
            ),
        )

    def close(self):
        self.handle.close()

    def __enter__(self) -> "WorkerContext":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def init_worker(config: ExtractorConfig) -> WorkerContext:
    """Scheduler initializer: runs once in each worker process."""
    setup_logging(config.log_level, config.log_file)
    return WorkerContext(config)


def process_page_job(context: WorkerContext, page: int) -> PageResult:
    """Scheduler job function: one page end-to-end."""
    return context.processor.process_page(page)


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _call(fn: Callable, page: int, column: Column, what: str):
    """
    Run a collaborator call, attaching page/column context to pipeline
    errors and wrapping anything else as ExtractionError.
    """
    try:
        return fn()
    except PipelineError as e:
        if e.column is None:
            raise type(e)(e.detail, page=page, column=column.value) from e
        raise
    except Exception as e:
        raise ExtractionError(f"{what}: {e}", page=page, column=column.value) from e
