"""
Pipeline Errors
===============
Failure taxonomy for page jobs. Every error carries the page and column
it happened on so that logs and run reports can point at the exact unit
of work.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for all failures raised inside a page job."""

    def __init__(
        self,
        message: str,
        page: Optional[int] = None,
        column: Optional[str] = None,
    ):
        self.page = page
        self.column = column
        self.detail = message
        super().__init__(self._with_context(message))

    def _with_context(self, message: str) -> str:
        parts = []
        if self.page is not None:
            parts.append(f"page {self.page:03d}")
        if self.column is not None:
            parts.append(f"column {self.column}")
        if not parts:
            return message
        return f"[{' '.join(parts)}] {message}"


class MissingInputError(PipelineError):
    """Source document, page or rendered image is absent."""


class ExtractionError(PipelineError):
    """Pixel or text read from a collaborator failed."""


class CacheCorruptionError(PipelineError):
    """A persisted artifact exists but cannot be read back."""


class WorkerFaultError(PipelineError):
    """A worker process crashed or exceeded its job timeout."""


class PoolClosedError(PipelineError):
    """The scheduler was shut down before the job could run."""
