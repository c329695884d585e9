"""
Data Models
===========
Pydantic models for break ranges, extracted records, cached page
artifacts, scheduler outcomes and run reports.
All models are serializable to JSON.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


# ─── Enums ────────────────────────────────────────────────────────────────────


class Column(str, Enum):
    """One of the two independent vertical text bands of a page."""
    LEFT = "l"
    RIGHT = "r"


class JobState(str, Enum):
    """Lifecycle of a scheduled page job."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ─── Detection / Extraction Models ───────────────────────────────────────────


class BreakRange(BaseModel):
    """
    Half-open row interval [start, end) holding one content block.
    Coordinates are relative to the cropped column image.
    """
    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "BreakRange":
        if self.end < self.start:
            raise ValueError(
                f"Range end {self.end} precedes start {self.start}"
            )
        return self

    @property
    def height(self) -> int:
        return self.end - self.start

    def as_pair(self) -> tuple[int, int]:
        return (self.start, self.end)


class RawRecord(BaseModel):
    """
    Unnormalized text pulled from one BreakRange, before any
    cosmetic cleanup.
    """
    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(ge=0)
    definition: str = ""
    example: str = ""
    source_image_path: str = Field(default="", alias="sourceImagePath")

    @property
    def is_continuation(self) -> bool:
        """Empty-definition records extend the previous entry's example."""
        return self.definition == ""


class PageArtifact(BaseModel):
    """
    Cached detection + extraction output for one (page, column).
    Ranges are strictly ordered and never overlap; record i was
    extracted from range i.
    """
    ranges: list[BreakRange] = Field(default_factory=list)
    records: list[RawRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_consistency(self) -> "PageArtifact":
        for prev, cur in zip(self.ranges, self.ranges[1:]):
            if cur.start < prev.end:
                raise ValueError(
                    f"Overlapping ranges {prev.as_pair()} and {cur.as_pair()}"
                )
        if len(self.records) != len(self.ranges):
            raise ValueError(
                f"{len(self.records)} records for {len(self.ranges)} ranges"
            )
        for position, record in enumerate(self.records):
            if record.index != position:
                raise ValueError(
                    f"Record at position {position} has index {record.index}"
                )
        return self


class VocabEntry(BaseModel):
    """A merged (definition, example) pair, before cosmetic cleanup."""
    definition: str = ""
    example: str = ""


# ─── Scheduler Models ────────────────────────────────────────────────────────


class JobError(BaseModel):
    """Serializable description of a job failure."""
    kind: str
    message: str
    traceback: Optional[str] = None


class JobOutcome(BaseModel):
    """Final (or current) state of one scheduled job."""
    job_id: int
    label: str
    payload: Any = None
    state: JobState = JobState.QUEUED
    result: Any = None
    error: Optional[JobError] = None
    worker_id: Optional[int] = None
    elapsed: Optional[float] = None

    @computed_field
    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED


# ─── Page / Run Models ───────────────────────────────────────────────────────


class ColumnSummary(BaseModel):
    """What one column pipeline produced."""
    column: Column
    range_count: int = 0
    record_count: int = 0
    from_cache: bool = False


class PageResult(BaseModel):
    """Successful result of a page job."""
    page: int = Field(ge=1)
    columns: list[ColumnSummary] = Field(default_factory=list)

    @computed_field
    @property
    def record_count(self) -> int:
        return sum(c.record_count for c in self.columns)


class AggregationResult(BaseModel):
    """Ordered entries built from cached artifacts."""
    entries: list[VocabEntry] = Field(default_factory=list)
    pages: list[int] = Field(default_factory=list)
    orphan_continuations: int = 0
    skipped_artifacts: list[str] = Field(default_factory=list)


class PageFailure(BaseModel):
    """A page whose job did not succeed."""
    page: int
    kind: str
    message: str


class RunReport(BaseModel):
    """Post-run summary of page job outcomes."""
    run_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    total_pages: int = 0
    succeeded_pages: list[int] = Field(default_factory=list)
    failed_pages: list[PageFailure] = Field(default_factory=list)
    cached_columns: int = 0
    record_count: int = 0
    entry_count: int = 0
    orphan_continuations: int = 0

    @computed_field
    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded_pages)

    @computed_field
    @property
    def failed_count(self) -> int:
        return len(self.failed_pages)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_pages == 0:
            return 0.0
        return round(self.succeeded_count / self.total_pages * 100, 2)


class RunResult(BaseModel):
    """Complete output of a run: report plus merged entries."""
    report: RunReport
    entries: list[VocabEntry] = Field(default_factory=list)
