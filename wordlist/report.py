"""
Run Report
==========
Turns scheduler outcomes into a RunReport and logs the summary.

Never silently ignores failures: every failed page is listed with the
kind of error that stopped it.
"""

from __future__ import annotations

import logging

from .models import (
    AggregationResult,
    JobOutcome,
    PageFailure,
    PageResult,
    RunReport,
)

logger = logging.getLogger(__name__)


class RunReporter:
    """Builds and logs the post-run report."""

    def build(
        self,
        outcomes: list[JobOutcome],
        aggregation: AggregationResult,
    ) -> RunReport:
        report = RunReport(total_pages=len(outcomes))

        for outcome in outcomes:
            page = int(outcome.payload)
            if outcome.succeeded:
                result: PageResult = outcome.result
                report.succeeded_pages.append(page)
                report.record_count += result.record_count
                report.cached_columns += sum(
                    1 for c in result.columns if c.from_cache
                )
            else:
                report.failed_pages.append(PageFailure(
                    page=page,
                    kind=outcome.error.kind if outcome.error else "Unknown",
                    message=outcome.error.message if outcome.error else "",
                ))

        report.succeeded_pages.sort()
        report.failed_pages.sort(key=lambda f: f.page)
        report.entry_count = len(aggregation.entries)
        report.orphan_continuations = aggregation.orphan_continuations

        self.log(report)
        return report

    def log(self, report: RunReport):
        logger.info("=" * 60)
        logger.info("RUN REPORT")
        logger.info("=" * 60)
        logger.info(f"Pages Processed: {report.total_pages}")
        logger.info(
            f"Succeeded: {report.succeeded_count} ({report.success_rate}%)"
        )
        logger.info(f"Failed: {report.failed_count}")
        logger.info(f"Columns Served From Cache: {report.cached_columns}")
        logger.info(f"Raw Records: {report.record_count}")
        logger.info(f"Entries: {report.entry_count}")
        if report.orphan_continuations:
            logger.warning(
                f"Orphan Continuations: {report.orphan_continuations}"
            )

        if report.failed_pages:
            logger.info("Failed Pages:")
            for failure in report.failed_pages:
                logger.info(
                    f"  • {failure.page:03d} {failure.kind}: {failure.message}"
                )

        logger.info("=" * 60)
