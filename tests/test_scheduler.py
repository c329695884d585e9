"""
Pipeline Scheduler Tests
========================
Failure isolation, worker replacement and shutdown semantics of the
process pool. Job functions live at module level so worker processes
can import them under any start method.
"""

from __future__ import annotations

import os
import time

import pytest

from wordlist.errors import PoolClosedError
from wordlist.models import JobState
from wordlist.scheduler import PipelineScheduler


def square_job(context, payload):
    return payload * payload


def flaky_job(context, payload):
    if payload % 3 == 0:
        raise ValueError(f"bad payload {payload}")
    return payload


def sleepy_job(context, payload):
    if payload == "hang":
        time.sleep(60)
    elif isinstance(payload, float):
        time.sleep(payload)
    return payload


def crash_job(context, payload):
    if payload == "crash":
        os._exit(3)
    return payload


def context_job(context, payload):
    return context, payload


def make_context(prefix):
    return f"{prefix}-{os.getpid()}"


def broken_initializer():
    raise RuntimeError("document unavailable")


def unpicklable_job(context, payload):
    return lambda: payload


def record_job(context, payload):
    path, n = payload
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{n}\n")
    return n


# ═══════════════════════════════════════════════════════════════════════════════
# BASIC SCHEDULING
# ═══════════════════════════════════════════════════════════════════════════════


class TestScheduling:

    def test_results_in_submission_order(self):
        with PipelineScheduler(square_job, workers=3) as pool:
            outcomes = pool.run(range(10))

        assert [o.result for o in outcomes] == [n * n for n in range(10)]
        assert all(o.state == JobState.SUCCEEDED for o in outcomes)

    def test_single_worker_claims_in_fifo_order(self, tmp_path):
        log = tmp_path / "claims.txt"
        with PipelineScheduler(record_job, workers=1) as pool:
            outcomes = pool.run([(str(log), n) for n in range(6)])

        assert log.read_text(encoding="utf-8").splitlines() == [
            str(n) for n in range(6)
        ]
        assert len({o.worker_id for o in outcomes}) == 1

    def test_labels(self):
        with PipelineScheduler(square_job, workers=1) as pool:
            outcomes = pool.run([16, 17], label=lambda p: f"page {p:03d}")
        assert [o.label for o in outcomes] == ["page 016", "page 017"]

    def test_initializer_context_reaches_jobs(self):
        with PipelineScheduler(
            context_job, workers=2, initializer=make_context, initargs=("ctx",)
        ) as pool:
            outcomes = pool.run(["a", "b", "c"])

        for outcome in outcomes:
            context, payload = outcome.result
            assert context.startswith("ctx-")
            assert context != f"ctx-{os.getpid()}"
        assert [o.result[1] for o in outcomes] == ["a", "b", "c"]

    def test_bounded_worker_count(self):
        with PipelineScheduler(context_job, workers=2, initializer=make_context,
                               initargs=("w",)) as pool:
            outcomes = pool.run(range(8))
        assert len({o.result[0] for o in outcomes}) <= 2

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            PipelineScheduler(square_job, workers=0)
        with pytest.raises(ValueError):
            PipelineScheduler(square_job, job_timeout=0)


# ═══════════════════════════════════════════════════════════════════════════════
# FAILURE ISOLATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestFailureIsolation:

    def test_failing_jobs_do_not_affect_others(self):
        with PipelineScheduler(flaky_job, workers=3) as pool:
            outcomes = pool.run(range(1, 10))

        failed = [o for o in outcomes if not o.succeeded]
        succeeded = [o for o in outcomes if o.succeeded]
        assert [o.payload for o in failed] == [3, 6, 9]
        assert [o.result for o in succeeded] == [1, 2, 4, 5, 7, 8]
        assert all(o.error.kind == "ValueError" for o in failed)
        assert "bad payload 6" in failed[1].error.message
        assert "Traceback" in failed[0].error.traceback
        assert pool.replaced_workers == 0

    def test_timeout_replaces_worker(self):
        with PipelineScheduler(sleepy_job, workers=2, job_timeout=1.0) as pool:
            outcomes = pool.run(["a", "hang", "b", "c", "d"])

        by_payload = {o.payload: o for o in outcomes}
        hung = by_payload["hang"]
        assert hung.state == JobState.FAILED
        assert hung.error.kind == "WorkerFaultError"
        assert "timed out" in hung.error.message
        assert all(by_payload[p].succeeded for p in "abcd")
        assert pool.replaced_workers >= 1

    def test_crash_replaces_worker(self):
        with PipelineScheduler(crash_job, workers=1) as pool:
            outcomes = pool.run(["a", "crash", "b", "c"])

        assert [o.succeeded for o in outcomes] == [True, False, True, True]
        assert outcomes[1].error.kind == "WorkerFaultError"
        assert "exited with code 3" in outcomes[1].error.message
        assert pool.replaced_workers == 1

    def test_initializer_failure_fails_jobs(self):
        with PipelineScheduler(
            square_job, workers=2, initializer=broken_initializer
        ) as pool:
            outcomes = pool.run([1, 2, 3])

        assert all(o.state == JobState.FAILED for o in outcomes)
        assert all(o.error.kind == "RuntimeError" for o in outcomes)
        assert "document unavailable" in outcomes[0].error.message
        assert pool.replaced_workers == 0

    def test_unpicklable_result_fails_only_that_job(self):
        with PipelineScheduler(unpicklable_job, workers=1) as pool:
            first = pool.run([1])
        assert first[0].state == JobState.FAILED
        assert pool.replaced_workers == 0


# ═══════════════════════════════════════════════════════════════════════════════
# SHUTDOWN
# ═══════════════════════════════════════════════════════════════════════════════


class TestShutdown:

    def test_submit_after_shutdown_raises(self):
        pool = PipelineScheduler(square_job, workers=1)
        pool.shutdown()
        assert pool.closed
        with pytest.raises(PoolClosedError):
            pool.submit(1)

    def test_pending_jobs_rejected(self):
        pool = PipelineScheduler(sleepy_job, workers=1)
        first = pool.submit("hang")
        rest = [pool.submit(p) for p in ("a", "b", "c")]

        pool.shutdown(wait=False)

        assert pool.outcome(first).error.kind == "WorkerFaultError"
        for job_id in rest:
            outcome = pool.outcome(job_id)
            assert outcome.state == JobState.FAILED
            assert outcome.error.kind == "PoolClosedError"

    def test_graceful_shutdown_finishes_in_flight(self):
        pool = PipelineScheduler(sleepy_job, workers=1)
        running = pool.submit(0.3)
        queued = pool.submit("a")

        pool.shutdown(wait=True)

        assert pool.outcome(running).succeeded
        assert pool.outcome(running).result == 0.3
        assert pool.outcome(queued).error.kind == "PoolClosedError"

    def test_wait_with_timeout_returns_early(self):
        pool = PipelineScheduler(sleepy_job, workers=1, job_timeout=30.0)
        try:
            job_id = pool.submit("hang")
            started = time.perf_counter()
            pool.wait(timeout=0.5)
            assert time.perf_counter() - started < 5
            assert pool.outcome(job_id).state == JobState.RUNNING
        finally:
            pool.shutdown(wait=False)
