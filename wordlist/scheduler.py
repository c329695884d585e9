"""
Pipeline Scheduler
==================
Fixed-size pool of worker processes draining a FIFO queue of jobs.

Architecture:
    - The scheduler owns the job queue and every JobOutcome
    - A WorkerHandle references at most one in-flight job at a time;
      the job returns to the scheduler's ownership when it settles
    - Each worker has its own pipes, so terminating one worker never
      corrupts a channel shared with the others
    - Exceptions raised by a job are caught inside the worker and
      reported as that job's failure; the worker keeps serving
    - A worker that dies or exceeds the job timeout is terminated and
      replaced; only its in-flight job fails, and it is not retried
    - Shutdown rejects queued jobs with a "pool closed" error, then
      either waits for in-flight jobs or terminates them

Usage:
    with PipelineScheduler(fn, workers=4, initializer=init, initargs=(cfg,)) as pool:
        outcomes = pool.run(range(16, 103), label=lambda p: f"page {p:03d}")

`fn(context, payload)` receives whatever `initializer(*initargs)`
returned in that worker process (None without an initializer).
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import os
import signal
import time
import traceback
from collections import deque
from dataclasses import dataclass
from multiprocessing.connection import Connection, wait
from typing import Any, Callable, Iterable, Optional

from .errors import PoolClosedError, WorkerFaultError
from .models import JobError, JobOutcome, JobState

logger = logging.getLogger(__name__)

DEFAULT_JOB_TIMEOUT = 30.0
_POLL_SECONDS = 0.5
_JOIN_SECONDS = 5.0

JobFn = Callable[[Any, Any], Any]


# ─── Worker Process ───────────────────────────────────────────────────────────


def _describe(exc: BaseException) -> JobError:
    return JobError(
        kind=type(exc).__name__,
        message=str(exc),
        traceback="".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    )


def _worker_main(
    inbox: Connection,
    outbox: Connection,
    fn: JobFn,
    initializer: Optional[Callable[..., Any]],
    initargs: tuple,
):
    """Worker loop: receive (job_id, payload), send (job_id, ok, value)."""
    # Interrupts are handled by the parent, which terminates workers.
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    context = None
    setup_error: Optional[JobError] = None
    if initializer is not None:
        try:
            context = initializer(*initargs)
        except Exception as e:
            setup_error = _describe(e)

    while True:
        try:
            message = inbox.recv()
        except (EOFError, OSError):
            break
        if message is None:
            break

        job_id, payload = message
        if setup_error is not None:
            outbox.send((job_id, False, setup_error))
            continue

        try:
            result = fn(context, payload)
        except Exception as e:
            outbox.send((job_id, False, _describe(e)))
            continue

        try:
            outbox.send((job_id, True, result))
        except Exception as e:
            # Result could not be pickled; nothing was written yet.
            outbox.send((job_id, False, _describe(e)))

    close = getattr(context, "close", None)
    if callable(close):
        close()


# ─── Parent Side ──────────────────────────────────────────────────────────────


@dataclass
class WorkerHandle:
    """Parent-side view of one worker process."""
    worker_id: int
    process: Any
    inbox: Connection
    outbox: Connection
    job_id: Optional[int] = None
    started_at: Optional[float] = None

    @property
    def idle(self) -> bool:
        return self.job_id is None


class PipelineScheduler:
    """
    Bounded-concurrency process pool with per-job failure isolation.

    Args:
        fn: Module-level job function `fn(context, payload)`.
        workers: Pool size; defaults to the number of CPUs.
        job_timeout: Seconds a single job may run before its worker is
            terminated.
        initializer: Called once per worker process; its return value is
            the context passed to every job on that worker.
        initargs: Arguments for the initializer.
        start_method: multiprocessing start method (None = platform default).
    """

    def __init__(
        self,
        fn: JobFn,
        workers: Optional[int] = None,
        job_timeout: float = DEFAULT_JOB_TIMEOUT,
        initializer: Optional[Callable[..., Any]] = None,
        initargs: tuple = (),
        start_method: Optional[str] = None,
    ):
        if workers is not None and workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if job_timeout <= 0:
            raise ValueError(f"job_timeout must be positive, got {job_timeout}")

        self.fn = fn
        self.size = workers or os.cpu_count() or 1
        self.job_timeout = job_timeout
        self.initializer = initializer
        self.initargs = initargs
        self._ctx = mp.get_context(start_method)

        self._jobs: dict[int, JobOutcome] = {}
        self._queue: deque[int] = deque()
        self._workers: list[WorkerHandle] = []
        self._next_job_id = 0
        self._next_worker_id = 0
        self._closed = False
        self.replaced_workers = 0

    # ─── Public API ───────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, payload: Any, label: Optional[str] = None) -> int:
        """Queue a job. The queue is unbounded; returns the job id."""
        if self._closed:
            raise PoolClosedError(f"Cannot submit {label or 'job'}: pool closed")

        job_id = self._next_job_id
        self._next_job_id += 1
        self._jobs[job_id] = JobOutcome(
            job_id=job_id,
            label=label or f"job {job_id}",
            payload=payload,
        )
        self._queue.append(job_id)
        self._dispatch()
        return job_id

    def run(
        self,
        payloads: Iterable[Any],
        label: Optional[Callable[[Any], str]] = None,
    ) -> list[JobOutcome]:
        """Submit every payload, wait, and return outcomes in submission order."""
        job_ids = [
            self.submit(p, label(p) if label else None) for p in payloads
        ]
        self.wait()
        return [self._jobs[job_id] for job_id in job_ids]

    def wait(self, timeout: Optional[float] = None) -> list[JobOutcome]:
        """
        Drive the pool until every submitted job has settled (or the
        timeout expires). Returns all outcomes in submission order.
        """
        deadline = None if timeout is None else time.perf_counter() + timeout
        while self._has_pending():
            self._dispatch()
            self._poll(self._next_wait(deadline))
            if deadline is not None and time.perf_counter() >= deadline:
                break
        return self.outcomes()

    def outcome(self, job_id: int) -> JobOutcome:
        return self._jobs[job_id]

    def outcomes(self) -> list[JobOutcome]:
        return [self._jobs[job_id] for job_id in sorted(self._jobs)]

    def shutdown(self, wait: bool = True):
        """
        Close the pool. Queued jobs are rejected with PoolClosedError.
        With wait=True in-flight jobs finish first; otherwise their
        workers are terminated and the jobs fail.
        """
        self._closed = True

        while self._queue:
            job_id = self._queue.popleft()
            job = self._jobs[job_id]
            self._settle(job, ok=False, value=JobError(
                kind=PoolClosedError.__name__,
                message=f"{job.label}: pool closed before the job started",
            ))

        if wait:
            while any(not w.idle for w in self._workers):
                self._poll(self._next_wait(None))
        else:
            for worker in list(self._workers):
                if not worker.idle:
                    self._fault(worker, "terminated by shutdown")

        for worker in self._workers:
            try:
                worker.inbox.send(None)
            except OSError:
                pass
        for worker in list(self._workers):
            self._stop(worker)
        self._workers = []

    def __enter__(self) -> "PipelineScheduler":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=exc_type is None)

    # ─── Dispatch ─────────────────────────────────────────────────────────

    def _dispatch(self):
        """Hand queued jobs to idle workers, spawning up to the pool size."""
        while self._queue:
            worker = self._idle_worker()
            if worker is None:
                return

            job_id = self._queue.popleft()
            job = self._jobs[job_id]
            try:
                worker.inbox.send((job_id, job.payload))
            except OSError as e:
                # Worker already gone: the job never started, requeue it.
                self._queue.appendleft(job_id)
                logger.warning(
                    f"Worker {worker.worker_id} unreachable ({e}); replacing"
                )
                self._retire(worker)
                continue
            except Exception as e:
                self._settle(job, ok=False, value=_describe(e))
                continue

            worker.job_id = job_id
            worker.started_at = time.perf_counter()
            job.state = JobState.RUNNING
            job.worker_id = worker.worker_id
            logger.debug(f"{job.label}: claimed by worker {worker.worker_id}")

    def _idle_worker(self) -> Optional[WorkerHandle]:
        for worker in self._workers:
            if worker.idle:
                return worker
        if len(self._workers) < self.size:
            return self._spawn()
        return None

    def _spawn(self) -> WorkerHandle:
        worker_id = self._next_worker_id
        self._next_worker_id += 1

        inbox_reader, inbox_writer = self._ctx.Pipe(duplex=False)
        outbox_reader, outbox_writer = self._ctx.Pipe(duplex=False)
        process = self._ctx.Process(
            target=_worker_main,
            args=(inbox_reader, outbox_writer, self.fn, self.initializer, self.initargs),
            name=f"wordlist-worker-{worker_id}",
            daemon=True,
        )
        process.start()
        # Only the worker keeps its ends open, so a dead worker reads as EOF.
        inbox_reader.close()
        outbox_writer.close()

        handle = WorkerHandle(
            worker_id=worker_id,
            process=process,
            inbox=inbox_writer,
            outbox=outbox_reader,
        )
        self._workers.append(handle)
        logger.debug(f"Spawned worker {worker_id} (pid {process.pid})")
        return handle

    # ─── Monitoring ───────────────────────────────────────────────────────

    def _poll(self, timeout: float):
        """Wait for results, crashes or timeouts and settle affected jobs."""
        busy = [w for w in self._workers if not w.idle]
        if not busy:
            return

        waitables = []
        for worker in busy:
            waitables.append(worker.outbox)
            waitables.append(worker.process.sentinel)
        wait(waitables, timeout)

        now = time.perf_counter()
        for worker in busy:
            if worker.outbox.poll():
                try:
                    message = worker.outbox.recv()
                except (EOFError, OSError):
                    worker.process.join(timeout=1.0)
                    self._fault(worker, _format_worker_exit(worker.process))
                    continue
                self._complete(worker, message)
            elif not worker.process.is_alive():
                self._fault(worker, _format_worker_exit(worker.process))
            elif now - worker.started_at >= self.job_timeout:
                self._fault(worker, f"timed out after {self.job_timeout:g}s")

    def _next_wait(self, deadline: Optional[float]) -> float:
        now = time.perf_counter()
        timeout = _POLL_SECONDS
        for worker in self._workers:
            if not worker.idle:
                timeout = min(timeout, worker.started_at + self.job_timeout - now)
        if deadline is not None:
            timeout = min(timeout, deadline - now)
        return max(0.01, timeout)

    def _has_pending(self) -> bool:
        return bool(self._queue) or any(not w.idle for w in self._workers)

    # ─── Settlement ───────────────────────────────────────────────────────

    def _complete(self, worker: WorkerHandle, message: tuple):
        job_id, ok, value = message
        job = self._jobs[worker.job_id]
        if job_id != worker.job_id:
            logger.warning(
                f"Worker {worker.worker_id} answered job {job_id} while "
                f"running {job.label}; ignoring stale result"
            )
            return
        job.elapsed = time.perf_counter() - worker.started_at
        worker.job_id = None
        worker.started_at = None
        self._settle(job, ok=ok, value=value)

    def _fault(self, worker: WorkerHandle, reason: str):
        """Fail the in-flight job of a broken worker and retire the worker."""
        if not worker.idle:
            job = self._jobs[worker.job_id]
            job.elapsed = time.perf_counter() - worker.started_at
            error = WorkerFaultError(f"{job.label}: worker {worker.worker_id} {reason}")
            worker.job_id = None
            self._settle(job, ok=False, value=JobError(
                kind=WorkerFaultError.__name__, message=str(error),
            ))
        self._retire(worker)

    def _retire(self, worker: WorkerHandle):
        """Terminate a worker; _dispatch spawns its replacement on demand."""
        self._stop(worker, force=True)
        if worker in self._workers:
            self._workers.remove(worker)
        if not self._closed:
            self.replaced_workers += 1

    def _stop(self, worker: WorkerHandle, force: bool = False):
        process = worker.process
        if force and process.is_alive():
            process.terminate()
        process.join(timeout=_JOIN_SECONDS)
        if process.is_alive():
            process.kill()
            process.join(timeout=_JOIN_SECONDS)
        for conn in (worker.inbox, worker.outbox):
            conn.close()

    def _settle(self, job: JobOutcome, ok: bool, value: Any):
        if ok:
            job.state = JobState.SUCCEEDED
            job.result = value
            logger.debug(f"{job.label}: succeeded")
        else:
            job.state = JobState.FAILED
            job.error = value
            logger.error(f"{job.label} failed: {value.kind}: {value.message}")


def _format_worker_exit(process: Any) -> str:
    exitcode = process.exitcode
    if exitcode is None:
        return "stopped responding"
    if exitcode < 0:
        signal_number = -exitcode
        try:
            signal_name = signal.Signals(signal_number).name
        except ValueError:
            signal_name = "UNKNOWN"
        return f"terminated by signal {signal_number} ({signal_name})"
    return f"exited with code {exitcode}"
