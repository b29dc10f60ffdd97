"""Worker manager: schedules background jobs and runs them on asyncio tasks.

Jobs are picked from :class:`JobQueue` in priority order, at most
``max_workers`` at a time. A failed attempt is re-queued with exponential
back-off (``2 ** attempts`` seconds) until ``max_attempts`` is reached.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

from marybot.config import get_settings
from marybot.jobs.models import Job, JobPriority, JobStatus, JobType
from marybot.jobs.processors import JobProcessors
from marybot.jobs.storage import JobQueue
from marybot.logging import get_logger

log = get_logger("marybot.jobs.manager")

# Graceful shutdown: max seconds to wait for running jobs before force-stop.
_DRAIN_TIMEOUT_SECONDS = 30

EventListener = Callable[[str, dict[str, Any]], Awaitable[None] | None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class WorkerManager:
    """Runs queued jobs on a bounded pool of ``asyncio.Task`` workers.

    Emits ``job_completed``, ``job_failed`` and, for notification jobs,
    ``notifications_sent`` events to registered listeners.
    """

    def __init__(
        self,
        processors: JobProcessors,
        queue: JobQueue | None = None,
        *,
        max_workers: int | None = None,
        max_attempts: int | None = None,
        poll_interval_ms: int | None = None,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        settings = get_settings()
        self._processors = processors
        self._queue = queue or JobQueue()
        self._max_workers = max_workers or settings.worker_max_concurrent
        self._max_attempts = max_attempts or settings.worker_max_attempts
        poll_ms = (
            poll_interval_ms if poll_interval_ms is not None else settings.worker_poll_interval_ms
        )
        self._poll_seconds = poll_ms / 1000.0
        self._clock_ms = clock_ms
        self._listeners: list[EventListener] = []
        self._active: dict[str, asyncio.Task[None]] = {}
        self._started: dict[str, tuple[Job, float]] = {}
        self._loop_task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._running = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback receiving ``(event_name, payload)``."""
        self._listeners.append(listener)

    async def schedule_job(
        self,
        job_type: str | JobType,
        payload: dict[str, Any],
        *,
        priority: str | JobPriority = JobPriority.NORMAL,
        delay_ms: int = 0,
    ) -> str:
        """Queue a job.

        Args:
            job_type: Job type (see :class:`JobType`).
            payload: JSON-serialisable job data.
            priority: ``high``, ``normal`` or ``low``.
            delay_ms: Minimum delay before the job may start.

        Returns:
            The job id.
        """
        job = Job(
            type=job_type.value if isinstance(job_type, JobType) else str(job_type),
            payload=payload,
            priority=JobPriority(priority),
            scheduled_at=self._clock_ms() + delay_ms,
            max_attempts=self._max_attempts,
        )
        self._queue.push(job)
        log.info("job_scheduled", job_id=job.id, type=job.type, priority=job.priority.value)
        self._wake.set()
        return job.id

    async def start(self) -> None:
        """Start the scheduling loop."""
        if self._running:
            log.warning("worker_manager_already_running")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop())
        log.info("worker_manager_started", max_workers=self._max_workers)

    async def stop(self) -> None:
        """Stop scheduling and wait for running jobs, cancelling stragglers."""
        if not self._running:
            return

        log.info("worker_manager_stopping", active=len(self._active))
        self._running = False
        self._wake.set()

        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
        self._loop_task = None

        tasks = list(self._active.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=_DRAIN_TIMEOUT_SECONDS)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._active.clear()
        self._started.clear()
        log.info("worker_manager_stopped", queued=len(self._queue))

    @property
    def is_running(self) -> bool:
        """Whether the scheduling loop is running."""
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Return running/queued counts plus the jobs behind them.

        ``workers`` lists each in-flight job with its runtime so far in
        milliseconds; ``queue`` lists waiting jobs in run order.
        """
        now = time.monotonic()
        return {
            "running": self._running,
            "activeJobs": len(self._active),
            "queuedJobs": len(self._queue),
            "maxWorkers": self._max_workers,
            "workers": [
                {
                    "jobId": job.id,
                    "jobType": job.type,
                    "runtime": int((now - started) * 1000),
                }
                for job, started in self._started.values()
            ],
            "queue": [job.to_dict() for job in self._queue.snapshot()],
        }

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _run_loop(self) -> None:
        while self._running:
            try:
                self._fill_slots()
                self._wake.clear()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=self._poll_seconds)
            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("worker_loop_error")
                await asyncio.sleep(self._poll_seconds)

    def _fill_slots(self) -> None:
        """Start due jobs while worker slots are free."""
        while len(self._active) < self._max_workers:
            job = self._queue.pop_due(self._clock_ms())
            if job is None:
                return
            task = asyncio.create_task(self._execute(job))
            self._active[job.id] = task
            self._started[job.id] = (job, time.monotonic())
            task.add_done_callback(lambda _t, job_id=job.id: self._on_task_done(job_id))

    def _on_task_done(self, job_id: str) -> None:
        self._active.pop(job_id, None)
        self._started.pop(job_id, None)
        self._wake.set()

    async def _execute(self, job: Job) -> None:
        """Run one job attempt and record its outcome."""
        job.status = JobStatus.RUNNING
        started = time.monotonic()
        log.debug("job_started", job_id=job.id, type=job.type, attempt=job.attempts + 1)

        result = await self._processors.process(job.type, job.payload)
        duration_ms = int((time.monotonic() - started) * 1000)

        if result.success:
            job.status = JobStatus.COMPLETED
            log.info("job_completed", job_id=job.id, type=job.type, duration_ms=duration_ms)
            await self._emit(
                "job_completed",
                {
                    "jobId": job.id,
                    "jobType": job.type,
                    "result": result.data,
                    "duration": duration_ms,
                },
            )
            if job.type == JobType.NOTIFICATION_BATCH.value:
                await self._emit("notifications_sent", result.data)
            return

        log.warning("job_attempt_failed", job_id=job.id, type=job.type, error=result.error)
        await self._retry_job(job, result.error or "Unknown error", retryable=result.retryable)

    async def _retry_job(self, job: Job, error: str, *, retryable: bool = True) -> None:
        job.attempts += 1
        job.last_error = error

        if retryable and job.attempts < job.max_attempts:
            delay_ms = (2**job.attempts) * 1000
            job.scheduled_at = self._clock_ms() + delay_ms
            self._queue.push(job)
            log.info(
                "job_retry_scheduled",
                job_id=job.id,
                delay_ms=delay_ms,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
            )
            return

        job.status = JobStatus.FAILED
        log.error("job_failed", job_id=job.id, type=job.type, attempts=job.attempts)
        await self._emit(
            "job_failed",
            {
                "jobId": job.id,
                "jobType": job.type,
                "attempts": job.attempts,
                "finalError": "Max retries exceeded" if retryable else error,
            },
        )

    async def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event, payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                log.exception("job_listener_error", event_name=event)
