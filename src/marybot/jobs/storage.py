"""In-memory job queue ordered by priority, then by scheduled time."""

from __future__ import annotations

from marybot.jobs.models import Job, JobStatus
from marybot.logging import get_logger

log = get_logger("marybot.jobs.storage")


class JobQueue:
    """Pending jobs waiting for a free worker slot.

    The queue is not durable: jobs live only as long as the process.
    """

    def __init__(self) -> None:
        self._jobs: list[Job] = []

    def __len__(self) -> int:
        return len(self._jobs)

    def push(self, job: Job) -> None:
        """Add ``job`` and keep the queue ordered."""
        job.status = JobStatus.QUEUED
        self._jobs.append(job)
        # Highest priority first, earliest scheduled first within a priority
        self._jobs.sort(key=lambda j: (-j.priority.rank, j.scheduled_at))
        log.debug("job_queued", job_id=job.id, type=job.type, queued=len(self._jobs))

    def pop_due(self, now_ms: int) -> Job | None:
        """Remove and return the first job whose scheduled time has passed."""
        for index, job in enumerate(self._jobs):
            if job.scheduled_at <= now_ms:
                return self._jobs.pop(index)
        return None

    def remove(self, job_id: str) -> bool:
        """Drop a queued job by id."""
        for index, job in enumerate(self._jobs):
            if job.id == job_id:
                del self._jobs[index]
                return True
        return False

    def snapshot(self) -> list[Job]:
        """Return the queued jobs in run order."""
        return list(self._jobs)
