"""Background job host for MaryBot.

Provides an in-memory priority job queue, a bounded asyncio worker pool with
exponential-backoff retries, and job-type processors.
"""

from marybot.jobs.manager import WorkerManager
from marybot.jobs.models import Job, JobPriority, JobStatus, JobType
from marybot.jobs.processors import JobProcessors, ProcessorResult
from marybot.jobs.storage import JobQueue

__all__ = [
    "Job",
    "JobPriority",
    "JobProcessors",
    "JobQueue",
    "JobStatus",
    "JobType",
    "ProcessorResult",
    "WorkerManager",
]
