"""Job models: priority, status and type enums plus the Job dataclass.

Jobs flow through: QUEUED -> RUNNING -> COMPLETED, or back to QUEUED with a
back-off delay after a failed attempt, and finally FAILED once attempts are
exhausted.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_job_id(now_ms: int | None = None) -> str:
    """Return an id of the form ``job_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"job_{now_ms if now_ms is not None else _now_ms()}_{suffix}"


class JobPriority(str, Enum):
    """Scheduling priority; higher rank runs first."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank (3 = highest)."""
        return {"high": 3, "normal": 2, "low": 1}[self.value]


class JobStatus(str, Enum):
    """Lifecycle states for a job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Well-known job types handled by the worker host."""

    NOTIFICATION_BATCH = "notification_batch"


@dataclass
class Job:
    """A unit of background work.

    Attributes:
        type: Job type string (see :class:`JobType`).
        payload: Arbitrary JSON-serialisable job data.
        priority: Scheduling priority.
        id: Unique job identifier.
        status: Current lifecycle state.
        scheduled_at: Earliest start time in epoch milliseconds.
        attempts: Failed attempts so far.
        max_attempts: Attempts allowed before the job is failed.
        last_error: Error from the most recent failed attempt.
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    id: str = field(default_factory=generate_job_id)
    status: JobStatus = JobStatus.QUEUED
    scheduled_at: int = field(default_factory=_now_ms)
    attempts: int = 0
    max_attempts: int = 3
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "priority": self.priority.value,
            "status": self.status.value,
            "scheduledAt": self.scheduled_at,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "lastError": self.last_error,
        }
