"""Dispatch statistics sinks.

Sinks are passed explicitly to the orchestrator and dispatcher; nothing here
keeps process-wide state.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Protocol


class DispatchStatsSink(Protocol):
    """Receives delivery and job outcomes."""

    def record_delivery(self, method: str, success: bool) -> None: ...

    def record_job(self, notification_type: str, success: bool, processing_ms: int) -> None: ...


@dataclass
class _JobCounters:
    jobs: int = 0
    failed: int = 0
    total_processing_ms: int = 0


@dataclass
class InMemoryDispatchStats:
    """Accumulates counters in memory; one instance per dispatcher."""

    deliveries: defaultdict[str, dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"succeeded": 0, "failed": 0})
    )
    jobs: defaultdict[str, _JobCounters] = field(
        default_factory=lambda: defaultdict(_JobCounters)
    )

    def record_delivery(self, method: str, success: bool) -> None:
        """Count one delivery attempt through ``method``."""
        self.deliveries[method]["succeeded" if success else "failed"] += 1

    def record_job(self, notification_type: str, success: bool, processing_ms: int) -> None:
        """Count one settled job."""
        counters = self.jobs[notification_type]
        counters.jobs += 1
        counters.total_processing_ms += processing_ms
        if not success:
            counters.failed += 1

    def snapshot(self) -> dict[str, Any]:
        """Return a plain-dict copy of the counters."""
        return {
            "deliveries": {method: dict(c) for method, c in self.deliveries.items()},
            "jobs": {
                kind: {
                    "jobs": c.jobs,
                    "failed": c.failed,
                    "avgProcessingMs": (c.total_processing_ms / c.jobs) if c.jobs else 0.0,
                }
                for kind, c in self.jobs.items()
            },
        }
