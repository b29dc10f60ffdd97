"""Job-type handlers for the worker host.

Each :class:`JobType` maps to a handler that receives the job payload and
returns a :class:`ProcessorResult`. The handler contract is request/response,
so the same handlers serve the worker manager and the HTTP API.
"""

from __future__ import annotations

import traceback
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from marybot.jobs.models import JobType
from marybot.logging import get_logger

if TYPE_CHECKING:
    from marybot.notifications.dispatcher import NotificationDispatcher

log = get_logger("marybot.jobs.processors")


class ProcessorResult:
    """Outcome of processing a single job."""

    __slots__ = ("success", "error", "data", "retryable")

    def __init__(
        self,
        success: bool = True,
        error: str | None = None,
        data: dict[str, Any] | None = None,
        retryable: bool = True,
    ) -> None:
        self.success = success
        self.error = error
        self.data = data or {}
        self.retryable = retryable


Handler = Callable[[dict[str, Any]], Awaitable[ProcessorResult]]


class JobProcessors:
    """Dispatch jobs to the handler registered for their type."""

    def __init__(self, *, dispatcher: NotificationDispatcher | None = None) -> None:
        self._dispatcher = dispatcher
        self._handlers: dict[str, Handler] = {
            JobType.NOTIFICATION_BATCH.value: self._handle_notification_batch,
        }

    def register(self, job_type: str, handler: Handler) -> None:
        """Register (or replace) the handler for ``job_type``."""
        self._handlers[job_type] = handler

    def supports(self, job_type: str) -> bool:
        """Whether a handler exists for ``job_type``."""
        return job_type in self._handlers

    async def process(self, job_type: str, payload: dict[str, Any]) -> ProcessorResult:
        """Route a job to its handler.

        Unknown job types fail without retry. Handler exceptions are returned
        as a failed result carrying ``{success, error, stack}``.
        """
        handler = self._handlers.get(job_type)
        if handler is None:
            log.error("unknown_job_type", job_type=job_type)
            return ProcessorResult(
                success=False,
                error=f"No worker found for job type: {job_type}",
                retryable=False,
            )

        try:
            return await handler(payload)
        except Exception as exc:
            log.exception("processor_error", job_type=job_type)
            return ProcessorResult(
                success=False,
                error=str(exc),
                data={"success": False, "error": str(exc), "stack": traceback.format_exc()},
            )

    async def _handle_notification_batch(self, payload: dict[str, Any]) -> ProcessorResult:
        """Run a notification job.

        Expected payload keys:
            notificationType (str): One of the notification kinds.
            recipients (list): ``[{"userId": ...}, ...]``.
            data (dict): Type-specific data.
            options (dict): Optional ``priority`` / ``expiresIn``.
        """
        if self._dispatcher is None:
            return ProcessorResult(success=False, error="Notification dispatcher not available")

        reply = await self._dispatcher.handle_message({"job": payload})
        if "stack" in reply:
            return ProcessorResult(success=False, error=reply.get("error"), data=reply)
        return ProcessorResult(success=True, data=reply)
