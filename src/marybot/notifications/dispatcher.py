"""Notification dispatcher: the entry point for notification jobs.

A job moves through Formatting -> Batching -> Delivering -> Settled in a
single pass. Only a rejected job (unknown type or malformed shape) produces a
:class:`DispatchFailure`; delivery failures are reported inside the
:class:`BatchResult` of a :class:`DispatchSuccess`.
"""

from __future__ import annotations

import time
import traceback
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from marybot.config import Settings, get_settings
from marybot.logging import get_logger
from marybot.notifications.api_client import NotificationsApiClient
from marybot.notifications.batch import BatchOrchestrator, Sleep
from marybot.notifications.channels import (
    DatabaseChannel,
    DiscordChannel,
    DiscordSender,
    WebSocketChannel,
)
from marybot.notifications.formatters import DEFAULT_EXPIRY_MS, format_notifications
from marybot.notifications.models import (
    BatchError,
    DispatchFailure,
    DispatchResult,
    DispatchSuccess,
    NotificationError,
    NotificationJob,
    RetryResult,
)
from marybot.notifications.realtime import ConnectionHub
from marybot.notifications.stats import DispatchStatsSink

log = get_logger("marybot.notifications.dispatcher")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NotificationDispatcher:
    """Turns notification jobs into delivered records and a settled result."""

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        *,
        clock: Callable[[], datetime] = _utcnow,
        stats: DispatchStatsSink | None = None,
        default_expiry_ms: int = DEFAULT_EXPIRY_MS,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            orchestrator: Delivers formatted records.
            clock: Source of dispatch timestamps.
            stats: Optional sink for job outcomes.
            default_expiry_ms: Expiry for custom notifications without ``expiresIn``.
        """
        self._orchestrator = orchestrator
        self._clock = clock
        self._stats = stats
        self._default_expiry_ms = default_expiry_ms

    async def dispatch(self, job: NotificationJob) -> DispatchResult:
        """Format and deliver a job.

        Args:
            job: The job to run.

        Returns:
            ``DispatchSuccess`` once the pipeline ran, even if some records
            failed, or ``DispatchFailure`` when the job was rejected.
        """
        started = time.monotonic()
        try:
            records = format_notifications(
                job, now=self._clock(), default_expiry_ms=self._default_expiry_ms
            )
        except NotificationError as e:
            return self._fail(job, str(e))
        except Exception as e:
            # Payload values the formatters cannot handle, e.g. an expiry past datetime.max
            log.exception("notification_job_malformed", type=job.notification_type)
            return self._fail(job, str(e))

        log.debug(
            "notifications_formatted",
            type=job.notification_type,
            recipients=len(job.recipients),
            records=len(records),
        )

        result = await self._orchestrator.dispatch_batch(records)
        processing_ms = int((time.monotonic() - started) * 1000)

        if self._stats is not None:
            self._stats.record_job(job.notification_type, True, processing_ms)
        log.info(
            "notification_job_settled",
            type=job.notification_type,
            total=result.total,
            sent=result.sent,
            failed=result.failed,
            processing_ms=processing_ms,
        )
        return DispatchSuccess(
            notification_type=job.notification_type,
            result=result,
            timestamp=self._clock(),
            processing_time=processing_ms,
        )

    async def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """Run a worker message ``{"job": {...}}`` and return the settled reply."""
        try:
            job = NotificationJob.from_message(message)
        except NotificationError as e:
            log.warning("notification_message_rejected", error=str(e))
            return DispatchFailure(error=str(e), timestamp=self._clock()).to_dict()

        try:
            result = await self.dispatch(job)
        except Exception as e:
            log.exception("notification_job_crashed", type=job.notification_type)
            return {"success": False, "error": str(e), "stack": traceback.format_exc()}
        return result.to_dict()

    async def retry_failed(self, errors: Sequence[BatchError]) -> RetryResult:
        """Re-deliver records from a previous result's per-record errors."""
        return await self._orchestrator.retry_failed(errors)

    def _fail(self, job: NotificationJob, error: str) -> DispatchFailure:
        log.warning("notification_job_rejected", type=job.notification_type, error=error)
        if self._stats is not None:
            self._stats.record_job(str(job.notification_type), False, 0)
        return DispatchFailure(error=error, timestamp=self._clock())


def create_dispatcher(
    settings: Settings | None = None,
    *,
    api_client: NotificationsApiClient | None = None,
    discord_sender: DiscordSender | None = None,
    hub: ConnectionHub | None = None,
    stats: DispatchStatsSink | None = None,
    sleep: Sleep | None = None,
) -> NotificationDispatcher:
    """Build a dispatcher with channels in the fixed discord/database/websocket order.

    Args:
        settings: Settings to read from (defaults to the cached settings).
        api_client: REST API client; created from settings when omitted.
        discord_sender: Real Discord sender; DM delivery is simulated when omitted.
        hub: Push connection hub; push delivery is simulated when omitted.
        stats: Optional stats sink shared by orchestrator and dispatcher.
        sleep: Optional sleep override for pacing.
    """
    settings = settings or get_settings()
    if api_client is None:
        api_client = NotificationsApiClient(
            base_url=settings.api_base_url,
            api_key=settings.api_key.get_secret_value() if settings.api_key else None,
            timeout=settings.api_timeout,
        )

    channels = [
        DiscordChannel(
            sender=discord_sender,
            simulated_delay_ms=settings.discord_simulated_delay_ms,
        ),
        DatabaseChannel(api_client),
        WebSocketChannel(hub=hub, simulated_delay_ms=settings.websocket_simulated_delay_ms),
    ]
    orchestrator_kwargs: dict[str, Any] = {}
    if sleep is not None:
        orchestrator_kwargs["sleep"] = sleep
    orchestrator = BatchOrchestrator(
        channels,
        batch_size=settings.notification_batch_size,
        batch_delay_ms=settings.notification_batch_delay_ms,
        retry_delay_ms=settings.notification_retry_delay_ms,
        stats=stats,
        **orchestrator_kwargs,
    )
    return NotificationDispatcher(
        orchestrator,
        stats=stats,
        default_expiry_ms=settings.notification_default_expiry_ms,
    )
