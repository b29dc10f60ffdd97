"""Batch orchestration for notification delivery.

Records are split into fixed-size batches. Records inside a batch are
delivered concurrently; batches run one after another with a short pause in
between. Every record walks the configured channels in order until one of
them accepts it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from marybot.logging import get_logger
from marybot.notifications.channels import DeliveryChannel
from marybot.notifications.models import (
    BatchError,
    BatchResult,
    DeliveryResult,
    NotificationError,
    NotificationRecord,
    RetryResult,
)
from marybot.notifications.stats import DispatchStatsSink

log = get_logger("marybot.notifications.batch")

Sleep = Callable[[float], Awaitable[None]]


class BatchOrchestrator:
    """Delivers notification records in paced batches with channel fallback."""

    def __init__(
        self,
        channels: Sequence[DeliveryChannel],
        *,
        batch_size: int = 100,
        batch_delay_ms: int = 100,
        retry_delay_ms: int = 200,
        sleep: Sleep = asyncio.sleep,
        stats: DispatchStatsSink | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            channels: Delivery channels in the order they are attempted.
            batch_size: Maximum records per batch.
            batch_delay_ms: Pause between consecutive batches.
            retry_delay_ms: Pause after each retried record.
            sleep: Awaitable sleep used for pacing (injectable for tests).
            stats: Optional sink for per-channel delivery outcomes.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got: {batch_size}")
        self._channels = list(channels)
        self._batch_size = batch_size
        self._batch_delay = batch_delay_ms / 1000.0
        self._retry_delay = retry_delay_ms / 1000.0
        self._sleep = sleep
        self._stats = stats

    @property
    def channels(self) -> list[DeliveryChannel]:
        """Channels in fallback order."""
        return list(self._channels)

    @property
    def batch_size(self) -> int:
        """Maximum records per batch."""
        return self._batch_size

    async def dispatch_batch(self, records: Sequence[NotificationRecord]) -> BatchResult:
        """Deliver all records, batch by batch.

        Never raises: failures are collected in the returned result.
        """
        result = BatchResult(total=len(records))

        for index, start in enumerate(range(0, len(records), self._batch_size)):
            batch = records[start : start + self._batch_size]
            try:
                batch_result = await self.process_batch(batch)
                result.sent += batch_result.sent
                result.failed += batch_result.failed
                result.errors.extend(batch_result.errors)
            except Exception as e:
                log.exception("batch_failed", batch=index + 1, size=len(batch))
                result.failed += len(batch)
                result.errors.append(
                    BatchError(error=str(e), batch=index + 1, affected_count=len(batch))
                )

            if start + self._batch_size < len(records):
                await self._sleep(self._batch_delay)

        log.info(
            "batches_dispatched",
            total=result.total,
            sent=result.sent,
            failed=result.failed,
        )
        return result

    async def process_batch(self, records: Sequence[NotificationRecord]) -> BatchResult:
        """Deliver one batch concurrently; one record failing never cancels another."""
        outcomes = await asyncio.gather(
            *(self.send_single(record) for record in records),
            return_exceptions=True,
        )

        result = BatchResult(total=len(records))
        for record, outcome in zip(records, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                result.failed += 1
                result.errors.append(
                    BatchError(
                        error=str(outcome),
                        user_id=record.user_id,
                        notification=record.type,
                        record=record,
                    )
                )
            else:
                result.sent += 1
        return result

    async def send_single(self, record: NotificationRecord) -> DeliveryResult:
        """Deliver one record through the first channel that accepts it.

        Raises:
            Exception: The last channel's error when every channel failed.
        """
        if not self._channels:
            raise NotificationError("No delivery channels configured")

        last_index = len(self._channels) - 1
        for index, channel in enumerate(self._channels):
            try:
                delivery = await channel.deliver(record)
            except Exception as e:
                if self._stats is not None:
                    self._stats.record_delivery(channel.method.value, False)
                log.warning(
                    "delivery_method_failed",
                    method=channel.method.value,
                    user_id=record.user_id,
                    error=str(e),
                )
                if index == last_index:
                    raise
                continue

            if self._stats is not None:
                self._stats.record_delivery(channel.method.value, True)
            return delivery

        raise AssertionError("unreachable")  # pragma: no cover

    async def retry_failed(self, errors: Sequence[BatchError]) -> RetryResult:
        """Re-deliver the records attached to per-record errors, one at a time.

        Whole-batch errors carry no record and are skipped.
        """
        retried = succeeded = still_failed = 0

        for error in errors:
            if error.record is None:
                continue
            retried += 1
            try:
                await self.send_single(error.record)
                succeeded += 1
            except Exception as e:
                still_failed += 1
                log.error("notification_retry_failed", user_id=error.user_id, error=str(e))

            await self._sleep(self._retry_delay)

        log.info(
            "notification_retry_completed",
            retried=retried,
            succeeded=succeeded,
            still_failed=still_failed,
        )
        return RetryResult(retried=retried, succeeded=succeeded, still_failed=still_failed)
