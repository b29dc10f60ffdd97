"""Unit tests for the batch orchestrator."""

from unittest.mock import AsyncMock, patch

import pytest

from marybot.notifications.batch import BatchOrchestrator
from marybot.notifications.channels import DeliveryChannel
from marybot.notifications.models import (
    BatchError,
    DeliveryMethod,
    DeliveryResult,
    NotificationError,
    NotificationRecord,
)
from marybot.notifications.stats import InMemoryDispatchStats


class MockChannel(DeliveryChannel):
    """Mock delivery channel for testing."""

    def __init__(self, method: DeliveryMethod, fail_for: set[str] | None = None):
        self.method = method
        self.fail_for = fail_for or set()
        self.fail_all = False
        self.delivered: list[NotificationRecord] = []

    async def deliver(self, record: NotificationRecord) -> DeliveryResult:
        if self.fail_all or record.user_id in self.fail_for:
            raise RuntimeError(f"{self.method.value} failed")
        self.delivered.append(record)
        return DeliveryResult(method=self.method, status="sent")


def make_records(count: int) -> list[NotificationRecord]:
    """Build ``count`` level-up records for users 0..count-1."""
    return [
        NotificationRecord(user_id=str(i), type="level_up", title="t", message="m")
        for i in range(count)
    ]


class TestBatchOrchestratorInit:
    """Tests for orchestrator construction."""

    def test_rejects_zero_batch_size(self):
        """Batch size must be positive."""
        with pytest.raises(ValueError):
            BatchOrchestrator([], batch_size=0)

    def test_channels_copied(self):
        """Channels are exposed in order."""
        discord_channel = MockChannel(DeliveryMethod.DISCORD)
        database_channel = MockChannel(DeliveryMethod.DATABASE)
        orchestrator = BatchOrchestrator([discord_channel, database_channel])
        assert orchestrator.channels == [discord_channel, database_channel]
        assert orchestrator.batch_size == 100


class TestDispatchBatch:
    """Tests for dispatch_batch."""

    @pytest.mark.asyncio
    async def test_batches_and_pacing(self, fake_sleep):
        """250 records run as 3 batches with a pause between each pair."""
        channel = MockChannel(DeliveryMethod.DISCORD)
        orchestrator = BatchOrchestrator(
            [channel], batch_size=100, batch_delay_ms=100, sleep=fake_sleep
        )

        with patch.object(
            orchestrator, "process_batch", wraps=orchestrator.process_batch
        ) as process_batch:
            result = await orchestrator.dispatch_batch(make_records(250))

        assert [len(call.args[0]) for call in process_batch.call_args_list] == [100, 100, 50]
        assert fake_sleep.await_count == 2
        fake_sleep.assert_awaited_with(0.1)
        assert result.total == 250
        assert result.sent == 250
        assert result.failed == 0
        assert len(channel.delivered) == 250

    @pytest.mark.asyncio
    async def test_single_batch_does_not_sleep(self, fake_sleep):
        """No pause after the last batch."""
        orchestrator = BatchOrchestrator(
            [MockChannel(DeliveryMethod.DISCORD)], batch_size=100, sleep=fake_sleep
        )
        await orchestrator.dispatch_batch(make_records(100))
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty(self, fake_sleep):
        """No records means an empty result."""
        orchestrator = BatchOrchestrator([MockChannel(DeliveryMethod.DISCORD)], sleep=fake_sleep)
        result = await orchestrator.dispatch_batch([])
        assert (result.total, result.sent, result.failed, result.errors) == (0, 0, 0, [])

    @pytest.mark.asyncio
    async def test_counts_add_up(self, fake_sleep):
        """sent + failed always equals total."""
        failing = {"3", "7", "150"}
        channels = [
            MockChannel(DeliveryMethod.DISCORD, fail_for=failing),
            MockChannel(DeliveryMethod.DATABASE, fail_for=failing),
        ]
        orchestrator = BatchOrchestrator(channels, batch_size=100, sleep=fake_sleep)

        result = await orchestrator.dispatch_batch(make_records(200))

        assert result.sent + result.failed == result.total == 200
        assert result.failed == 3
        assert [e.user_id for e in result.errors] == ["3", "7", "150"]
        assert all(e.notification == "level_up" for e in result.errors)
        assert result.errors[0].error == "database failed"

    @pytest.mark.asyncio
    async def test_batch_level_failure(self, fake_sleep):
        """A crashed batch counts every record as failed and the rest still run."""
        orchestrator = BatchOrchestrator(
            [MockChannel(DeliveryMethod.DISCORD)], batch_size=10, sleep=fake_sleep
        )
        original = orchestrator.process_batch
        calls = 0

        async def flaky_process_batch(records):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("batch exploded")
            return await original(records)

        with patch.object(orchestrator, "process_batch", side_effect=flaky_process_batch):
            result = await orchestrator.dispatch_batch(make_records(25))

        assert result.total == 25
        assert result.sent == 15
        assert result.failed == 10
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.batch == 2
        assert error.affected_count == 10
        assert error.error == "batch exploded"
        assert error.to_dict() == {"batch": 2, "error": "batch exploded", "affectedCount": 10}


class TestSendSingle:
    """Tests for send_single channel fallback."""

    @pytest.mark.asyncio
    async def test_first_channel_wins(self):
        """Later channels are not tried after a success."""
        discord_channel = MockChannel(DeliveryMethod.DISCORD)
        database_channel = MockChannel(DeliveryMethod.DATABASE)
        orchestrator = BatchOrchestrator([discord_channel, database_channel])

        result = await orchestrator.send_single(make_records(1)[0])

        assert result.method == DeliveryMethod.DISCORD
        assert database_channel.delivered == []

    @pytest.mark.asyncio
    async def test_falls_back_in_order(self):
        """A failing channel hands over to the next one."""
        discord_channel = MockChannel(DeliveryMethod.DISCORD)
        discord_channel.fail_all = True
        database_channel = MockChannel(DeliveryMethod.DATABASE)
        websocket_channel = MockChannel(DeliveryMethod.WEBSOCKET)
        orchestrator = BatchOrchestrator([discord_channel, database_channel, websocket_channel])

        result = await orchestrator.send_single(make_records(1)[0])

        assert result.method == DeliveryMethod.DATABASE
        assert websocket_channel.delivered == []

    @pytest.mark.asyncio
    async def test_last_channel_error_raised(self):
        """When every channel fails the last error propagates."""
        channels = [MockChannel(DeliveryMethod.DISCORD), MockChannel(DeliveryMethod.WEBSOCKET)]
        for channel in channels:
            channel.fail_all = True
        orchestrator = BatchOrchestrator(channels)

        with pytest.raises(RuntimeError, match="websocket failed"):
            await orchestrator.send_single(make_records(1)[0])

    @pytest.mark.asyncio
    async def test_no_channels(self):
        """An orchestrator without channels cannot deliver."""
        with pytest.raises(NotificationError):
            await BatchOrchestrator([]).send_single(make_records(1)[0])

    @pytest.mark.asyncio
    async def test_records_stats(self):
        """Each attempt is counted per channel."""
        stats = InMemoryDispatchStats()
        discord_channel = MockChannel(DeliveryMethod.DISCORD)
        discord_channel.fail_all = True
        orchestrator = BatchOrchestrator(
            [discord_channel, MockChannel(DeliveryMethod.DATABASE)], stats=stats
        )

        await orchestrator.send_single(make_records(1)[0])

        snapshot = stats.snapshot()["deliveries"]
        assert snapshot["discord"] == {"succeeded": 0, "failed": 1}
        assert snapshot["database"] == {"succeeded": 1, "failed": 0}


class TestRetryFailed:
    """Tests for retry_failed."""

    @pytest.mark.asyncio
    async def test_retries_records(self, fake_sleep):
        """Per-record errors are retried one at a time."""
        records = make_records(3)
        channel = MockChannel(DeliveryMethod.DISCORD, fail_for={"2"})
        orchestrator = BatchOrchestrator([channel], retry_delay_ms=200, sleep=fake_sleep)
        errors = [
            BatchError(error="x", user_id=r.user_id, notification=r.type, record=r)
            for r in records
        ]

        result = await orchestrator.retry_failed(errors)

        assert result.retried == 3
        assert result.succeeded == 2
        assert result.still_failed == 1
        assert fake_sleep.await_count == 3
        fake_sleep.assert_awaited_with(0.2)

    @pytest.mark.asyncio
    async def test_skips_batch_errors(self, fake_sleep):
        """Whole-batch errors carry no record and are skipped."""
        orchestrator = BatchOrchestrator(
            [MockChannel(DeliveryMethod.DISCORD)], sleep=fake_sleep
        )

        result = await orchestrator.retry_failed(
            [BatchError(error="x", batch=1, affected_count=100)]
        )

        assert result.retried == 0
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_after_dispatch(self, fake_sleep):
        """Errors from a dispatch can be fed straight back in."""
        channel = MockChannel(DeliveryMethod.DISCORD, fail_for={"1"})
        orchestrator = BatchOrchestrator([channel], sleep=fake_sleep)

        result = await orchestrator.dispatch_batch(make_records(3))
        channel.fail_for.clear()
        retry = await orchestrator.retry_failed(result.errors)

        assert retry.retried == 1
        assert retry.succeeded == 1


@pytest.mark.asyncio
async def test_process_batch_delivers_every_record():
    """Every record in a batch is attempted."""
    started: list[str] = []

    class RecordingChannel(MockChannel):
        async def deliver(self, record):
            started.append(record.user_id)
            return await super().deliver(record)

    orchestrator = BatchOrchestrator(
        [RecordingChannel(DeliveryMethod.DISCORD)], batch_size=5, sleep=AsyncMock()
    )
    result = await orchestrator.process_batch(make_records(5))

    assert result.sent == 5
    assert sorted(started) == ["0", "1", "2", "3", "4"]
