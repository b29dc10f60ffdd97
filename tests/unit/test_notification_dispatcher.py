"""Unit tests for the notification dispatcher."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marybot.notifications.batch import BatchOrchestrator
from marybot.notifications.channels import DatabaseChannel, DiscordChannel, WebSocketChannel
from marybot.notifications.dispatcher import NotificationDispatcher, create_dispatcher
from marybot.notifications.models import (
    BatchResult,
    DispatchFailure,
    DispatchSuccess,
    NotificationJob,
    Recipient,
)
from marybot.notifications.stats import InMemoryDispatchStats


@pytest.fixture
def dispatcher(mock_settings, mock_api_client, fake_sleep, fixed_now):
    """Dispatcher with simulated Discord and push channels."""
    stats = InMemoryDispatchStats()
    dispatcher = create_dispatcher(
        mock_settings,
        api_client=mock_api_client,
        stats=stats,
        sleep=fake_sleep,
    )
    dispatcher._clock = lambda: fixed_now
    return dispatcher


class TestCreateDispatcher:
    """Tests for create_dispatcher."""

    def test_channel_order(self, mock_settings, mock_api_client):
        """Channels are wired discord, database, websocket."""
        dispatcher = create_dispatcher(mock_settings, api_client=mock_api_client)
        channels = dispatcher._orchestrator.channels
        assert [type(c) for c in channels] == [DiscordChannel, DatabaseChannel, WebSocketChannel]

    def test_settings_applied(self, mock_settings, mock_api_client):
        """Batch size comes from settings."""
        mock_settings.notification_batch_size = 25
        dispatcher = create_dispatcher(mock_settings, api_client=mock_api_client)
        assert dispatcher._orchestrator.batch_size == 25
        assert dispatcher._default_expiry_ms == mock_settings.notification_default_expiry_ms

    def test_builds_api_client(self, mock_settings):
        """An API client is created from settings when none is given."""
        dispatcher = create_dispatcher(mock_settings)
        database = dispatcher._orchestrator.channels[1]
        assert database._api_client._base_url == "http://api.test"


class TestDispatch:
    """Tests for NotificationDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_level_up_success(self, dispatcher, fixed_now):
        """All recipients are delivered through Discord."""
        job = NotificationJob(
            notification_type="level_up",
            recipients=(Recipient("1"), Recipient("2"), Recipient("3")),
            data={"newLevel": 5},
        )

        result = await dispatcher.dispatch(job)

        assert isinstance(result, DispatchSuccess)
        assert result.success is True
        assert result.notification_type == "level_up"
        assert result.result.total == 3
        assert result.result.sent == 3
        assert result.result.failed == 0
        assert result.timestamp == fixed_now
        assert result.processing_time >= 0

    @pytest.mark.asyncio
    async def test_unknown_type(self, dispatcher):
        """Unknown types settle as a failure without delivery."""
        with patch.object(
            dispatcher._orchestrator, "dispatch_batch", new_callable=AsyncMock
        ) as dispatch_batch:
            result = await dispatcher.dispatch(NotificationJob(notification_type="bogus"))

        assert isinstance(result, DispatchFailure)
        assert result.error == "Unknown notification type: bogus"
        dispatch_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_payload(self, dispatcher):
        """A missing type-specific payload settles as a failure."""
        job = NotificationJob(notification_type="event_announcement", recipients=(Recipient("1"),))
        result = await dispatcher.dispatch(job)
        assert isinstance(result, DispatchFailure)
        assert "eventData" in result.error

    @pytest.mark.asyncio
    async def test_bad_button_shape(self, dispatcher):
        """Buttons missing keys settle as a failure."""
        job = NotificationJob(
            notification_type="custom",
            recipients=(Recipient("1"),),
            data={"actionButtons": [{"label": "no action"}]},
        )
        result = await dispatcher.dispatch(job)
        assert isinstance(result, DispatchFailure)

    @pytest.mark.asyncio
    async def test_expiry_out_of_range(self, dispatcher):
        """An expiry past the representable date range settles as a failure."""
        job = NotificationJob(
            notification_type="custom",
            recipients=(Recipient("1"),),
            options={"expiresIn": 10**17},
        )
        result = await dispatcher.dispatch(job)
        assert isinstance(result, DispatchFailure)
        assert dispatcher._stats.snapshot()["jobs"]["custom"]["failed"] == 1

    @pytest.mark.asyncio
    async def test_scheduled_time_out_of_range(self, dispatcher):
        """An unrenderable scheduledTime is shown as submitted."""
        job = NotificationJob(
            notification_type="system_maintenance",
            recipients=(Recipient("1"),),
            data={"maintenanceType": "scheduled", "scheduledTime": 1e30, "duration": "1h"},
        )
        result = await dispatcher.dispatch(job)
        assert isinstance(result, DispatchSuccess)
        assert result.result.sent == 1

    @pytest.mark.asyncio
    async def test_zero_recipients(self, dispatcher):
        """An empty job still succeeds."""
        result = await dispatcher.dispatch(NotificationJob(notification_type="custom"))
        assert isinstance(result, DispatchSuccess)
        assert result.result.to_dict() == {"total": 0, "sent": 0, "failed": 0, "errors": []}

    @pytest.mark.asyncio
    async def test_records_job_stats(self, dispatcher):
        """Settled jobs are counted per type."""
        await dispatcher.dispatch(
            NotificationJob(notification_type="level_up", recipients=(Recipient("1"),))
        )
        await dispatcher.dispatch(NotificationJob(notification_type="bogus"))

        jobs = dispatcher._stats.snapshot()["jobs"]
        assert jobs["level_up"]["jobs"] == 1
        assert jobs["level_up"]["failed"] == 0
        assert jobs["bogus"]["failed"] == 1


class TestHandleMessage:
    """Tests for NotificationDispatcher.handle_message."""

    @pytest.mark.asyncio
    async def test_success_reply(self, dispatcher):
        """A good message yields a settled success dict."""
        reply = await dispatcher.handle_message(
            {
                "job": {
                    "notificationType": "daily_reminder",
                    "recipients": [{"userId": "1"}],
                    "data": {"reminderType": "quiz_available"},
                }
            }
        )
        assert reply["success"] is True
        assert reply["notificationType"] == "daily_reminder"
        assert reply["result"]["sent"] == 1
        assert "processingTime" in reply

    @pytest.mark.asyncio
    async def test_unknown_type_reply(self, dispatcher):
        """Unknown types yield a failure dict."""
        reply = await dispatcher.handle_message(
            {"job": {"notificationType": "bogus", "recipients": [{"userId": "1"}]}}
        )
        assert reply["success"] is False
        assert reply["error"] == "Unknown notification type: bogus"
        assert "stack" not in reply

    @pytest.mark.asyncio
    async def test_malformed_message(self, dispatcher):
        """A message without a job is rejected."""
        reply = await dispatcher.handle_message({"nope": True})
        assert reply["success"] is False
        assert reply["error"] == "Message has no job"

    @pytest.mark.asyncio
    async def test_expiry_out_of_range_reply(self, dispatcher):
        """A formatting error settles as a failure dict, not a crash."""
        reply = await dispatcher.handle_message(
            {
                "job": {
                    "notificationType": "custom",
                    "recipients": [{"userId": "1"}],
                    "options": {"expiresIn": 10**17},
                }
            }
        )
        assert reply["success"] is False
        assert "timestamp" in reply
        assert "stack" not in reply

    @pytest.mark.asyncio
    async def test_missing_notification_type_reply(self, dispatcher):
        """A job without a notificationType is rejected with a clear error."""
        reply = await dispatcher.handle_message({"job": {"recipients": [{"userId": "1"}]}})
        assert reply["success"] is False
        assert reply["error"] == "Job notificationType is required"
        assert "None" not in reply["error"]

    @pytest.mark.asyncio
    async def test_crash_reply_includes_stack(self, dispatcher):
        """An unexpected crash is reported with a stack trace."""
        with patch.object(
            dispatcher._orchestrator,
            "dispatch_batch",
            new_callable=AsyncMock,
            side_effect=RuntimeError("kaboom"),
        ):
            reply = await dispatcher.handle_message(
                {"job": {"notificationType": "level_up", "recipients": [{"userId": "1"}]}}
            )

        assert reply["success"] is False
        assert reply["error"] == "kaboom"
        assert "RuntimeError" in reply["stack"]


class TestRetryFailed:
    """Tests for NotificationDispatcher.retry_failed."""

    @pytest.mark.asyncio
    async def test_delegates_to_orchestrator(self):
        """Retry is handled by the orchestrator."""
        orchestrator = MagicMock(spec=BatchOrchestrator)
        orchestrator.retry_failed = AsyncMock(return_value="retried")
        dispatcher = NotificationDispatcher(orchestrator)

        result = await dispatcher.retry_failed([])

        assert result == "retried"
        orchestrator.retry_failed.assert_awaited_once_with([])


@pytest.mark.asyncio
async def test_delivery_failures_stay_inside_success(mock_settings, fake_sleep):
    """Failed deliveries are reported in the batch result, not as a failure."""
    failing = MagicMock()
    failing.method = DiscordChannel.method
    failing.deliver = AsyncMock(side_effect=RuntimeError("down"))
    orchestrator = BatchOrchestrator([failing], sleep=fake_sleep)
    dispatcher = NotificationDispatcher(orchestrator)

    result = await dispatcher.dispatch(
        NotificationJob(notification_type="level_up", recipients=(Recipient("7"),))
    )

    assert isinstance(result, DispatchSuccess)
    assert isinstance(result.result, BatchResult)
    assert result.result.failed == 1
    assert result.result.errors[0].to_dict() == {
        "userId": "7",
        "error": "down",
        "notification": "level_up",
    }
