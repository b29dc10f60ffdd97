"""Batch notification delivery for MaryBot."""

from marybot.notifications.batch import BatchOrchestrator
from marybot.notifications.channels import (
    DatabaseChannel,
    DeliveryChannel,
    DiscordChannel,
    DiscordDMSender,
    WebSocketChannel,
)
from marybot.notifications.dispatcher import NotificationDispatcher, create_dispatcher
from marybot.notifications.models import (
    BatchResult,
    DispatchFailure,
    DispatchSuccess,
    NotificationJob,
    NotificationKind,
    NotificationPriority,
    NotificationRecord,
)

__all__ = [
    "BatchOrchestrator",
    "BatchResult",
    "DatabaseChannel",
    "DeliveryChannel",
    "DiscordChannel",
    "DiscordDMSender",
    "DispatchFailure",
    "DispatchSuccess",
    "NotificationDispatcher",
    "NotificationJob",
    "NotificationKind",
    "NotificationPriority",
    "NotificationRecord",
    "WebSocketChannel",
    "create_dispatcher",
]
