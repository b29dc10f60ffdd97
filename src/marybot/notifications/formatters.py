"""Per-type notification formatters.

Each :class:`NotificationKind` has exactly one formatter that expands a job
into notification records. :func:`format_notifications` is the only entry
point; it rejects unknown types before any record is built.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from marybot.notifications.models import (
    ActionButton,
    MalformedJobError,
    NotificationJob,
    NotificationKind,
    NotificationPriority,
    NotificationRecord,
    Recipient,
    UnknownNotificationTypeError,
)

DEFAULT_EXPIRY_MS = 24 * 60 * 60 * 1000

Formatter = Callable[
    [Sequence[Recipient], dict[str, Any], dict[str, Any], datetime],
    list[NotificationRecord],
]

_REMINDER_TEXT: dict[str, tuple[str, str]] = {
    "daily_coins": (
        "💰 Daily Reward Available!",
        "Don't forget to claim your daily coins and XP bonus!",
    ),
    "quiz_available": (
        "🧠 New Quiz Available!",
        "Test your anime knowledge and earn rewards!",
    ),
    "gacha_discount": (
        "🎲 Special Gacha Discount!",
        "Limited time: 50% off all gacha pulls!",
    ),
}


def format_timestamp(value: Any) -> str:
    """Render a datetime, ISO string or epoch-milliseconds value for display.

    Values that cannot be interpreted are returned as ``str(value)``.
    """
    moment: datetime | None = None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        try:
            moment = datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            # Outside the platform's representable range, or NaN
            moment = None
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value)
        except ValueError:
            moment = None
    if moment is None:
        return str(value)
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def _level_up(
    recipients: Sequence[Recipient],
    data: dict[str, Any],
    options: dict[str, Any],
    now: datetime,
) -> list[NotificationRecord]:
    new_level = data.get("newLevel")
    return [
        NotificationRecord(
            user_id=recipient.key,
            type=NotificationKind.LEVEL_UP.value,
            title="🎉 Level Up!",
            message=f"Congratulations! You've reached level {new_level}!",
            data={
                "oldLevel": data.get("oldLevel"),
                "newLevel": new_level,
                "coinsReward": data.get("coinsReward"),
                "timestamp": now,
            },
            priority=NotificationPriority.HIGH,
        )
        for recipient in recipients
    ]


def _daily_reminder(
    recipients: Sequence[Recipient],
    data: dict[str, Any],
    options: dict[str, Any],
    now: datetime,
) -> list[NotificationRecord]:
    reminder_type = data.get("reminderType", "daily_coins")
    # Unrecognised reminder types fall through to the generic text
    title, message = _REMINDER_TEXT.get(
        reminder_type,
        ("🔔 Reminder", data.get("customMessage") or "You have pending activities!"),
    )
    expires_at = now + timedelta(milliseconds=DEFAULT_EXPIRY_MS)
    return [
        NotificationRecord(
            user_id=recipient.key,
            type=NotificationKind.DAILY_REMINDER.value,
            title=title,
            message=message,
            data={
                "reminderType": reminder_type,
                "timestamp": now,
                "expiresAt": expires_at,
            },
            priority=NotificationPriority.MEDIUM,
        )
        for recipient in recipients
    ]


def _event_announcement(
    recipients: Sequence[Recipient],
    data: dict[str, Any],
    options: dict[str, Any],
    now: datetime,
) -> list[NotificationRecord]:
    event_data = data.get("eventData")
    if not isinstance(event_data, dict):
        raise MalformedJobError("event_announcement requires data.eventData")

    event_id = event_data.get("id")
    return [
        NotificationRecord(
            user_id=recipient.key,
            type=NotificationKind.EVENT_ANNOUNCEMENT.value,
            title=event_data.get("title") or "🎉 New Event!",
            message=event_data.get("description") or "",
            data={
                "eventType": data.get("eventType"),
                "eventId": event_id,
                "startTime": event_data.get("startTime"),
                "endTime": event_data.get("endTime"),
                "rewards": event_data.get("rewards"),
                "timestamp": now,
            },
            priority=NotificationPriority.HIGH,
            action_buttons=[
                ActionButton(label="Participate", action=f"event_join:{event_id}"),
                ActionButton(label="Learn More", action=f"event_info:{event_id}"),
            ],
        )
        for recipient in recipients
    ]


def _achievement_unlock(
    recipients: Sequence[Recipient],
    data: dict[str, Any],
    options: dict[str, Any],
    now: datetime,
) -> list[NotificationRecord]:
    achievements = data.get("achievements")
    if not isinstance(achievements, list):
        raise MalformedJobError("achievement_unlock requires data.achievements")

    records: list[NotificationRecord] = []
    for recipient in recipients:
        for achievement in achievements:
            if not recipient.matches(achievement.get("userId")):
                continue
            rarity = achievement.get("rarity")
            records.append(
                NotificationRecord(
                    user_id=recipient.key,
                    type=NotificationKind.ACHIEVEMENT_UNLOCK.value,
                    title="🏆 Achievement Unlocked!",
                    message=f"You've earned: {achievement.get('name')}",
                    data={
                        "achievementId": achievement.get("id"),
                        "achievementName": achievement.get("name"),
                        "description": achievement.get("description"),
                        "rewards": achievement.get("rewards"),
                        "rarity": rarity,
                        "timestamp": now,
                    },
                    priority=(
                        NotificationPriority.HIGH
                        if rarity == "legendary"
                        else NotificationPriority.MEDIUM
                    ),
                )
            )
    return records


def _system_maintenance(
    recipients: Sequence[Recipient],
    data: dict[str, Any],
    options: dict[str, Any],
    now: datetime,
) -> list[NotificationRecord]:
    maintenance_type = data.get("maintenanceType")
    scheduled_time = data.get("scheduledTime")
    duration = data.get("duration")

    if maintenance_type == "scheduled":
        title = "🔧 Scheduled Maintenance"
        message = (
            f"Maintenance scheduled for {format_timestamp(scheduled_time)}. "
            f"Duration: {duration}"
        )
    elif maintenance_type == "emergency":
        title = "⚠️ Emergency Maintenance"
        message = "Emergency maintenance in progress. Some features may be unavailable."
    elif maintenance_type == "completed":
        title = "✅ Maintenance Complete"
        message = "Maintenance has been completed. All features are now available."
    else:
        title = "🔧 System Maintenance"
        message = data.get("customMessage") or "System maintenance notification"

    return [
        NotificationRecord(
            user_id=recipient.key,
            type=NotificationKind.SYSTEM_MAINTENANCE.value,
            title=title,
            message=message,
            data={
                "maintenanceType": maintenance_type,
                "scheduledTime": scheduled_time,
                "duration": duration,
                "affectedFeatures": data.get("affectedFeatures"),
                "timestamp": now,
            },
            priority=(
                NotificationPriority.HIGH
                if maintenance_type == "emergency"
                else NotificationPriority.LOW
            ),
        )
        for recipient in recipients
    ]


def _custom(
    recipients: Sequence[Recipient],
    data: dict[str, Any],
    options: dict[str, Any],
    now: datetime,
) -> list[NotificationRecord]:
    custom_data = data.get("customData") or {}
    buttons = [ActionButton.from_dict(b) for b in data.get("actionButtons") or []]
    priority = NotificationPriority.parse(options.get("priority", "medium"))
    expires_in = options.get("expiresIn", DEFAULT_EXPIRY_MS)
    expires_at = now + timedelta(milliseconds=expires_in)

    return [
        NotificationRecord(
            user_id=recipient.key,
            type=NotificationKind.CUSTOM.value,
            title=data.get("title", ""),
            message=data.get("message", ""),
            data={**custom_data, "timestamp": now, "expiresAt": expires_at},
            priority=priority,
            action_buttons=list(buttons),
        )
        for recipient in recipients
    ]


FORMATTERS: dict[NotificationKind, Formatter] = {
    NotificationKind.LEVEL_UP: _level_up,
    NotificationKind.DAILY_REMINDER: _daily_reminder,
    NotificationKind.EVENT_ANNOUNCEMENT: _event_announcement,
    NotificationKind.ACHIEVEMENT_UNLOCK: _achievement_unlock,
    NotificationKind.SYSTEM_MAINTENANCE: _system_maintenance,
    NotificationKind.CUSTOM: _custom,
}


def resolve_kind(notification_type: Any) -> NotificationKind:
    """Validate a raw notification type.

    Raises:
        UnknownNotificationTypeError: If no formatter exists for the type.
    """
    try:
        return NotificationKind(notification_type)
    except ValueError:
        raise UnknownNotificationTypeError(notification_type) from None


def format_notifications(
    job: NotificationJob,
    now: datetime | None = None,
    *,
    default_expiry_ms: int = DEFAULT_EXPIRY_MS,
) -> list[NotificationRecord]:
    """Expand a job into notification records.

    Args:
        job: The job to expand.
        now: Dispatch time stamped into every record (defaults to current UTC time).
        default_expiry_ms: Expiry for custom notifications without ``expiresIn``.

    Returns:
        One record per recipient, or per matching achievement.

    Raises:
        UnknownNotificationTypeError: If the job's type is not supported.
        MalformedJobError: If the type-specific payload is missing required keys.
    """
    kind = resolve_kind(job.notification_type)
    formatter = FORMATTERS[kind]
    options = {"expiresIn": default_expiry_ms, **job.options}
    return formatter(job.recipients, job.data, options, now or datetime.now(UTC))
