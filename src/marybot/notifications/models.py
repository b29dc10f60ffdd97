"""Notification models: kinds, priorities, jobs, records and results.

A :class:`NotificationJob` is expanded into one :class:`NotificationRecord`
per recipient (per matching achievement for ``achievement_unlock``). Delivery
outcomes are aggregated into a :class:`BatchResult` and wrapped in either a
:class:`DispatchSuccess` or a :class:`DispatchFailure`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class NotificationError(Exception):
    """Base exception for notification dispatch errors."""

    pass


class UnknownNotificationTypeError(NotificationError):
    """Raised when a job names a notification type with no formatter."""

    def __init__(self, notification_type: Any) -> None:
        super().__init__(f"Unknown notification type: {notification_type}")
        self.notification_type = notification_type


class MalformedJobError(NotificationError):
    """Raised when an inbound job message does not have the expected shape."""

    pass


class NotificationKind(str, Enum):
    """Notification types a job may request."""

    LEVEL_UP = "level_up"
    DAILY_REMINDER = "daily_reminder"
    EVENT_ANNOUNCEMENT = "event_announcement"
    ACHIEVEMENT_UNLOCK = "achievement_unlock"
    SYSTEM_MAINTENANCE = "system_maintenance"
    CUSTOM = "custom"


class NotificationPriority(str, Enum):
    """Coarse urgency tag, mapped to an embed colour on delivery."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def parse(cls, value: Any) -> NotificationPriority:
        """Return the member for ``value``, or MEDIUM if it is not a known priority."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.MEDIUM


class DeliveryMethod(str, Enum):
    """Channels a record can be delivered through, in fallback order."""

    DISCORD = "discord"
    DATABASE = "database"
    WEBSOCKET = "websocket"


def to_jsonable(value: Any) -> Any:
    """Recursively convert datetimes and enums into JSON-friendly values."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [to_jsonable(item) for item in value]
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True)
class Recipient:
    """A delivery target.

    ``user_id`` keeps the value as submitted (string or number); records are
    addressed by its string form, :attr:`key`.
    """

    user_id: str | int

    @property
    def key(self) -> str:
        """The id as used on delivery records."""
        return str(self.user_id)

    def matches(self, user_id: Any) -> bool:
        """Strict id comparison: ``1`` and ``"1"`` are different users."""
        if _is_number(user_id) and _is_number(self.user_id):
            return bool(user_id == self.user_id)
        return type(user_id) is type(self.user_id) and user_id == self.user_id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Recipient:
        """Create a Recipient from a ``{"userId": ...}`` mapping."""
        if not isinstance(data, dict) or "userId" not in data:
            raise MalformedJobError(f"Recipient must be an object with a userId: {data!r}")
        return cls(user_id=data["userId"])


@dataclass(frozen=True)
class ActionButton:
    """A button rendered under a delivered notification."""

    label: str
    action: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionButton:
        """Create an ActionButton from a ``{"label", "action"}`` mapping."""
        return cls(label=str(data["label"]), action=str(data["action"]))

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for serialisation."""
        return {"label": self.label, "action": self.action}


@dataclass(frozen=True)
class NotificationJob:
    """One logical notification-dispatch request.

    Attributes:
        notification_type: Type as submitted (not coerced); validated when formatted.
        recipients: Delivery targets.
        data: Type-specific payload.
        options: Optional ``priority`` / ``expiresIn`` overrides.
    """

    notification_type: Any
    recipients: tuple[Recipient, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, job: dict[str, Any]) -> NotificationJob:
        """Create a job from the ``job`` object of an inbound message."""
        if not isinstance(job, dict):
            raise MalformedJobError("Job must be an object")
        if job.get("notificationType") is None:
            raise MalformedJobError("Job notificationType is required")
        recipients = job.get("recipients") or []
        if not isinstance(recipients, list):
            raise MalformedJobError("Job recipients must be a list")
        data = job.get("data") or {}
        options = job.get("options") or {}
        if not isinstance(data, dict) or not isinstance(options, dict):
            raise MalformedJobError("Job data and options must be objects")
        return cls(
            notification_type=job["notificationType"],
            recipients=tuple(Recipient.from_dict(r) for r in recipients),
            data=data,
            options=options,
        )

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> NotificationJob:
        """Create a job from a worker message ``{"job": {...}}``."""
        if not isinstance(message, dict) or "job" not in message:
            raise MalformedJobError("Message has no job")
        return cls.from_dict(message["job"])


@dataclass
class NotificationRecord:
    """One fully formatted notification destined for exactly one recipient."""

    user_id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    action_buttons: list[ActionButton] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire shape."""
        result: dict[str, Any] = {
            "userId": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": to_jsonable(self.data),
            "priority": self.priority.value,
        }
        if self.action_buttons is not None:
            result["actionButtons"] = [b.to_dict() for b in self.action_buttons]
        return result


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome reported by a channel that accepted a record."""

    method: DeliveryMethod
    status: str
    id: str | None = None


@dataclass
class BatchError:
    """A failure recorded in a :class:`BatchResult`.

    Per-record entries carry ``user_id``, ``notification`` (the type) and the
    ``record`` itself so it can be retried. Aggregate entries carry ``batch``
    (1-based index) and ``affected_count``.
    """

    error: str
    user_id: str | None = None
    notification: str | None = None
    record: NotificationRecord | None = None
    batch: int | None = None
    affected_count: int | None = None

    @property
    def is_batch_failure(self) -> bool:
        """Whether this entry covers a whole batch rather than one record."""
        return self.batch is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire shape."""
        if self.is_batch_failure:
            return {
                "batch": self.batch,
                "error": self.error,
                "affectedCount": self.affected_count,
            }
        return {
            "userId": self.user_id,
            "error": self.error,
            "notification": self.notification,
        }


@dataclass
class BatchResult:
    """Aggregate delivery counts over one dispatch call."""

    total: int = 0
    sent: int = 0
    failed: int = 0
    errors: list[BatchError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class RetryResult:
    """Counts from re-delivering previously failed records."""

    retried: int = 0
    succeeded: int = 0
    still_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary for serialisation."""
        return {
            "retried": self.retried,
            "succeeded": self.succeeded,
            "stillFailed": self.still_failed,
        }


@dataclass(frozen=True)
class DispatchSuccess:
    """The pipeline ran; individual failures are inside ``result``."""

    notification_type: str
    result: BatchResult
    timestamp: datetime
    processing_time: int

    success: bool = field(default=True, init=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the settled worker message."""
        return {
            "success": True,
            "notificationType": self.notification_type,
            "result": self.result.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "processingTime": self.processing_time,
        }


@dataclass(frozen=True)
class DispatchFailure:
    """The job was rejected before any delivery was attempted."""

    error: str
    timestamp: datetime

    success: bool = field(default=False, init=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the settled worker message."""
        return {
            "success": False,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


DispatchResult = DispatchSuccess | DispatchFailure
