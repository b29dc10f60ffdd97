"""Delivery channels for notification records.

Channels are tried in a fixed order by the batch orchestrator:
``discord`` -> ``database`` -> ``websocket``. A channel signals failure by
raising; the database channel never raises because it degrades to a local
placeholder id when the REST API is unavailable.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Protocol

import discord

from marybot.logging import get_logger
from marybot.notifications.api_client import NotificationsApiClient
from marybot.notifications.formatters import format_timestamp
from marybot.notifications.models import (
    DeliveryMethod,
    DeliveryResult,
    NotificationError,
    NotificationPriority,
    NotificationRecord,
)
from marybot.notifications.realtime import ConnectionHub

log = get_logger("marybot.notifications.channels")

PRIORITY_COLORS: dict[str, int] = {
    NotificationPriority.LOW.value: 0x95A5A6,  # Gray
    NotificationPriority.MEDIUM.value: 0x3498DB,  # Blue
    NotificationPriority.HIGH.value: 0xE74C3C,  # Red
    NotificationPriority.URGENT.value: 0x9B59B6,  # Purple
}

# Discord component type codes
_ACTION_ROW = 1
_BUTTON = 2
_BUTTON_STYLE_PRIMARY = 1


class DiscordDeliveryError(NotificationError):
    """Raised when a notification cannot be delivered as a Discord DM."""

    pass


def priority_color(priority: NotificationPriority | str) -> int:
    """Map a priority to an embed colour; unknown priorities get the medium colour."""
    key = priority.value if isinstance(priority, NotificationPriority) else str(priority)
    return PRIORITY_COLORS.get(key, PRIORITY_COLORS[NotificationPriority.MEDIUM.value])


def format_embed_fields(data: dict[str, Any]) -> list[dict[str, Any]]:
    """Build embed fields from the well-known keys of a record's data."""
    fields: list[dict[str, Any]] = []

    if data.get("newLevel"):
        fields.append({"name": "New Level", "value": str(data["newLevel"]), "inline": True})

    if data.get("coinsReward"):
        fields.append(
            {"name": "Coins Reward", "value": f"{data['coinsReward']} 🪙", "inline": True}
        )

    if data.get("eventType"):
        fields.append({"name": "Event Type", "value": str(data["eventType"]), "inline": True})

    if data.get("expiresAt"):
        fields.append(
            {"name": "Expires", "value": format_timestamp(data["expiresAt"]), "inline": True}
        )

    return fields


def build_discord_payload(record: NotificationRecord) -> dict[str, Any]:
    """Build the embed-shaped delivery payload for a record."""
    components = None
    if record.action_buttons:
        components = [
            {
                "type": _ACTION_ROW,
                "components": [
                    {
                        "type": _BUTTON,
                        "style": _BUTTON_STYLE_PRIMARY,
                        "label": button.label,
                        "custom_id": button.action,
                    }
                    for button in record.action_buttons
                ],
            }
        ]

    return {
        "userId": record.user_id,
        "embed": {
            "title": record.title,
            "description": record.message,
            "color": priority_color(record.priority),
            "timestamp": record.data.get("timestamp"),
            "fields": format_embed_fields(record.data),
        },
        "components": components,
    }


class DiscordSender(Protocol):
    """Performs the actual Discord API call for a built payload."""

    async def send(self, payload: dict[str, Any]) -> None: ...


class DiscordDMSender:
    """Sends payloads as direct messages through a connected ``discord.Client``."""

    def __init__(self, bot: discord.Client):
        """Initialize the sender.

        Args:
            bot: Discord bot client (must be connected before sending).
        """
        self._bot = bot

    async def send(self, payload: dict[str, Any]) -> None:
        """DM the payload to its user.

        Raises:
            DiscordDeliveryError: If the bot is not ready or the DM is refused.
        """
        if not self._bot.is_ready():
            raise DiscordDeliveryError("Discord bot is not ready")

        user_id = payload["userId"]
        try:
            user = await self._bot.fetch_user(int(user_id))
            await user.send(embed=self._create_embed(payload), view=self._create_view(payload))
        except discord.Forbidden as e:
            raise DiscordDeliveryError(f"User {user_id} has DMs disabled") from e
        except discord.NotFound as e:
            raise DiscordDeliveryError(f"Discord user {user_id} not found") from e
        except discord.HTTPException as e:
            raise DiscordDeliveryError(f"Discord API error: {e}") from e

    @staticmethod
    def _create_embed(payload: dict[str, Any]) -> discord.Embed:
        data = payload["embed"]
        timestamp = data.get("timestamp")
        embed = discord.Embed(
            title=data["title"],
            description=data["description"],
            color=discord.Color(data["color"]),
            timestamp=timestamp if isinstance(timestamp, datetime) else None,
        )
        for field in data["fields"]:
            embed.add_field(name=field["name"], value=field["value"], inline=field["inline"])
        embed.set_footer(text="MaryBot")
        return embed

    @staticmethod
    def _create_view(payload: dict[str, Any]) -> discord.ui.View:
        view = discord.ui.View(timeout=None)
        for row in payload.get("components") or []:
            for button in row["components"]:
                view.add_item(
                    discord.ui.Button(
                        label=button["label"],
                        custom_id=button["custom_id"],
                        style=discord.ButtonStyle.primary,
                    )
                )
        return view


class DeliveryChannel(ABC):
    """Abstract base class for delivery channels."""

    method: DeliveryMethod

    @abstractmethod
    async def deliver(self, record: NotificationRecord) -> DeliveryResult:
        """Deliver a record.

        Args:
            record: The record to deliver.

        Returns:
            The delivery outcome.

        Raises:
            Exception: Any failure; the orchestrator falls back to the next channel.
        """
        pass


class DiscordChannel(DeliveryChannel):
    """Delivers records as Discord embeds.

    Without a sender the call is simulated with a short delay, which is how the
    service runs when no bot token is configured.
    """

    method = DeliveryMethod.DISCORD

    def __init__(self, sender: DiscordSender | None = None, simulated_delay_ms: int = 50):
        self._sender = sender
        self._simulated_delay = simulated_delay_ms / 1000.0

    async def deliver(self, record: NotificationRecord) -> DeliveryResult:
        payload = build_discord_payload(record)
        if self._sender is None:
            await asyncio.sleep(self._simulated_delay)
        else:
            await self._sender.send(payload)
        log.debug("discord_notification_sent", user_id=record.user_id, type=record.type)
        return DeliveryResult(method=self.method, status="sent")


class DatabaseChannel(DeliveryChannel):
    """Stores records through the REST API, degrading to a local placeholder id."""

    method = DeliveryMethod.DATABASE

    def __init__(self, api_client: NotificationsApiClient):
        self._api_client = api_client

    async def deliver(self, record: NotificationRecord) -> DeliveryResult:
        try:
            notification_id = await self._api_client.create_notification(record)
        except Exception as e:
            notification_id = f"mock_{int(time.time() * 1000)}"
            log.warning(
                "notification_store_degraded",
                user_id=record.user_id,
                error=str(e),
                placeholder_id=notification_id,
            )
        return DeliveryResult(method=self.method, status="stored", id=notification_id)


class WebSocketChannel(DeliveryChannel):
    """Pushes records to the user's open websocket connections."""

    method = DeliveryMethod.WEBSOCKET

    def __init__(self, hub: ConnectionHub | None = None, simulated_delay_ms: int = 10):
        self._hub = hub
        self._simulated_delay = simulated_delay_ms / 1000.0

    async def deliver(self, record: NotificationRecord) -> DeliveryResult:
        message = {
            "type": "notification",
            "userId": record.user_id,
            "notification": record.to_dict(),
        }
        if self._hub is None:
            await asyncio.sleep(self._simulated_delay)
            return DeliveryResult(method=self.method, status="sent")

        delivered = await self._hub.send_to_user(record.user_id, message)
        log.debug("websocket_notification_pushed", user_id=record.user_id, connections=delivered)
        return DeliveryResult(method=self.method, status="sent" if delivered else "no_listeners")
