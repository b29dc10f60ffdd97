"""Async client for the MaryBot REST API notification endpoint.

Used by the database delivery channel to persist notifications so the
dashboard and bot can surface them later.
"""

from datetime import UTC, datetime
from typing import Any

import httpx

from marybot.logging import get_logger
from marybot.notifications.models import NotificationRecord, to_jsonable

log = get_logger("marybot.notifications.api_client")


class NotificationsApiError(Exception):
    """Base exception for REST API errors."""

    pass


class NotificationsApiConnectionError(NotificationsApiError):
    """Raised when the REST API cannot be reached."""

    pass


class NotificationsApiClient:
    """Async client for ``POST /api/notifications``."""

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        api_key: str | None = None,
        timeout: float = 10.0,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the REST API.
            api_key: Optional key sent as ``X-API-Key``.
            timeout: Request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

        log.info("notifications_api_client_initialized", base_url=self._base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self._api_key:
                headers["X-API-Key"] = self._api_key
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            log.debug("notifications_api_client_closed")

    @staticmethod
    def build_body(
        record: NotificationRecord,
        created_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Build the persistence request body for a record."""
        return {
            "userId": record.user_id,
            "type": record.type,
            "title": record.title,
            "message": record.message,
            "data": to_jsonable(record.data),
            "priority": record.priority.value,
            "status": "pending",
            "createdAt": (created_at or datetime.now(UTC)).isoformat(),
        }

    async def create_notification(self, record: NotificationRecord) -> str:
        """Persist a notification record.

        Args:
            record: The record to store.

        Returns:
            The identifier assigned by the API.

        Raises:
            NotificationsApiConnectionError: If unable to connect.
            NotificationsApiError: For HTTP errors or a response without an id.
        """
        try:
            client = await self._get_client()
            response = await client.post("/api/notifications", json=self.build_body(record))
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            log.warning("notifications_api_connection_failed", error=str(e))
            raise NotificationsApiConnectionError(f"Unable to connect to API: {e}") from e
        except httpx.HTTPStatusError as e:
            log.warning(
                "notifications_api_http_error",
                status_code=e.response.status_code,
                user_id=record.user_id,
            )
            raise NotificationsApiError(f"API returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            log.warning("notifications_api_request_failed", error=str(e))
            raise NotificationsApiError(f"Request failed: {e}") from e
        except ValueError as e:
            raise NotificationsApiError("API response was not valid JSON") from e

        notification_id = data.get("id") if isinstance(data, dict) else None
        if notification_id is None:
            raise NotificationsApiError("API response did not include an id")
        return str(notification_id)
