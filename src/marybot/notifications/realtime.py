"""In-process registry of websocket connections used for push delivery."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Protocol

from marybot.logging import get_logger

log = get_logger("marybot.notifications.realtime")


class PushConnection(Protocol):
    """Anything that can receive a JSON message (e.g. ``aiohttp`` WebSocketResponse)."""

    async def send_json(self, data: Any) -> None: ...


class ConnectionHub:
    """Manage active push connections grouped by user id."""

    def __init__(self) -> None:
        self._connections: defaultdict[str, set[PushConnection]] = defaultdict(set)

    def connect(self, user_id: str, connection: PushConnection) -> None:
        """Register ``connection`` for ``user_id``."""
        self._connections[str(user_id)].add(connection)
        log.debug("push_connection_opened", user_id=user_id)

    def disconnect(self, user_id: str, connection: PushConnection) -> None:
        """Remove ``connection`` from the pool for ``user_id``."""
        connections = self._connections.get(str(user_id))
        if connections is None:
            return
        connections.discard(connection)
        if not connections:
            self._connections.pop(str(user_id), None)
        log.debug("push_connection_closed", user_id=user_id)

    def connection_count(self, user_id: str | None = None) -> int:
        """Count open connections, for one user or overall."""
        if user_id is not None:
            return len(self._connections.get(str(user_id), ()))
        return sum(len(c) for c in self._connections.values())

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> int:
        """Send ``message`` to every open connection for ``user_id``.

        Connections that fail are dropped.

        Returns:
            Number of connections the message reached.
        """
        delivered = 0
        for connection in list(self._connections.get(str(user_id), ())):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                log.warning("push_send_failed", user_id=user_id, error=str(e))
                self.disconnect(user_id, connection)
        return delivered
