"""HTTP server for the worker host.

Accepts background jobs, runs notification jobs on request, and serves the
websocket connections used by the push delivery channel.
"""

from __future__ import annotations

from aiohttp import web

from marybot.api.routes.health import handle_health
from marybot.api.routes.jobs import (
    handle_dispatch_notifications,
    handle_jobs_status,
    handle_schedule_job,
)
from marybot.api.routes.realtime import handle_websocket
from marybot.jobs.manager import WorkerManager
from marybot.logging import get_logger
from marybot.notifications.dispatcher import NotificationDispatcher
from marybot.notifications.realtime import ConnectionHub

log = get_logger("marybot.api.server")


class WorkerAPIServer:
    """REST + websocket server in front of the worker manager."""

    def __init__(
        self,
        worker_manager: WorkerManager,
        dispatcher: NotificationDispatcher,
        hub: ConnectionHub,
        *,
        host: str = "0.0.0.0",  # nosec B104 - Intentional for Docker container
        port: int = 3002,
    ) -> None:
        self._worker_manager = worker_manager
        self._dispatcher = dispatcher
        self._hub = hub
        self._host = host
        self._port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

        log.info("worker_api_initialized", host=host, port=port)

    def create_app(self) -> web.Application:
        """Create and configure the aiohttp application."""
        app = web.Application()

        app["worker_manager"] = self._worker_manager
        app["notification_dispatcher"] = self._dispatcher
        app["connection_hub"] = self._hub

        app.router.add_get("/api/v1/health", handle_health)
        app.router.add_post("/api/v1/jobs", handle_schedule_job)
        app.router.add_get("/api/v1/jobs/status", handle_jobs_status)
        app.router.add_post("/api/v1/notifications/dispatch", handle_dispatch_notifications)
        app.router.add_get("/ws/{user_id}", handle_websocket)

        self._app = app
        return app

    async def start(self) -> None:
        """Start the server."""
        if self._app is None:
            self.create_app()

        if self._app is None:  # pragma: no cover
            raise RuntimeError("create_app() must be called first")

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

        log.info("worker_api_started", host=self._host, port=self._port)

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            log.info("worker_api_stopped")
