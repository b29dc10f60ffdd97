"""Main entry point for the MaryBot notification worker."""

import asyncio
from typing import Any

import discord

from marybot.api.server import WorkerAPIServer
from marybot.config import get_settings
from marybot.jobs.manager import WorkerManager
from marybot.jobs.processors import JobProcessors
from marybot.logging import get_logger, setup_logging
from marybot.notifications.api_client import NotificationsApiClient
from marybot.notifications.channels import DiscordDMSender
from marybot.notifications.dispatcher import create_dispatcher
from marybot.notifications.realtime import ConnectionHub
from marybot.notifications.stats import InMemoryDispatchStats


async def main() -> None:
    """Main application entry point."""
    setup_logging()
    log = get_logger("marybot.main")

    settings = get_settings()
    log.info(
        "starting_marybot_worker",
        environment=settings.environment,
        api_base_url=settings.api_base_url,
    )

    api_client = NotificationsApiClient(
        base_url=settings.api_base_url,
        api_key=settings.api_key.get_secret_value() if settings.api_key else None,
        timeout=settings.api_timeout,
    )
    hub = ConnectionHub()
    stats = InMemoryDispatchStats()

    # Real DMs only when a bot token is configured; otherwise delivery is simulated
    bot: discord.Client | None = None
    if settings.discord_token is not None:
        bot = discord.Client(intents=discord.Intents.default())

    dispatcher = create_dispatcher(
        settings,
        api_client=api_client,
        discord_sender=DiscordDMSender(bot) if bot is not None else None,
        hub=hub,
        stats=stats,
    )
    manager = WorkerManager(JobProcessors(dispatcher=dispatcher))

    async def log_job_event(event: str, payload: dict[str, Any]) -> None:
        log.info("job_event", event_name=event, job_id=payload.get("jobId"))

    manager.add_listener(log_job_event)

    server = WorkerAPIServer(
        manager,
        dispatcher,
        hub,
        host=settings.worker_api_host,
        port=settings.worker_api_port,
    )

    await manager.start()
    await server.start()
    log.info("marybot_worker_ready")

    try:
        if bot is not None and settings.discord_token is not None:
            await bot.start(settings.discord_token.get_secret_value())
        else:
            while True:
                await asyncio.sleep(3600)
    except asyncio.CancelledError:
        log.info("shutdown_requested")
    finally:
        await server.stop()
        await manager.stop()
        await api_client.close()
        if bot is not None:
            await bot.close()
        log.info("marybot_worker_stopped", stats=stats.snapshot())


def run() -> None:
    """Run the application."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
