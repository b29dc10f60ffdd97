"""Pytest fixtures for MaryBot tests."""

import os
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables before any imports.

    Keeps tests off the filesystem and away from a real Discord token.
    """
    os.environ.setdefault("LOG_TO_FILE", "false")
    os.environ.setdefault("ENVIRONMENT", "test")

    from marybot.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def mock_settings():
    """Settings with fast pacing for tests."""
    from marybot.config import Settings

    return Settings(
        environment="test",
        log_level="DEBUG",
        log_to_file=False,
        api_base_url="http://api.test",
        notification_batch_size=100,
        notification_batch_delay_ms=100,
        notification_retry_delay_ms=200,
        discord_simulated_delay_ms=0,
        websocket_simulated_delay_ms=0,
        worker_max_concurrent=2,
        worker_max_attempts=3,
        worker_poll_interval_ms=10,
    )


@pytest.fixture
def fixed_now():
    """A fixed dispatch time."""
    return datetime(2024, 5, 1, 12, 30, 0, tzinfo=UTC)


@pytest.fixture
def mock_api_client():
    """Mock NotificationsApiClient that stores every record."""
    client = MagicMock()
    client.create_notification = AsyncMock(return_value="notif-1")
    client.close = AsyncMock()
    return client


@pytest.fixture
def fake_sleep():
    """AsyncMock standing in for asyncio.sleep."""
    return AsyncMock()
