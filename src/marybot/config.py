"""Configuration management for the MaryBot notification service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=True, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=52428800,  # 50MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=10, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="marybot", description="Prefix for log file names")

    # Backend API (notification persistence)
    api_base_url: str = Field(
        default="http://localhost:3001", description="Base URL of the MaryBot REST API"
    )
    api_key: SecretStr | None = Field(
        default=None, description="Optional API key sent as X-API-Key to the REST API"
    )
    api_timeout: float = Field(default=10.0, description="REST API request timeout in seconds")

    # Discord
    discord_token: SecretStr | None = Field(
        default=None, description="Discord bot token (DM delivery is simulated when unset)"
    )

    # Notification delivery
    notification_batch_size: int = Field(
        default=100, description="Number of notifications delivered per batch"
    )
    notification_batch_delay_ms: int = Field(
        default=100, description="Pause between consecutive batches (ms)"
    )
    notification_retry_delay_ms: int = Field(
        default=200, description="Pause after each retried notification (ms)"
    )
    notification_default_expiry_ms: int = Field(
        default=24 * 60 * 60 * 1000, description="Default expiry for custom notifications (ms)"
    )
    discord_simulated_delay_ms: int = Field(
        default=50, description="Simulated Discord call latency when no bot is connected (ms)"
    )
    websocket_simulated_delay_ms: int = Field(
        default=10, description="Simulated push latency when no connection hub is wired (ms)"
    )

    # Worker host
    worker_max_concurrent: int = Field(default=4, description="Maximum concurrently running jobs")
    worker_max_attempts: int = Field(default=3, description="Attempts before a job is failed")
    worker_poll_interval_ms: int = Field(
        default=100, description="Worker manager poll interval (ms)"
    )
    worker_api_host: str = Field(
        default="0.0.0.0",  # nosec B104 - Intentional for Docker container
        description="Worker HTTP API bind host",
    )
    worker_api_port: int = Field(default=3002, description="Worker HTTP API port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the log level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got: {v}")
        return v.upper()

    @field_validator(
        "notification_batch_size",
        "worker_max_concurrent",
        "worker_max_attempts",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts are at least 1."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got: {v}")
        return v

    @field_validator(
        "notification_batch_delay_ms",
        "notification_retry_delay_ms",
        "discord_simulated_delay_ms",
        "websocket_simulated_delay_ms",
        "worker_poll_interval_ms",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError(f"Delay must not be negative, got: {v}")
        return v

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
