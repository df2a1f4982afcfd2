"""Archiver configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Nested configs are populated from their own env-var prefixes.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleOAuthConfig(BaseSettings):
    """OAuth client used to refresh per-account access tokens."""

    model_config = SettingsConfigDict(env_prefix="GOOGLE_")

    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: SecretStr = Field(default=SecretStr(""), description="OAuth client secret")
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint",
    )
    expiry_buffer_seconds: int = Field(
        default=300,
        description="Refresh access tokens expiring within this many seconds",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class GmailConfig(BaseSettings):
    """Gmail REST API settings and discovery caps."""

    model_config = SettingsConfigDict(env_prefix="GMAIL_")

    api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users/me",
        description="Base URL of the Gmail users API for the authenticated user",
    )
    pubsub_topic: str | None = Field(
        default=None,
        description="Pub/Sub topic for watch registration (projects/<p>/topics/<t>)",
    )
    page_size: int = Field(default=50, description="messages.list page size")
    routine_max_messages: int = Field(
        default=100,
        description="Backfill cap for a scheduled round without a cursor",
    )
    initial_max_messages: int = Field(
        default=2000,
        description="Backfill cap for an explicit initial sync",
    )
    stale_cursor_routine_max_messages: int = Field(
        default=100,
        description="Fallback listing cap when the cursor is stale (scheduled round)",
    )
    stale_cursor_initial_max_messages: int = Field(
        default=1000,
        description="Fallback listing cap when the cursor is stale (initial sync)",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class S3Config(BaseSettings):
    """S3 storage settings for uploaded attachments."""

    model_config = SettingsConfigDict(env_prefix="S3_")

    bucket: str = Field(description="S3 bucket name")
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )
    root_folder: str = Field(
        default="Email Attachments",
        description="Well-known top-level folder holding all attachments",
    )
    folder_name_max_length: int = Field(
        default=100,
        description="Maximum length of a per-message subfolder name",
    )
    public_base_url: str | None = Field(
        default=None,
        description="Base URL for public links (defaults to the bucket URL)",
    )


class DatabaseConfig(BaseSettings):
    """Relational store settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(description="Async SQLAlchemy URL (e.g. postgresql+asyncpg://...)")
    echo: bool = Field(default=False, description="Echo SQL statements")


class SchedulerConfig(BaseSettings):
    """Periodic sync trigger and work-queue settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    interval_seconds: float = Field(default=30.0, description="Seconds between sync ticks")
    queue_capacity: int = Field(default=16, description="Maximum pending sync requests")
    run_on_start: bool = Field(default=True, description="Enqueue a round at startup")


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, description="Maximum attempts per remote call")
    initial_wait_seconds: float = Field(default=0.5, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=10.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class ArchiverConfig(BaseSettings):
    """Root configuration for the archiver process.

    All top-level env vars are prefixed with ``ARCHIVER_``.
    Example: ``ARCHIVER_PORT=9000``
    """

    model_config = SettingsConfigDict(env_prefix="ARCHIVER_")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    oauth: GoogleOAuthConfig = Field(default_factory=GoogleOAuthConfig)
    gmail: GmailConfig = Field(default_factory=GmailConfig)
    s3: S3Config = Field(default_factory=S3Config)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
