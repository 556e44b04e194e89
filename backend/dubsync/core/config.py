"""
Application configuration using pydantic-settings.

Loads and validates environment variables from .env file or system environment.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =============================================================================
    # API & Application
    # =============================================================================
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    environment: Literal["development", "production", "testing"] = Field(default="development")

    cors_origins: str = Field(default="http://localhost:3000,http://localhost:5173")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # =============================================================================
    # Database Configuration
    # =============================================================================
    database_url: str = Field(
        default="sqlite:///./dubsync.db",
        description="Database connection URL",
    )
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=10)
    db_pool_pre_ping: bool = Field(default=True)

    # =============================================================================
    # Celery Configuration
    # =============================================================================
    celery_broker_url: str = Field(default="redis://localhost:6379/0")
    celery_result_backend: str = Field(default="redis://localhost:6379/0")
    celery_task_time_limit: int = Field(default=3600)
    celery_worker_prefetch_multiplier: int = Field(default=1)

    # =============================================================================
    # YouTube Catalog API
    # =============================================================================
    youtube_api_key: str = Field(default="", description="YouTube Data API v3 key")
    youtube_api_keys: str = Field(
        default="",
        description="Fallback keys, comma-separated, used in order once the primary key is spent",
    )

    @field_validator("youtube_api_keys")
    @classmethod
    def parse_youtube_api_keys(cls, v: str) -> list[str]:
        """Parse comma-separated fallback keys into a list."""
        return [key.strip() for key in v.split(",") if key.strip()]

    youtube_base_url: str = Field(default="https://www.googleapis.com/youtube/v3")
    youtube_timeout: int = Field(default=30)
    youtube_max_retries: int = Field(default=3)
    youtube_proxy_url: str | None = Field(default=None)

    # =============================================================================
    # Quota
    # =============================================================================
    quota_key: str = Field(default="youtube-data-api")
    quota_daily_limit: int = Field(default=10000, ge=1)
    quota_window_hours: int = Field(default=24, ge=1)
    quota_timezone: str = Field(
        default="America/Los_Angeles",
        description="Timezone whose midnight anchors the first quota window",
    )

    # =============================================================================
    # Subscription Sync
    # =============================================================================
    sync_interval_minutes: int = Field(default=15, ge=1)
    sync_concurrency: int = Field(default=2, ge=1)
    sync_max_videos_per_subscription: int = Field(default=50, ge=1)
    sync_initial_max_videos: int = Field(default=3, ge=1)
    sync_refresh_known_videos: bool = Field(default=True)
    sync_run_timeout_seconds: int = Field(default=1800, ge=1)

    # =============================================================================
    # Translation Submission (HeyGen)
    # =============================================================================
    translation_max_duration_seconds: int = Field(default=1800, ge=1)
    translation_pending_timeout_minutes: int = Field(default=30, ge=1)
    translation_processing_timeout_hours: int = Field(default=48, ge=1)
    translation_expiry_interval_minutes: int = Field(default=60, ge=1)

    heygen_api_key: str = Field(default="")
    heygen_base_url: str = Field(default="https://api.heygen.com")
    heygen_output_language: str = Field(default="Chinese")
    heygen_timeout: int = Field(default=60)

    # =============================================================================
    # Completion Mailbox (IMAP)
    # =============================================================================
    mailbox_host: str = Field(default="")
    mailbox_port: int = Field(default=993)
    mailbox_user: str = Field(default="")
    mailbox_password: str = Field(default="")
    mailbox_use_tls: bool = Field(default=True)
    mailbox_folder: str = Field(default="INBOX")
    mailbox_sender_domain: str = Field(default="heygen.com")
    mailbox_poll_interval_seconds: int = Field(default=30, ge=1)
    mailbox_initial_lookback_days: int = Field(default=3, ge=1)
    mailbox_max_parse_attempts: int = Field(default=5, ge=1)
    mailbox_fetch_limit: int = Field(default=100, ge=1)
    mailbox_timeout: int = Field(default=30)
    mailbox_run_timeout_seconds: int = Field(default=120, ge=1)

    # =============================================================================
    # Backfill
    # =============================================================================
    backfill_batch_size: int = Field(default=50, ge=1)
    backfill_max_attempts: int = Field(default=3, ge=1)
    backfill_interval_minutes: int = Field(default=60, ge=1)
    backfill_run_timeout_seconds: int = Field(default=3000, ge=1)

    # =============================================================================
    # Task Registry
    # =============================================================================
    task_stale_after_minutes: int = Field(
        default=60,
        ge=1,
        description="A running lease older than this is treated as abandoned",
    )

    # =============================================================================
    # Logging Configuration
    # =============================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")
    log_output: Literal["stdout", "file", "both"] = Field(default="stdout")
    log_file: str = Field(default="./logs/dubsync.log")

    # =============================================================================
    # Development Settings
    # =============================================================================
    debug: bool = Field(default=False)
    auto_reload: bool = Field(default=True)
    enable_swagger_ui: bool = Field(default=True)


# =============================================================================
# Singleton Settings Instance
# =============================================================================
settings = Settings()
