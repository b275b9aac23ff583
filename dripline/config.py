"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache

MIN_WEBHOOK_SECRET_LENGTH = 16


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Sentry
    sentry_dsn: str = ""

    # Delivery provider webhooks
    webhook_secret: str  # Deployment-level shared secret, not per tenant
    webhook_enabled: bool = True
    webhook_max_timestamp_age_seconds: int = Field(default=600, ge=60, le=3600)
    webhook_future_skew_seconds: int = 300
    webhook_duplicate_detection: bool = True
    webhook_parallel_processing: bool = True
    webhook_max_parallel_events: int = Field(default=10, ge=1)
    webhook_max_payload_bytes: int = 5 * 1024 * 1024
    webhook_rate_limit_per_minute: int = 1000

    # Campaign step publishing
    campaign_send_attempts: int = 3
    campaign_send_backoff_seconds: int = 2
    campaign_send_dedup_window_seconds: int = 300

    # Workers
    task_processor_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("webhook_secret")
    @classmethod
    def _secret_long_enough(cls, value: str) -> str:
        if len(value or "") < MIN_WEBHOOK_SECRET_LENGTH:
            raise ValueError(
                f"webhook_secret must be at least {MIN_WEBHOOK_SECRET_LENGTH} characters"
            )
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
