from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Rate limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Quota ceilings and retry bounds are read once, when the limiter is built.
    """

    # Protected resource, first half of every bucket key
    api_id: str = "gemini-api"

    # Quota ceilings (Gemini free tier defaults)
    rate_limit_rpm: int = 5
    rate_limit_tpm: int = 250_000
    rate_limit_rpd: int = 25

    # Refill windows
    rate_limit_minute_window_seconds: int = 60
    rate_limit_day_window_seconds: int = 86_400
    rate_limit_daily_reset_timezone: str = "UTC"  # IANA name, e.g. America/Los_Angeles

    # Degraded mode
    rate_limit_enable_fallback: bool = True

    # Optimistic concurrency retries (version conflicts)
    rate_limit_max_conflict_retries: int = 3
    rate_limit_conflict_backoff_seconds: float = 0.025  # upper bound of jitter

    # Transient store failures
    rate_limit_max_store_retries: int = 3
    rate_limit_store_backoff_base_seconds: float = 0.05
    rate_limit_store_backoff_max_seconds: float = 1.0
    rate_limit_store_timeout_seconds: float = 2.0  # per store operation

    # Inactive buckets expire after this many days
    rate_limit_bucket_ttl_days: int = 7

    # Bucket store backend
    store_backend: Literal["memory", "redis", "sql"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "ratekeeper:bucket"
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ratekeeper.db", validation_alias="DATABASE_URL"
    )

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_rpm", "rate_limit_tpm", "rate_limit_rpd")
    @classmethod
    def validate_ceiling_positive(cls, v: int) -> int:
        """Validate quota ceilings are positive."""
        if v < 1:
            raise ValueError("Quota ceilings must be at least 1")
        return v

    @field_validator(
        "rate_limit_minute_window_seconds",
        "rate_limit_day_window_seconds",
        "rate_limit_bucket_ttl_days",
    )
    @classmethod
    def validate_window_positive(cls, v: int) -> int:
        """Validate window lengths are positive."""
        if v < 1:
            raise ValueError("Window lengths must be at least 1")
        return v

    @field_validator("rate_limit_max_conflict_retries", "rate_limit_max_store_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Validate retry bounds are small non-negative integers."""
        if v < 0:
            raise ValueError("Retry counts must not be negative")
        if v > 20:
            raise ValueError("Retry counts should not exceed 20")
        return v

    @field_validator(
        "rate_limit_conflict_backoff_seconds",
        "rate_limit_store_backoff_base_seconds",
        "rate_limit_store_backoff_max_seconds",
    )
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        """Validate backoff delays are not negative."""
        if v < 0:
            raise ValueError("Backoff delays must not be negative")
        return v

    @field_validator("rate_limit_store_timeout_seconds")
    @classmethod
    def validate_store_timeout(cls, v: float) -> float:
        """Validate store timeout is positive."""
        if v <= 0:
            raise ValueError("rate_limit_store_timeout_seconds must be positive")
        return v

    @field_validator("rate_limit_daily_reset_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the daily reset timezone is a known IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
