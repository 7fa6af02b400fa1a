"""Data models for distributed rate limiting."""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional

from ratekeeper.app.core.config import Settings, settings as default_settings
from ratekeeper.app.core.retry import ConflictBackoff, RetryPolicy
from ratekeeper.app.core.utils import utc_isoformat


SECONDS_PER_DAY = 24 * 60 * 60


class QuotaDimension(str, Enum):
    """Independently tracked limits for one protected resource."""

    RPM = "rpm"  # requests per minute
    TPM = "tpm"  # tokens per minute
    RPD = "rpd"  # requests per day


class AcquireError(str, Enum):
    """Why an acquire call did not succeed."""

    DENIED = "denied"
    RETRIES_EXHAUSTED = "retries_exhausted"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class DimensionConfig:
    """Static configuration of one quota dimension.

    Attributes:
        dimension: Which quota this is
        max_capacity: Units granted per window
        window_seconds: Window length; the refill rate is capacity / window
        daily: Hard reset at day boundaries instead of continuous refill
    """

    dimension: QuotaDimension
    max_capacity: int
    window_seconds: int
    daily: bool = False

    @property
    def refill_rate(self) -> float:
        """Units credited per second."""
        return self.max_capacity / self.window_seconds


@dataclass
class RateLimiterConfig:
    """Construction-time configuration of a DistributedRateLimiter."""

    api_id: str
    dimensions: Dict[QuotaDimension, DimensionConfig]
    daily_reset_timezone: str = "UTC"
    enable_fallback: bool = True
    conflict_backoff: ConflictBackoff = field(default_factory=ConflictBackoff)
    store_retry: RetryPolicy = field(default_factory=RetryPolicy)
    store_timeout_seconds: float = 2.0
    bucket_ttl_seconds: int = 7 * SECONDS_PER_DAY

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RateLimiterConfig":
        """Build a config from environment settings."""
        s = settings or default_settings
        minute = s.rate_limit_minute_window_seconds
        return cls(
            api_id=s.api_id,
            dimensions={
                QuotaDimension.RPM: DimensionConfig(QuotaDimension.RPM, s.rate_limit_rpm, minute),
                QuotaDimension.TPM: DimensionConfig(QuotaDimension.TPM, s.rate_limit_tpm, minute),
                QuotaDimension.RPD: DimensionConfig(
                    QuotaDimension.RPD,
                    s.rate_limit_rpd,
                    s.rate_limit_day_window_seconds,
                    daily=True,
                ),
            },
            daily_reset_timezone=s.rate_limit_daily_reset_timezone,
            enable_fallback=s.rate_limit_enable_fallback,
            conflict_backoff=ConflictBackoff(
                max_retries=s.rate_limit_max_conflict_retries,
                max_delay=s.rate_limit_conflict_backoff_seconds,
            ),
            store_retry=RetryPolicy(
                max_retries=s.rate_limit_max_store_retries,
                base_delay=s.rate_limit_store_backoff_base_seconds,
                max_delay=s.rate_limit_store_backoff_max_seconds,
            ),
            store_timeout_seconds=s.rate_limit_store_timeout_seconds,
            bucket_ttl_seconds=s.rate_limit_bucket_ttl_days * SECONDS_PER_DAY,
        )

    def bucket_key(self, dimension: QuotaDimension) -> str:
        """Create the bucket key for a dimension, e.g. ``gemini-api-tpm``."""
        return f"{self.api_id}-{dimension.value}"


@dataclass
class BucketRecord:
    """Persisted state of one quota bucket.

    Attributes:
        bucket_key: "{api_id}-{dimension}"
        tokens_available: Units left, within [0, max_capacity]
        max_capacity: Units granted per window
        refill_rate: Units credited per second
        last_refill_timestamp: Epoch seconds of the last credit
        window_start_timestamp: Start of the current day (daily) or window
        version: Optimistic concurrency token, +1 per successful write
        ttl: Epoch seconds after which the store may drop the record
        created_at: ISO 8601 creation time
        updated_at: ISO 8601 time of the last write
    """

    bucket_key: str
    tokens_available: float
    max_capacity: int
    refill_rate: float
    last_refill_timestamp: float
    window_start_timestamp: float
    version: int
    ttl: int
    created_at: str
    updated_at: str

    @classmethod
    def initial(
        cls,
        bucket_key: str,
        config: DimensionConfig,
        now: float,
        window_start: float,
        ttl_seconds: int,
    ) -> "BucketRecord":
        """A full bucket at version 0."""
        stamp = utc_isoformat(now)
        return cls(
            bucket_key=bucket_key,
            tokens_available=float(config.max_capacity),
            max_capacity=config.max_capacity,
            refill_rate=config.refill_rate,
            last_refill_timestamp=now,
            window_start_timestamp=window_start,
            version=0,
            ttl=math.ceil(now) + ttl_seconds,
            created_at=stamp,
            updated_at=stamp,
        )

    def next_version(
        self,
        config: DimensionConfig,
        tokens_available: float,
        last_refill_timestamp: float,
        window_start_timestamp: float,
        now: float,
        ttl_seconds: int,
    ) -> "BucketRecord":
        """The record a successful write would leave behind.

        Capacity and rate are rewritten from ``config`` so a redeployed ceiling
        takes effect on the next write.
        """
        return replace(
            self,
            tokens_available=tokens_available,
            max_capacity=config.max_capacity,
            refill_rate=config.refill_rate,
            last_refill_timestamp=last_refill_timestamp,
            window_start_timestamp=window_start_timestamp,
            version=self.version + 1,
            ttl=math.ceil(now) + ttl_seconds,
            updated_at=utc_isoformat(now),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "bucketKey": self.bucket_key,
            "tokensAvailable": self.tokens_available,
            "maxCapacity": self.max_capacity,
            "refillRate": self.refill_rate,
            "lastRefillTimestamp": self.last_refill_timestamp,
            "windowStartTimestamp": self.window_start_timestamp,
            "version": self.version,
            "ttl": self.ttl,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BucketRecord":
        """Create from dictionary."""
        return cls(
            bucket_key=data["bucketKey"],
            tokens_available=float(data["tokensAvailable"]),
            max_capacity=int(data["maxCapacity"]),
            refill_rate=float(data["refillRate"]),
            last_refill_timestamp=float(data["lastRefillTimestamp"]),
            window_start_timestamp=float(data["windowStartTimestamp"]),
            version=int(data["version"]),
            ttl=int(data["ttl"]),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass(frozen=True)
class AcquireRequest:
    """Quota dimension plus the units requested."""

    dimension: QuotaDimension
    tokens: int


@dataclass
class AcquireResult:
    """Outcome of one acquire call.

    ``source`` tells operators which path served the call; callers should not
    need it.
    """

    success: bool
    tokens_acquired: int
    tokens_remaining: float
    error: Optional[AcquireError] = None
    retry_after_ms: Optional[int] = None
    message: Optional[str] = None
    source: str = "distributed"

    @classmethod
    def granted(cls, tokens: int, remaining: float, source: str) -> "AcquireResult":
        return cls(success=True, tokens_acquired=tokens, tokens_remaining=remaining, source=source)

    @classmethod
    def denied(
        cls,
        request: AcquireRequest,
        available: float,
        retry_after_ms: int,
        source: str,
    ) -> "AcquireResult":
        mode = " (fallback mode)" if source == "fallback" else ""
        return cls(
            success=False,
            tokens_acquired=0,
            tokens_remaining=available,
            error=AcquireError.DENIED,
            retry_after_ms=retry_after_ms,
            message=(
                f"{request.dimension.value.upper()} rate limit exceeded{mode}. "
                f"Need {request.tokens}, have {math.floor(available)}"
            ),
            source=source,
        )

    @classmethod
    def failed(cls, error: AcquireError, message: str, retry_after_ms: Optional[int] = None) -> "AcquireResult":
        return cls(
            success=False,
            tokens_acquired=0,
            tokens_remaining=0,
            error=error,
            retry_after_ms=retry_after_ms,
            message=message,
        )

    def to_dict(self) -> dict:
        """Convert to the caller-facing dictionary shape."""
        data = {
            "success": self.success,
            "tokensAcquired": self.tokens_acquired,
            "tokensRemaining": self.tokens_remaining,
        }
        if self.error is not None:
            data["error"] = self.error.value
            data["message"] = self.message
        if self.retry_after_ms is not None:
            data["retryAfterMillis"] = self.retry_after_ms
        return data
