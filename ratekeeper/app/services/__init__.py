"""Services package for the rate limiter.

This package provides:
- Distributed token bucket rate limiting with optimistic concurrency
- Bucket store backends (in-memory, Redis, SQL)
- Per-process fallback buckets for store outages
"""

from ratekeeper.app.services.distributed_rate_limiter import (
    AcquireError,
    AcquireResult,
    DistributedRateLimiter,
    QuotaDimension,
    RateLimiterConfig,
    create_bucket_store,
    get_rate_limiter,
    reset_rate_limiter,
)

__all__ = [
    "AcquireError",
    "AcquireResult",
    "DistributedRateLimiter",
    "QuotaDimension",
    "RateLimiterConfig",
    "create_bucket_store",
    "get_rate_limiter",
    "reset_rate_limiter",
]
