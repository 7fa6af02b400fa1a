"""Distributed rate limiting over a shared, versioned bucket store.

This package provides token buckets for several quota dimensions (requests
per minute, tokens per minute, requests per day) whose state lives in a
shared store and is only ever written through a compare-and-swap on the
bucket version, with a process-local fallback when the store is down.
"""

from .fallback import LocalFallbackBucket
from .memory_store import InMemoryBucketStore
from .models import (
    AcquireError,
    AcquireRequest,
    AcquireResult,
    BucketRecord,
    DimensionConfig,
    QuotaDimension,
    RateLimiterConfig,
)
from .redis_lua import CONDITIONAL_UPDATE_SCRIPT
from .redis_store import RedisBucketStore
from .refill import RefillState, compute_refill, retry_after_ms
from .service import (
    DistributedRateLimiter,
    create_bucket_store,
    get_rate_limiter,
    reset_rate_limiter,
)
from .sql_store import SQLBucketStore
from .store import BucketStore

__all__ = [
    "AcquireError",
    "AcquireRequest",
    "AcquireResult",
    "BucketRecord",
    "BucketStore",
    "CONDITIONAL_UPDATE_SCRIPT",
    "DimensionConfig",
    "DistributedRateLimiter",
    "InMemoryBucketStore",
    "LocalFallbackBucket",
    "QuotaDimension",
    "RateLimiterConfig",
    "RedisBucketStore",
    "RefillState",
    "SQLBucketStore",
    "compute_refill",
    "create_bucket_store",
    "get_rate_limiter",
    "reset_rate_limiter",
    "retry_after_ms",
]
