"""Per-instance token buckets for degraded operation.

When the shared store cannot be reached, each process throttles with its own
buckets. The refill and debit rules are the same as on the distributed path,
but the state is private to this process and lost on restart: during an outage
every running instance can spend a full quota, so the aggregate is not bounded.
"""

import asyncio
import time
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from ratekeeper.app.core.logging import get_log_context, get_logger

from .models import AcquireRequest, AcquireResult, BucketRecord, DimensionConfig
from .refill import RefillState, compute_refill, initial_window_start, retry_after_ms

logger = get_logger(__name__)

SOURCE = "fallback"


class LocalFallbackBucket:
    """In-memory buckets keyed like the distributed ones.

    Buckets are created full on first use, exactly like a fresh shared bucket.
    Nothing awaits while the lock is held, so an acquire is atomic with respect
    to every other coroutine in the process.
    """

    def __init__(
        self,
        tz: ZoneInfo,
        clock: Callable[[], float] = time.time,
        ttl_seconds: int = 7 * 24 * 60 * 60,
    ):
        self._tz = tz
        self._clock = clock
        self._ttl_seconds = ttl_seconds
        self._buckets: Dict[str, BucketRecord] = {}
        self._lock = asyncio.Lock()

    def _bucket(self, bucket_key: str, config: DimensionConfig, now: float) -> BucketRecord:
        bucket = self._buckets.get(bucket_key)
        if bucket is None:
            bucket = BucketRecord.initial(
                bucket_key,
                config,
                now,
                initial_window_start(config, now, self._tz),
                self._ttl_seconds,
            )
            self._buckets[bucket_key] = bucket
            logger.info(
                "Initialized fallback bucket",
                extra=get_log_context(bucket_key=bucket_key, path=SOURCE),
            )
        return bucket

    async def acquire(
        self, bucket_key: str, config: DimensionConfig, request: AcquireRequest
    ) -> AcquireResult:
        """Debit ``request.tokens`` from the local bucket if enough are available."""
        async with self._lock:
            now = self._clock()
            bucket = self._bucket(bucket_key, config, now)
            state = compute_refill(bucket, config, now, self._tz)

            if state.available < request.tokens:
                # Refill is path independent, so a denial leaves the bucket untouched
                return AcquireResult.denied(
                    request,
                    state.available,
                    retry_after_ms(config, state.available, request.tokens, now, self._tz),
                    SOURCE,
                )

            remaining = state.available - request.tokens
            self._buckets[bucket_key] = bucket.next_version(
                config,
                remaining,
                state.last_refill_timestamp,
                state.window_start_timestamp,
                now,
                self._ttl_seconds,
            )
            return AcquireResult.granted(request.tokens, remaining, SOURCE)

    async def peek(self, bucket_key: str, config: DimensionConfig) -> RefillState:
        """Refilled state of the local bucket without debiting."""
        async with self._lock:
            now = self._clock()
            return compute_refill(self._bucket(bucket_key, config, now), config, now, self._tz)

    def get_record(self, bucket_key: str) -> Optional[BucketRecord]:
        """Current local record, if the bucket has been used."""
        return self._buckets.get(bucket_key)

    def reset(self) -> None:
        """Forget all local buckets."""
        self._buckets.clear()
