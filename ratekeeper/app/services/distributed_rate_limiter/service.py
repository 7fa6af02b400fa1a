"""Distributed token bucket rate limiting over a shared bucket store.

Many independent workers draw from the same provider quotas (requests per
minute, tokens per minute, requests per day). The shared store is the only
coordination medium, so every debit is a read-compute-write cycle guarded by
an optimistic version check:

    READ (create lazily) -> COMPUTE_REFILL -> DENY
                                           -> CONDITIONAL_UPDATE -> SUCCESS
                                                                 -> CONFLICT -> READ
    any store failure -> backoff -> READ ... -> FALLBACK (this call only)
    failed update -> READ: finding the record we tried to write means it landed

No write ever happens without a version check, so two callers can never both
spend the same balance.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from ratekeeper.app.core.config import Settings, settings as default_settings
from ratekeeper.app.core.logging import get_log_context, get_logger
from ratekeeper.app.core.metrics import LimiterMetrics, get_metrics_collector
from ratekeeper.app.core.utils import get_reset_timezone
from ratekeeper.app.exceptions import (
    BucketNotFoundError,
    InvalidAcquireRequestError,
    StoreUnavailableError,
    VersionConflictError,
    WriteOutcomeUnknownError,
)

from .fallback import SOURCE as FALLBACK_SOURCE, LocalFallbackBucket
from .models import (
    AcquireError,
    AcquireRequest,
    AcquireResult,
    BucketRecord,
    DimensionConfig,
    QuotaDimension,
    RateLimiterConfig,
)
from .refill import compute_refill, initial_window_start, retry_after_ms
from .store import BucketStore

logger = get_logger(__name__)

T = TypeVar("T")

SOURCE = "distributed"


class DistributedRateLimiter:
    """Coordinates quota consumption across processes through a BucketStore.

    One instance per process is enough: it holds configuration, the store
    handle and the local fallback bucket, and keeps no per-call state.
    """

    def __init__(
        self,
        store: BucketStore,
        config: Optional[RateLimiterConfig] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[LimiterMetrics] = None,
        fallback: Optional[LocalFallbackBucket] = None,
    ) -> None:
        self._store = store
        self._config = config or RateLimiterConfig.from_settings()
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()
        self._tz = get_reset_timezone(self._config.daily_reset_timezone)
        self._fallback = fallback or LocalFallbackBucket(
            self._tz, clock=clock, ttl_seconds=self._config.bucket_ttl_seconds
        )

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    @property
    def store(self) -> BucketStore:
        return self._store

    @property
    def fallback(self) -> LocalFallbackBucket:
        return self._fallback

    def _validate(
        self, dimension: Union[QuotaDimension, str], tokens_requested: Any
    ) -> tuple[AcquireRequest, DimensionConfig]:
        try:
            quota = QuotaDimension(dimension)
        except ValueError as e:
            raise InvalidAcquireRequestError(f"Unknown quota dimension: {dimension!r}") from e

        dimension_config = self._config.dimensions.get(quota)
        if dimension_config is None:
            raise InvalidAcquireRequestError(f"Quota dimension {quota.value} is not configured")

        if isinstance(tokens_requested, bool) or not isinstance(tokens_requested, int):
            raise InvalidAcquireRequestError(
                f"tokens_requested must be an integer, got {tokens_requested!r}"
            )
        if tokens_requested < 0:
            raise InvalidAcquireRequestError(
                f"tokens_requested must not be negative, got {tokens_requested}"
            )
        return AcquireRequest(quota, tokens_requested), dimension_config

    async def acquire(
        self, dimension: Union[QuotaDimension, str], tokens_requested: int
    ) -> AcquireResult:
        """Take ``tokens_requested`` units from the shared bucket of ``dimension``.

        Args:
            dimension: QuotaDimension or its value ("rpm", "tpm", "rpd")
            tokens_requested: 1 for a request-count dimension, the estimated
                token count for TPM

        Returns:
            AcquireResult. Store failures are absorbed: after the store retries run out
            the call is served by the local fallback bucket, or reports
            ``store_unavailable`` when fallback is disabled.

        Raises:
            InvalidAcquireRequestError: Unknown dimension or bad token count
        """
        request, dimension_config = self._validate(dimension, tokens_requested)
        bucket_key = self._config.bucket_key(request.dimension)

        result = await self._acquire_distributed(bucket_key, dimension_config, request)

        outcome = "success" if result.success else result.error.value
        await self._metrics.record_acquire(
            request.dimension.value, outcome, result.source, result.tokens_acquired
        )
        return result

    async def _acquire_distributed(
        self,
        bucket_key: str,
        config: DimensionConfig,
        request: AcquireRequest,
    ) -> AcquireResult:
        conflict_backoff = self._config.conflict_backoff
        store_retry = self._config.store_retry
        conflicts = 0
        store_failures = 0
        attempt = 0
        unconfirmed: Optional[BucketRecord] = None

        while True:
            attempt += 1
            try:
                return await self._attempt(bucket_key, config, request, attempt, unconfirmed)
            except VersionConflictError as e:
                conflicts += 1
                await self._metrics.record_conflict(request.dimension.value)
                logger.debug(
                    f"Version conflict, expected {e.expected_version} found {e.actual_version}",
                    extra=get_log_context(
                        bucket_key=bucket_key,
                        dimension=request.dimension.value,
                        path=SOURCE,
                        attempt=attempt,
                        version=e.expected_version,
                    ),
                )
                if conflicts > conflict_backoff.max_retries:
                    logger.warning(
                        f"Retries exhausted after {conflicts} conflicting writes",
                        extra=get_log_context(
                            bucket_key=bucket_key,
                            dimension=request.dimension.value,
                            path=SOURCE,
                            attempt=attempt,
                        ),
                    )
                    return AcquireResult.failed(
                        AcquireError.RETRIES_EXHAUSTED,
                        f"{request.dimension.value.upper()} quota could not be confirmed "
                        f"after {conflicts} conflicting attempts",
                    )
                await asyncio.sleep(conflict_backoff.calculate_delay())
            except StoreUnavailableError as e:
                await self._metrics.record_store_error(
                    type(e.cause).__name__ if e.cause is not None else type(e).__name__
                )
                if isinstance(e, WriteOutcomeUnknownError):
                    unconfirmed = e.record
                    logger.warning(
                        f"Write of version {e.record.version} may have been applied, checking on re-read",
                        extra=get_log_context(
                            bucket_key=bucket_key,
                            dimension=request.dimension.value,
                            path=SOURCE,
                            attempt=attempt,
                            version=e.record.version,
                        ),
                    )
                if store_failures >= store_retry.max_retries:
                    logger.warning(
                        f"Bucket store unavailable after {store_failures + 1} attempts: {e.message}",
                        extra=get_log_context(
                            bucket_key=bucket_key,
                            dimension=request.dimension.value,
                            path=SOURCE,
                            attempt=attempt,
                        ),
                    )
                    return await self._acquire_fallback(bucket_key, config, request)
                delay = store_retry.calculate_delay(store_failures)
                store_failures += 1
                logger.debug(
                    f"Store error, retrying in {delay:.3f}s: {e.message}",
                    extra=get_log_context(
                        bucket_key=bucket_key,
                        dimension=request.dimension.value,
                        path=SOURCE,
                        attempt=attempt,
                    ),
                )
                await asyncio.sleep(delay)

    async def _attempt(
        self,
        bucket_key: str,
        config: DimensionConfig,
        request: AcquireRequest,
        attempt: int,
        unconfirmed: Optional[BucketRecord] = None,
    ) -> AcquireResult:
        """One read-compute-write round against the shared store.

        ``unconfirmed`` is the record an earlier round of this call tried to
        write when the store failed mid-update. Reading it back unchanged means
        that write landed and the tokens are already debited.
        """
        record = await self._read_or_create(bucket_key, config)
        now = self._clock()
        state = compute_refill(record, config, now, self._tz)

        if unconfirmed is not None and record == unconfirmed:
            logger.info(
                "Earlier write was applied, not debiting again",
                extra=get_log_context(
                    bucket_key=bucket_key,
                    dimension=request.dimension.value,
                    path=SOURCE,
                    attempt=attempt,
                    version=record.version,
                ),
            )
            return AcquireResult.granted(request.tokens, state.available, SOURCE)

        if state.available < request.tokens:
            wait_ms = retry_after_ms(config, state.available, request.tokens, now, self._tz)
            logger.debug(
                f"Denied {request.tokens}, {state.available:.2f} available, retry in {wait_ms}ms",
                extra=get_log_context(
                    bucket_key=bucket_key,
                    dimension=request.dimension.value,
                    path=SOURCE,
                    attempt=attempt,
                    version=record.version,
                ),
            )
            return AcquireResult.denied(request, state.available, wait_ms, SOURCE)

        if request.tokens == 0:
            return AcquireResult.granted(0, state.available, SOURCE)

        remaining = state.available - request.tokens
        updated = record.next_version(
            config,
            remaining,
            state.last_refill_timestamp,
            state.window_start_timestamp,
            now,
            self._config.bucket_ttl_seconds,
        )
        try:
            await self._call_store(
                bucket_key, self._store.conditional_update(bucket_key, record.version, updated)
            )
        except StoreUnavailableError as e:
            raise WriteOutcomeUnknownError(bucket_key, updated, e.cause) from e

        if state.reset:
            logger.info(
                "Daily quota reset",
                extra=get_log_context(
                    bucket_key=bucket_key,
                    dimension=request.dimension.value,
                    path=SOURCE,
                    version=updated.version,
                ),
            )
        return AcquireResult.granted(request.tokens, remaining, SOURCE)

    async def _read_or_create(self, bucket_key: str, config: DimensionConfig) -> BucketRecord:
        try:
            return await self._call_store(bucket_key, self._store.get(bucket_key))
        except BucketNotFoundError:
            pass

        now = self._clock()
        initial = BucketRecord.initial(
            bucket_key,
            config,
            now,
            initial_window_start(config, now, self._tz),
            self._config.bucket_ttl_seconds,
        )
        # Losing the creation race hands back the winner's record
        record = await self._call_store(
            bucket_key, self._store.create_if_absent(bucket_key, initial)
        )
        logger.info(
            f"Bucket ready at version {record.version}",
            extra=get_log_context(bucket_key=bucket_key, path=SOURCE, version=record.version),
        )
        return record

    async def _call_store(self, bucket_key: str, operation: Awaitable[T]) -> T:
        """Await a store operation under the per-operation timeout."""
        try:
            return await asyncio.wait_for(operation, timeout=self._config.store_timeout_seconds)
        except (asyncio.TimeoutError, OSError) as e:
            raise StoreUnavailableError(bucket_key, e) from e

    async def _acquire_fallback(
        self,
        bucket_key: str,
        config: DimensionConfig,
        request: AcquireRequest,
    ) -> AcquireResult:
        if not self._config.enable_fallback:
            return AcquireResult.failed(
                AcquireError.STORE_UNAVAILABLE,
                f"Bucket store unavailable for {bucket_key} and fallback is disabled",
            )

        await self._metrics.record_fallback(request.dimension.value)
        logger.warning(
            "Serving acquire from local fallback bucket",
            extra=get_log_context(
                bucket_key=bucket_key,
                dimension=request.dimension.value,
                path=FALLBACK_SOURCE,
            ),
        )
        return await self._fallback.acquire(bucket_key, config, request)

    async def get_usage(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every configured dimension, refill applied, nothing written.

        Returns:
            {"rpm": {"used": 2, "limit": 5, "available": 3, "source": "distributed"}, ...}
            A bucket that does not exist yet reports full capacity.
        """
        usage: Dict[str, Dict[str, Any]] = {}
        for dimension, config in self._config.dimensions.items():
            bucket_key = self._config.bucket_key(dimension)
            source = SOURCE
            try:
                record = await self._call_store(bucket_key, self._store.get(bucket_key))
                available = compute_refill(record, config, self._clock(), self._tz).available
            except BucketNotFoundError:
                available = float(config.max_capacity)
            except StoreUnavailableError as e:
                if not self._config.enable_fallback:
                    raise
                logger.warning(
                    f"Usage read from local fallback bucket: {e.message}",
                    extra=get_log_context(bucket_key=bucket_key, path=FALLBACK_SOURCE),
                )
                source = FALLBACK_SOURCE
                available = (await self._fallback.peek(bucket_key, config)).available

            whole = int(available)
            usage[dimension.value] = {
                "used": config.max_capacity - whole,
                "limit": config.max_capacity,
                "available": whole,
                "source": source,
            }
        return usage

    async def close(self) -> None:
        """Release the store's resources."""
        await self._store.close()


def create_bucket_store(settings: Optional[Settings] = None) -> BucketStore:
    """Build the bucket store selected by ``settings.store_backend``."""
    s = settings or default_settings
    if s.store_backend == "redis":
        from .redis_store import RedisBucketStore

        return RedisBucketStore(
            redis_url=s.redis_url,
            key_prefix=s.redis_key_prefix,
            socket_timeout=s.rate_limit_store_timeout_seconds,
        )
    if s.store_backend == "sql":
        from .sql_store import SQLBucketStore

        return SQLBucketStore(database_url=s.database_url)

    from .memory_store import InMemoryBucketStore

    return InMemoryBucketStore()


# Global rate limiter instance
_rate_limiter: Optional[DistributedRateLimiter] = None


def get_rate_limiter(
    store: Optional[BucketStore] = None,
    config: Optional[RateLimiterConfig] = None,
) -> DistributedRateLimiter:
    """Get the global rate limiter, creating it from settings on first use."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = DistributedRateLimiter(
            store=store or create_bucket_store(),
            config=config,
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter instance."""
    global _rate_limiter
    _rate_limiter = None
