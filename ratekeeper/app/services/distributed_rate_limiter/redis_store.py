"""Redis-backed bucket store for multi-instance deployments.

Each bucket is one JSON string key. Creation uses ``SET NX EXAT`` and updates
go through a Lua compare-and-swap script, so every write is version checked.

Redis key format:
- {prefix}:{bucket_key} - serialized BucketRecord
"""

import json
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from ratekeeper.app.core.config import settings
from ratekeeper.app.core.logging import get_logger
from ratekeeper.app.exceptions import (
    BucketNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)

from .models import BucketRecord
from .redis_lua import CONDITIONAL_UPDATE_SCRIPT
from .store import BucketStore

logger = get_logger(__name__)


class RedisBucketStore(BucketStore):
    """Bucket store on Redis.

    Any ``redis.RedisError`` (connection refused, timeout, script error) is
    reported as ``StoreUnavailableError``.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        socket_timeout: Optional[float] = None,
    ) -> None:
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self._key_prefix = key_prefix or settings.redis_key_prefix
        self._socket_timeout = socket_timeout or settings.rate_limit_store_timeout_seconds

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        return self._redis

    def _make_key(self, bucket_key: str) -> str:
        """Create Redis key for a bucket."""
        return f"{self._key_prefix}:{bucket_key}"

    @staticmethod
    def _decode(bucket_key: str, raw: Any) -> BucketRecord:
        """Parse a stored value; an unreadable one counts as a store failure."""
        try:
            if isinstance(raw, bytes):
                raw = raw.decode()
            return BucketRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unreadable bucket record at {bucket_key}: {e}")
            raise StoreUnavailableError(bucket_key, e) from e

    async def get(self, bucket_key: str) -> BucketRecord:
        try:
            raw = await self._get_redis().get(self._make_key(bucket_key))
        except redis.RedisError as e:
            raise StoreUnavailableError(bucket_key, e) from e
        if raw is None:
            raise BucketNotFoundError(bucket_key)
        return self._decode(bucket_key, raw)

    async def create_if_absent(self, bucket_key: str, record: BucketRecord) -> BucketRecord:
        key = self._make_key(bucket_key)
        client = self._get_redis()
        payload = json.dumps(record.to_dict())
        # Two rounds: the winner's record may expire between our SET and GET
        for _ in range(2):
            try:
                created = await client.set(key, payload, nx=True, exat=record.ttl)
                if created:
                    logger.debug(f"Created bucket {bucket_key} at version {record.version}")
                    return record
                # Lost the creation race, read the winner's record
                raw = await client.get(key)
            except redis.RedisError as e:
                raise StoreUnavailableError(bucket_key, e) from e
            if raw is not None:
                return self._decode(bucket_key, raw)
        raise StoreUnavailableError(bucket_key)

    async def conditional_update(
        self, bucket_key: str, expected_version: int, record: BucketRecord
    ) -> BucketRecord:
        try:
            result = await self._get_redis().eval(
                CONDITIONAL_UPDATE_SCRIPT,
                1,  # Number of keys
                self._make_key(bucket_key),  # KEYS[1]
                expected_version,  # ARGV[1]
                json.dumps(record.to_dict()),  # ARGV[2]
                record.ttl,  # ARGV[3]
            )
        except redis.RedisError as e:
            raise StoreUnavailableError(bucket_key, e) from e

        status = int(result[0])
        if status == 1:
            return record
        actual = int(result[1]) if status == 0 else None
        raise VersionConflictError(bucket_key, expected_version, actual)

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
