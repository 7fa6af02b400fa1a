"""In-memory bucket store.

Shares state only between limiters in one process. Used for single-instance
deployments and as the reference backend in tests.
"""

import asyncio
import time
from dataclasses import replace
from typing import Callable, Dict

from ratekeeper.app.exceptions import BucketNotFoundError, VersionConflictError

from .models import BucketRecord
from .store import BucketStore


class InMemoryBucketStore(BucketStore):
    """Dict-backed bucket store honouring record TTLs.

    Records are copied on the way in and out so that callers can never mutate
    stored state without going through ``conditional_update``.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._records: Dict[str, BucketRecord] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    def _live(self, bucket_key: str) -> BucketRecord | None:
        record = self._records.get(bucket_key)
        if record is not None and record.ttl <= self._clock():
            del self._records[bucket_key]
            return None
        return record

    async def get(self, bucket_key: str) -> BucketRecord:
        async with self._lock:
            record = self._live(bucket_key)
            if record is None:
                raise BucketNotFoundError(bucket_key)
            return replace(record)

    async def create_if_absent(self, bucket_key: str, record: BucketRecord) -> BucketRecord:
        async with self._lock:
            existing = self._live(bucket_key)
            if existing is not None:
                return replace(existing)
            self._records[bucket_key] = replace(record)
            return replace(record)

    async def conditional_update(
        self, bucket_key: str, expected_version: int, record: BucketRecord
    ) -> BucketRecord:
        async with self._lock:
            existing = self._live(bucket_key)
            if existing is None:
                raise VersionConflictError(bucket_key, expected_version, None)
            if existing.version != expected_version:
                raise VersionConflictError(bucket_key, expected_version, existing.version)
            self._records[bucket_key] = replace(record)
            return replace(record)

    def peek(self, bucket_key: str) -> BucketRecord | None:
        """Stored record without TTL handling, for inspection."""
        record = self._records.get(bucket_key)
        return replace(record) if record is not None else None

    def put(self, record: BucketRecord) -> None:
        """Overwrite a record unconditionally. Seeding only."""
        self._records[record.bucket_key] = replace(record)
