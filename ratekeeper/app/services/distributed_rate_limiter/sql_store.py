"""SQL-backed bucket store (SQLAlchemy 2 async).

Creation is a plain INSERT on the primary key: the losing writer gets an
IntegrityError and re-reads. Updates carry ``WHERE version = :expected`` and a
zero rowcount means another writer got there first.

Rows past their ``ttl`` behave as absent: reads skip them, updates never match
them, and creation replaces them.
"""

import time
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ratekeeper.app.core.logging import get_logger
from ratekeeper.app.db.async_session import get_async_engine, make_session_maker
from ratekeeper.app.db.models import RateLimitBucket
from ratekeeper.app.exceptions import (
    BucketNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)

from .models import BucketRecord
from .store import BucketStore

logger = get_logger(__name__)


def _to_record(row: RateLimitBucket) -> BucketRecord:
    return BucketRecord(
        bucket_key=row.bucket_key,
        tokens_available=row.tokens_available,
        max_capacity=row.max_capacity,
        refill_rate=row.refill_rate,
        last_refill_timestamp=row.last_refill_timestamp,
        window_start_timestamp=row.window_start_timestamp,
        version=row.version,
        ttl=row.ttl,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_row(record: BucketRecord) -> RateLimitBucket:
    return RateLimitBucket(
        bucket_key=record.bucket_key,
        tokens_available=record.tokens_available,
        max_capacity=record.max_capacity,
        refill_rate=record.refill_rate,
        last_refill_timestamp=record.last_refill_timestamp,
        window_start_timestamp=record.window_start_timestamp,
        version=record.version,
        ttl=record.ttl,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SQLBucketStore(BucketStore):
    """Bucket store on a relational database.

    Relational databases have no native expiry. Expired rows are ignored by
    every operation and physically removed by ``purge_expired``, which
    deployments schedule on their own (a cron job or periodic task);
    ``idx_rate_limit_buckets_ttl`` keeps that delete cheap.
    """

    name = "sql"

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        database_url: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._engine = engine or get_async_engine(database_url)
        self._session_maker = make_session_maker(self._engine)
        self._clock = clock

    async def _select(self, session, bucket_key: str) -> Optional[RateLimitBucket]:
        """Live row for ``bucket_key``, or None."""
        result = await session.execute(
            select(RateLimitBucket).where(
                RateLimitBucket.bucket_key == bucket_key,
                RateLimitBucket.ttl > self._clock(),
            )
        )
        return result.scalar_one_or_none()

    async def get(self, bucket_key: str) -> BucketRecord:
        try:
            async with self._session_maker() as session:
                row = await self._select(session, bucket_key)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(bucket_key, e) from e
        if row is None:
            raise BucketNotFoundError(bucket_key)
        return _to_record(row)

    async def create_if_absent(self, bucket_key: str, record: BucketRecord) -> BucketRecord:
        try:
            async with self._session_maker() as session:
                # An expired row would block the insert
                await session.execute(
                    delete(RateLimitBucket).where(
                        RateLimitBucket.bucket_key == bucket_key,
                        RateLimitBucket.ttl <= self._clock(),
                    )
                )
                session.add(_to_row(record))
                try:
                    await session.commit()
                    logger.debug(f"Created bucket {bucket_key} at version {record.version}")
                    return record
                except IntegrityError:
                    # Lost the creation race, read the winner's row
                    await session.rollback()
                row = await self._select(session, bucket_key)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(bucket_key, e) from e
        if row is None:
            raise StoreUnavailableError(bucket_key)
        return _to_record(row)

    async def conditional_update(
        self, bucket_key: str, expected_version: int, record: BucketRecord
    ) -> BucketRecord:
        statement = (
            update(RateLimitBucket)
            .where(
                RateLimitBucket.bucket_key == bucket_key,
                RateLimitBucket.version == expected_version,
                RateLimitBucket.ttl > self._clock(),
            )
            .values(
                tokens_available=record.tokens_available,
                max_capacity=record.max_capacity,
                refill_rate=record.refill_rate,
                last_refill_timestamp=record.last_refill_timestamp,
                window_start_timestamp=record.window_start_timestamp,
                version=record.version,
                ttl=record.ttl,
                updated_at=record.updated_at,
            )
        )
        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                if result.rowcount == 1:
                    await session.commit()
                    return record
                await session.rollback()
                row = await self._select(session, bucket_key)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(bucket_key, e) from e
        raise VersionConflictError(
            bucket_key, expected_version, row.version if row is not None else None
        )

    async def purge_expired(self, now: Optional[float] = None) -> int:
        """Delete rows whose ttl has passed. Returns the number removed."""
        cutoff = self._clock() if now is None else now
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    delete(RateLimitBucket).where(RateLimitBucket.ttl <= cutoff)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailableError("*", e) from e
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired rate limit buckets")
        return result.rowcount

    async def close(self) -> None:
        await self._engine.dispose()
