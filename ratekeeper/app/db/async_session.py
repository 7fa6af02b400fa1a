"""Engines and sessions for the SQL bucket store.

PostgreSQL (asyncpg) backs shared deployments; SQLite (aiosqlite) covers
tests and single-host setups.
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ratekeeper.app.core.config import settings
from ratekeeper.app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    if url.lower().startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "connect_args": {"command_timeout": settings.rate_limit_store_timeout_seconds},
    }


@lru_cache(maxsize=4)
def get_async_engine(database_url: str | None = None) -> AsyncEngine:
    """Engine for ``database_url`` (or the configured URL), one per URL."""
    url = database_url or settings.database_url
    engine = create_async_engine(url, echo=False, **_engine_options(url))
    logger.info("Bucket store engine ready: %s", engine.dialect.name)
    return engine


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions that keep loaded rows usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_async_db(engine: AsyncEngine | None = None) -> None:
    """Create the bucket table when missing."""
    from ratekeeper.app.db.base import Base

    target = engine or get_async_engine()
    async with target.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


async def close_async_engine(engine: AsyncEngine | None = None) -> None:
    """Release pooled connections and forget cached engines."""
    target = engine or get_async_engine()
    try:
        await target.dispose()
    except RuntimeError:
        # Pool bound to an event loop that has already closed
        logger.debug("Bucket store engine disposed after its event loop closed")
    else:
        logger.debug("Bucket store engine disposed")
    get_async_engine.cache_clear()
