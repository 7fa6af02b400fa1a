"""Database package for the SQL bucket store.

This package provides:
- The rate_limit_buckets table model
- Async engine and session management
"""

from ratekeeper.app.db.base import Base
from ratekeeper.app.db.models import RateLimitBucket
from ratekeeper.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    init_async_db,
    make_session_maker,
)

__all__ = [
    "Base",
    "RateLimitBucket",
    "close_async_engine",
    "get_async_engine",
    "init_async_db",
    "make_session_maker",
]
