from sqlalchemy import BigInteger, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ratekeeper.app.db.base import Base


class RateLimitBucket(Base):
    """One row per (resource, quota dimension) pair."""

    __tablename__ = "rate_limit_buckets"
    __table_args__ = (
        Index("idx_rate_limit_buckets_ttl", "ttl"),
    )

    bucket_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    tokens_available: Mapped[float] = mapped_column(Float)
    max_capacity: Mapped[int] = mapped_column(Integer)
    refill_rate: Mapped[float] = mapped_column(Float)
    last_refill_timestamp: Mapped[float] = mapped_column(Float)
    window_start_timestamp: Mapped[float] = mapped_column(Float)
    version: Mapped[int] = mapped_column(Integer, default=0)
    ttl: Mapped[int] = mapped_column(BigInteger, comment="Epoch seconds after which the row may be purged")
    created_at: Mapped[str] = mapped_column(String(40))
    updated_at: Mapped[str] = mapped_column(String(40))
