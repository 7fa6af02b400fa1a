"""Time helpers for the rate limiter."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ratekeeper.app.core.config import settings


def get_reset_timezone(name: Optional[str] = None) -> ZoneInfo:
    """Return the timezone in which daily quotas roll over.

    Args:
        name: IANA zone name. Defaults to settings.rate_limit_daily_reset_timezone.
    """
    return ZoneInfo(name or settings.rate_limit_daily_reset_timezone)


def _local_midnight(day: date, tz: ZoneInfo) -> float:
    return datetime.combine(day, time.min, tzinfo=tz).timestamp()


def day_start(timestamp: float, tz: ZoneInfo) -> float:
    """Epoch seconds of the local midnight that starts the day containing ``timestamp``.

    Examples:
        >>> day_start(1704070800.0, ZoneInfo("UTC"))  # 2024-01-01 01:00 UTC
        1704067200.0
    """
    local_day = datetime.fromtimestamp(timestamp, tz).date()
    return _local_midnight(local_day, tz)


def next_day_start(timestamp: float, tz: ZoneInfo) -> float:
    """Epoch seconds of the next local midnight after ``timestamp``.

    Computed on calendar dates so that 23 and 25 hour days around DST
    transitions still end at midnight.
    """
    local_day = datetime.fromtimestamp(timestamp, tz).date()
    return _local_midnight(local_day + timedelta(days=1), tz)


def utc_isoformat(timestamp: float) -> str:
    """ISO 8601 rendering of an epoch timestamp in UTC."""
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()
