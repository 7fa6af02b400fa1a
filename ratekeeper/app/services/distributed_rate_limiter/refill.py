"""Token bucket refill math shared by the distributed and fallback paths.

Everything here is pure: it takes a bucket record, the dimension config and
the current time, and never touches a store.
"""

import math
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from ratekeeper.app.core.utils import day_start, next_day_start

from .models import BucketRecord, DimensionConfig


@dataclass(frozen=True)
class RefillState:
    """Bucket state after crediting elapsed time.

    Attributes:
        available: Units available now, within [0, max_capacity]
        last_refill_timestamp: New refill mark, never earlier than the stored one
        window_start_timestamp: Unchanged unless a daily reset happened
        reset: True when a day boundary was crossed and the bucket refilled fully
    """

    available: float
    last_refill_timestamp: float
    window_start_timestamp: float
    reset: bool = False


def initial_window_start(config: DimensionConfig, now: float, tz: ZoneInfo) -> float:
    """Window start stamped on a freshly created bucket."""
    if config.daily:
        return day_start(now, tz)
    return now


def compute_refill(
    record: BucketRecord,
    config: DimensionConfig,
    now: float,
    tz: ZoneInfo,
) -> RefillState:
    """Credit the time elapsed since ``record.last_refill_timestamp``.

    Minute dimensions refill continuously at ``config.refill_rate``. The daily
    dimension does not leak: it stays put within a day and jumps back to full
    capacity once ``now`` reaches a local midnight later than its window start.

    Elapsed time is measured against the stored refill mark, so a caller whose
    clock lags behind it is credited nothing rather than a negative amount.
    """
    capacity = float(config.max_capacity)
    tokens = min(max(record.tokens_available, 0.0), capacity)
    refill_mark = max(now, record.last_refill_timestamp)

    if config.daily:
        today = day_start(now, tz)
        if today > record.window_start_timestamp:
            return RefillState(capacity, refill_mark, today, reset=True)
        return RefillState(tokens, refill_mark, record.window_start_timestamp)

    elapsed = max(0.0, now - record.last_refill_timestamp)
    available = min(capacity, tokens + elapsed * config.refill_rate)
    return RefillState(available, refill_mark, record.window_start_timestamp)


def retry_after_ms(
    config: DimensionConfig,
    available: float,
    requested: int,
    now: float,
    tz: ZoneInfo,
) -> int:
    """Suggested wait in milliseconds before ``requested`` units can be available.

    Minute dimensions: time to refill the deficit, capped at the window length.
    A request larger than the whole bucket therefore waits one window.

    Daily dimension: time until the next local midnight. Daily buckets do not
    refill between resets, so ``deficit / refill_rate`` would promise tokens
    that never arrive; the wait is the time to the boundary even when the
    deficit-based estimate is shorter.
    """
    if config.daily:
        wait_ms = math.ceil((next_day_start(now, tz) - now) * 1000)
        return max(1, wait_ms)

    deficit = max(0.0, requested - available)
    wait_ms = math.ceil(deficit / config.refill_rate * 1000)
    return max(1, min(wait_ms, config.window_seconds * 1000))
