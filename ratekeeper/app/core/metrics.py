"""In-process metrics for the rate limiter.

Counters are kept per process and rendered in Prometheus text format so that
whatever hosts the limiter can expose them on its own metrics endpoint.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ratekeeper.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class LimiterMetrics:
    """Collects and stores rate limiter metrics.

    This class is coroutine-safe and collects:
    - Acquire outcomes by dimension, outcome and path
    - Version conflicts
    - Store errors by kind
    - Fallback activations
    """

    # (dimension, outcome, path) -> count
    _acquires: Dict[Tuple[str, str, str], int] = field(
        default_factory=lambda: defaultdict(int)
    )
    _tokens_acquired: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _conflicts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _store_errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _fallbacks: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _start_time: float = field(default_factory=time.time)

    async def record_acquire(
        self, dimension: str, outcome: str, path: str, tokens: int = 0
    ) -> None:
        """Record the terminal result of an acquire call.

        Args:
            dimension: rpm, tpm or rpd
            outcome: success, denied, retries_exhausted or store_unavailable
            path: distributed or fallback
            tokens: Units acquired (0 unless outcome is success)
        """
        async with self._lock:
            self._acquires[(dimension, outcome, path)] += 1
            if tokens:
                self._tokens_acquired[dimension] += tokens

    async def record_conflict(self, dimension: str) -> None:
        """Record a lost optimistic concurrency round."""
        async with self._lock:
            self._conflicts[dimension] += 1

    async def record_store_error(self, kind: str) -> None:
        """Record a store failure, by exception class name."""
        async with self._lock:
            self._store_errors[kind] += 1

    async def record_fallback(self, dimension: str) -> None:
        """Record a call served by the local fallback bucket."""
        async with self._lock:
            self._fallbacks[dimension] += 1
        logger.debug(f"Fallback activation recorded for {dimension}")

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics.

        Returns:
            Dictionary with metrics summary
        """
        async with self._lock:
            acquires: Dict[str, Dict[str, int]] = defaultdict(dict)
            for (dimension, outcome, path), count in self._acquires.items():
                acquires[dimension][f"{outcome}:{path}"] = count
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "acquires": dict(acquires),
                "tokens_acquired": dict(self._tokens_acquired),
                "conflicts": dict(self._conflicts),
                "store_errors": dict(self._store_errors),
                "fallbacks": dict(self._fallbacks),
            }

    async def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        async with self._lock:
            lines = []

            lines.append("# HELP ratekeeper_acquire_total Acquire calls by terminal outcome")
            lines.append("# TYPE ratekeeper_acquire_total counter")
            for (dimension, outcome, path), count in sorted(self._acquires.items()):
                lines.append(
                    f'ratekeeper_acquire_total{{dimension="{dimension}",outcome="{outcome}",path="{path}"}} {count}'
                )

            lines.append("\n# HELP ratekeeper_tokens_acquired_total Quota units granted")
            lines.append("# TYPE ratekeeper_tokens_acquired_total counter")
            for dimension, count in sorted(self._tokens_acquired.items()):
                lines.append(f'ratekeeper_tokens_acquired_total{{dimension="{dimension}"}} {count}')

            lines.append("\n# HELP ratekeeper_version_conflicts_total Lost compare-and-swap rounds")
            lines.append("# TYPE ratekeeper_version_conflicts_total counter")
            for dimension, count in sorted(self._conflicts.items()):
                lines.append(f'ratekeeper_version_conflicts_total{{dimension="{dimension}"}} {count}')

            lines.append("\n# HELP ratekeeper_store_errors_total Bucket store failures")
            lines.append("# TYPE ratekeeper_store_errors_total counter")
            for kind, count in sorted(self._store_errors.items()):
                lines.append(f'ratekeeper_store_errors_total{{kind="{kind}"}} {count}')

            lines.append("\n# HELP ratekeeper_fallback_total Calls served by the local fallback bucket")
            lines.append("# TYPE ratekeeper_fallback_total counter")
            for dimension, count in sorted(self._fallbacks.items()):
                lines.append(f'ratekeeper_fallback_total{{dimension="{dimension}"}} {count}')

            lines.append("\n# HELP ratekeeper_uptime_seconds Collector uptime in seconds")
            lines.append("# TYPE ratekeeper_uptime_seconds gauge")
            lines.append(
                f"ratekeeper_uptime_seconds{{}} {round(time.time() - self._start_time, 2)}"
            )

            return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[LimiterMetrics] = None


def get_metrics_collector() -> LimiterMetrics:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = LimiterMetrics()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector instance."""
    global _metrics_collector
    _metrics_collector = None
