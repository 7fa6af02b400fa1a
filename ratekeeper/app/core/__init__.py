"""Core utilities for the rate limiter."""

from ratekeeper.app.core.config import settings
from ratekeeper.app.core.logging import get_logger, setup_logging
from ratekeeper.app.core.metrics import (
    LimiterMetrics,
    get_metrics_collector,
    reset_metrics_collector,
)
from ratekeeper.app.core.retry import ConflictBackoff, RetryPolicy
from ratekeeper.app.core.tokenizer import count_tokens, estimate_request_tokens

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "LimiterMetrics",
    "get_metrics_collector",
    "reset_metrics_collector",
    "ConflictBackoff",
    "RetryPolicy",
    "count_tokens",
    "estimate_request_tokens",
]
