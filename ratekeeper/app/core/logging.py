"""Logging setup for the rate limiter.

Everything goes through the standard library ``logging`` package, configured
with ``dictConfig``. ``LOG_FORMAT=json`` emits one JSON object per line with
the quota context (bucket, dimension, path, attempt, version) as top-level keys.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ratekeeper.app.core.config import settings

# Quota context attached to records through ``extra=get_log_context(...)``
CONTEXT_FIELDS = (
    "bucket_key",  # "{api_id}-{dimension}"
    "dimension",  # rpm | tpm | rpd
    "path",  # distributed | fallback
    "attempt",  # optimistic concurrency round within one acquire
    "version",  # bucket version the round read
    "tokens",  # units requested
)

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render each record as a single-line JSON document.

    Context fields that are unset are left out. Unknown ``extra`` attributes
    are grouped under an ``extra`` key so they never clash with the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        document: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        document.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS
        }
        if extra:
            document["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            document["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(document, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the quota context attributes, None when not supplied.

    The structured text format references them by name, so they must exist.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


_TEXT_FORMATS = {
    "text": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
    "structured": (
        "%(asctime)s %(levelname)s [%(name)s] %(message)s "
        "bucket_key=%(bucket_key)s path=%(path)s attempt=%(attempt)s version=%(version)s"
    ),
}


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` mapping from settings.

    Returns:
        Configuration dict for logging.config.dictConfig
    """
    log_format = str(getattr(settings, "log_format", "text")).lower()
    log_level = str(getattr(settings, "log_level", "INFO")).upper()

    if log_format == "json":
        formatter: Dict[str, Any] = {"()": "ratekeeper.app.core.logging.JSONFormatter"}
    else:
        formatter = {"format": _TEXT_FORMATS.get(log_format, _TEXT_FORMATS["text"])}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "filters": {"context": {"()": "ratekeeper.app.core.logging.ContextFilter"}},
        "handlers": {
            "stream": {
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
                "level": log_level,
                "formatter": "default",
                "filters": ["context"],
            },
        },
        "loggers": {
            "ratekeeper": {
                "level": log_level,
                "handlers": ["stream"],
                "propagate": False,
            },
        },
    }


def setup_logging() -> None:
    """Apply the logging configuration. Call once at process start."""
    logging.config.dictConfig(get_logging_config())

    # Client libraries are chatty at DEBUG
    for noisy in ("redis", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = "ratekeeper") -> logging.Logger:
    """Return a logger under the ``ratekeeper`` hierarchy."""
    return logging.getLogger(name)


def get_log_context(
    bucket_key: Optional[str] = None,
    dimension: Optional[str] = None,
    path: Optional[str] = None,
    attempt: Optional[int] = None,
    version: Optional[int] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping for a log call, leaving out unset values.

    Example:
        >>> logger.warning(
        ...     "Version conflict",
        ...     extra=get_log_context(bucket_key="gemini-api-tpm", attempt=2),
        ... )
    """
    context = dict(
        bucket_key=bucket_key,
        dimension=dimension,
        path=path,
        attempt=attempt,
        version=version,
        **extra,
    )
    return {key: value for key, value in context.items() if value is not None}
