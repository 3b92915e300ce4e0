"""Logging setup for quotaguard.

Standard library logging configured through ``dictConfig``. Quota decisions
are logged with structured context (key, backend, usage, limit, window) that
the JSON format emits as top-level fields.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from quotaguard.app.core.config import settings

# Fields passed through ``extra`` that describe a quota decision
CONTEXT_FIELDS = (
    "request_id",
    "quota_key",
    "backend",
    "usage",
    "limit",
    "window_ms",
    "path",
    "method",
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "taskName",
    "message", "asctime",
))

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_FORMATTERS = {
    "text": {"format": _TEXT_FORMAT},
    "structured": {
        "format": _TEXT_FORMAT
        + " - request_id=%(request_id)s - quota_key=%(quota_key)s - backend=%(backend)s"
    },
    "json": {"()": "quotaguard.app.core.logging.JSONFormatter"},
}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES and key not in CONTEXT_FIELDS
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the context fields, defaulting to None.

    The structured text format references them by name and would fail on
    records logged without them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` mapping for ``settings.log_format``."""
    log_format = settings.log_format.lower()
    log_level = settings.log_level.upper()

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {log_format: _FORMATTERS[log_format]},
        "filters": {"context": {"()": "quotaguard.app.core.logging.ContextFilter"}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": log_format,
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {
            "quotaguard": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str = "quotaguard") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    quota_key: Optional[str] = None,
    backend: Optional[str] = None,
    request_id: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a dict for the ``extra=`` argument of logging calls.

    None values are dropped so that unset fields stay absent from JSON output.

    Example:
        >>> logger.warning(
        ...     "Quota exceeded",
        ...     extra=get_log_context(quota_key="user:1", usage=3, limit=2)
        ... )
    """
    context = {
        "quota_key": quota_key,
        "backend": backend,
        "request_id": request_id,
        **extra,
    }
    return {k: v for k, v in context.items() if v is not None}
