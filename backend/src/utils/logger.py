"""
Logging configuration for FPL Cache Refresh Service.

Structured JSON lines in production, readable text locally. Context is passed
with ``extra={...}``; both formatters render it, JSON as top-level fields and
text as trailing ``key=value`` pairs.
"""

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

# LogRecord attributes that are plumbing rather than context
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "extra", "taskName", "asctime",
})

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "redis", "hpack", "uvicorn.access")


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through ``extra``."""
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, context flattened to top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if context:
            pairs = " ".join(f"{key}={value}" for key, value in context.items())
            # Keep a traceback (if any) after the context
            head, sep, tail = line.partition("\n")
            line = f"{head} | {pairs}{sep}{tail}"
        return line


def setup_logging(config=None):
    """
    Configure the root logger.

    Args:
        config: Optional Config object. If None, LOG_LEVEL and LOG_FORMAT are
            read from the environment.
    """
    log_level = config.log_level if config else os.getenv("LOG_LEVEL", "INFO")
    log_format = config.log_format if config else os.getenv("LOG_FORMAT", "json")
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
