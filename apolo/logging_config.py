"""
Logging configuration for the apolo client and service.

- Text: human-readable single-line format (default)
- JSON: one object per line, for log aggregation
- Level and format come from LOG_LEVEL / LOG_FORMAT unless passed explicitly
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .config import LOG_FORMAT, LOG_LEVEL

_EXTRA_KEYS = ("project_id", "task_id", "user_id", "table", "operation")


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Plain formatter; appends known context keys when present."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        context = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        )
        base = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if context:
            base += f" [{context}]"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Logger:
    """Install a single stderr handler on the ``apolo`` logger.

    Calling it again replaces the handler, so tests and the service entry
    point can both call it safely.
    """
    logger = logging.getLogger("apolo")
    logger.setLevel((level or LOG_LEVEL).upper())

    handler = logging.StreamHandler(sys.stderr)
    if (fmt or LOG_FORMAT).lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ReadableFormatter())

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    return logger
