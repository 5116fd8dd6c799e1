"""Structured logging configuration.

Lines look like::

    2024-06-01T12:00:00.000Z | INFO     | hybridrec.learning.pipeline | Processed learning batch | size=100 loss=0.8123

Training runs in worker threads, so records from threads other than the
main one carry the thread name. Key/value context is passed through
``extra={"context": {...}}`` and rendered after the message.
"""

import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, TextIO

_NOISY_LOGGERS = ("uvicorn.access", "apscheduler.executors.default", "aiosqlite")


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Formatter producing ``timestamp | LEVEL | logger | message | k=v`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        parts = [
            timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            record.levelname.ljust(8),
            record.name,
        ]
        if record.threadName and record.threadName != threading.main_thread().name:
            parts.append(f"[{record.threadName}]")
        parts.append(record.getMessage())

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            parts.append(" ".join(f"{k}={_format_value(v)}" for k, v in context.items()))

        log_line = " | ".join(parts)
        if record.exc_info:
            log_line += "\n" + self.formatException(record.exc_info)
        return log_line


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Configure structured logging for the service.

    Replaces existing root handlers, so calling it twice is harmless.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream, stdout by default
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
