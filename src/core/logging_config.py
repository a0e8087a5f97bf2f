"""Centralized logging configuration with JSON structured logging support."""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


# Default format for text logs; structured fields are appended as key=value pairs
TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEBUG_ENV_VAR = "RIVER_DEBUG"
DEBUG_VALUES = frozenset({"1", "true"})


def _format_value(value: Any) -> str:
    text = str(value)
    if text == "" or any(ch in text for ch in ' ="'):
        return json.dumps(text)
    return text


class KeyValueFormatter(logging.Formatter):
    """
    Text formatter that renders ``extra_data`` as trailing ``key=value`` pairs.

    Example output:
        2024-01-01 12:00:00 - riverui - INFO - Incoming request method=GET status=200
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as text followed by its structured fields."""
        line = super().format(record)
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            pairs = " ".join(f"{key}={_format_value(value)}" for key, value in extra_data.items())
            # Keep the traceback (if any) on the lines after the fields
            head, sep, tail = line.partition("\n")
            line = f"{head} {pairs}{sep}{tail}"
        return line


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, selected with ``LOG_FORMAT=json``.

    The record time is used rather than the formatting time, and the
    structured ``extra_data`` fields (request method, status, trace ids...)
    are nested under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.lineno}",
        }
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = extra_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def is_debug_enabled(environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Check whether verbose logging was requested.

    Args:
        environ: Environment mapping to read (defaults to ``os.environ``).

    Returns:
        True when RIVER_DEBUG is exactly ``1`` or ``true``.
    """
    env = os.environ if environ is None else environ
    return env.get(DEBUG_ENV_VAR, "") in DEBUG_VALUES


def setup_logging(
    debug: bool = False,
    json_format: bool = False,
) -> None:
    """
    Configure process-wide logging.

    Called once at process start, before any other component runs.

    Args:
        debug: If True, log at DEBUG level instead of INFO.
        json_format: If True, use JSON structured logging.
    """
    console_handler = logging.StreamHandler(sys.stdout)
    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(KeyValueFormatter(TEXT_LOG_FORMAT, DATE_FORMAT))

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[console_handler],
        force=True,  # Overwrite any existing configuration
    )

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name of the logger (usually __name__).

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


__all__ = [
    "setup_logging",
    "get_logger",
    "is_debug_enabled",
    "JSONFormatter",
    "KeyValueFormatter",
]
