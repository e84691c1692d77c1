"""Structured JSON logging configuration.

Session logs include session_id, sid and service for tracing one
streaming conversation across reader/writer tasks.
Secret sanitization is applied to every formatted event.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

from speech_services.logging.secret_sanitizer import sanitize_secrets

if TYPE_CHECKING:
    from speech_services.config import LoggingSettings

_EXTRA_FIELDS = ("session_id", "sid", "service", "duration_ms", "attempt", "code")


class JSONFormatter(logging.Formatter):
    """Formats log records as structured JSON with secret sanitization."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "event": sanitize_secrets(record.getMessage()),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = sanitize_secrets(str(record.exc_info[1]))

        return json.dumps(log_entry, ensure_ascii=False)


class SanitizingFormatter(logging.Formatter):
    """Human-readable formatter that still masks credentials."""

    def format(self, record: logging.LogRecord) -> str:
        return sanitize_secrets(super().format(record))


_QUIET_LOGGERS = ("aiohttp", "asyncio", "aiobreaker")

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(
    level: str = "INFO", format_type: str = "json", stream: TextIO | None = None
) -> logging.StreamHandler[TextIO]:
    """Install one handler on the root logger and return it.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format_type: "json" for structured JSON, "text" for human-readable.
        stream: Destination, stdout by default.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    formatter = JSONFormatter() if format_type == "json" else SanitizingFormatter(_TEXT_FORMAT)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def setup_logging_from(settings: LoggingSettings) -> logging.StreamHandler[TextIO]:
    """setup_logging() driven by LOG_LEVEL / LOG_FORMAT."""
    return setup_logging(settings.level, settings.format)
