"""
Structured logging for the tracker package.

Tracker modules log through logging.getLogger(__name__), i.e. under the
"provtrack" hierarchy. Job context travels in `extra=` (job_id,
correlation_id, tracker_state, ...) and is lifted into JSON output by
JSONFormatter.

Usage:
    from provtrack.logging_config import configure_from_settings

    configure_from_settings(get_settings())
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

LOGGER_NAME = "provtrack"

CONTEXT_FIELDS = ("job_id", "correlation_id", "tracker_state", "poll_seq", "status_code")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


class JSONFormatter(logging.Formatter):
    """One JSON object per record, plus whichever context fields are set."""

    def __init__(self, context_fields: Iterable[str] = CONTEXT_FIELDS):
        super().__init__()
        self.context_fields = tuple(context_fields)

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (name, getattr(record, name))
            for name in self.context_fields
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _console_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    return handler


def _file_handler(log_file: str) -> logging.Handler:
    # Files are always JSON so they can be shipped as-is
    handler = RotatingFileHandler(
        log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
    )
    handler.setFormatter(JSONFormatter())
    return handler


def configure_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Attach console (and optional rotating file) handlers to the package logger.

    Calling it again replaces the handlers instead of stacking them.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        log_format: "json" for structured output, anything else for plain text
        log_file: Optional path for a rotating JSON log file

    Returns:
        The "provtrack" logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()

    handlers = [_console_handler(log_format)]
    if log_file:
        handlers.append(_file_handler(log_file))

    logger.handlers = handlers
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    return logger


def configure_from_settings(settings) -> logging.Logger:
    """Configure logging from an AppSettings instance."""
    return configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
    )
