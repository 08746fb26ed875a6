"""Logging configuration with structured JSON formatter.

This module provides a JSON formatter and a `dictConfig`-ready logging
configuration for the ingest client. Components log with plain
`logging.getLogger("bitmap_ingest.<area>")` loggers and attach context through
the `extra` parameter (index, field, shard, address, attempt, ...); the
formatter flattens that context into the JSON document.
"""

import json
import logging
from logging.config import dictConfig
from typing import Any

# Standard LogRecord attributes that are either emitted explicitly or internal
_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "error",
    }
)


class CustomJSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging.

    This formatter converts log records to JSON format, including:
    - Standard log fields (time, level, message, etc.)
    - Error information passed as `extra={"error": ...}`
    - All extra attributes passed via the extra parameter
    """

    def __init__(self, fmt: str) -> None:
        """Initialize the formatter.

        Args:
            fmt: Format string (used for asctime, but output is JSON).
        """
        logging.Formatter.__init__(self, fmt)

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: The log record to format.

        Returns:
            JSON string representation of the log record.
        """
        logging.Formatter.format(self, record)
        return json.dumps(self.get_log(record), indent=None, default=str)

    def get_log(self, record: logging.LogRecord) -> dict[str, Any]:
        """Extract log data from record into a dictionary.

        Args:
            record: The log record to extract data from.

        Returns:
            Dictionary containing log data.
        """
        d: dict[str, Any] = {
            "time": record.asctime,
            "process_name": record.processName,
            "process_id": record.process,
            "thread_name": record.threadName,
            "thread_id": record.thread,
            "level": record.levelname,
            "logger_name": record.name,
            "pathname": record.pathname,
            "line": record.lineno,
            "message": record.message,
        }

        error_data = getattr(record, "error", None)
        if error_data is not None:
            if isinstance(error_data, dict):
                error_dict: dict[str, Any] = error_data.copy()
                if record.exc_info:
                    error_dict["trace"] = self.formatException(record.exc_info)
                d["error"] = error_dict
            else:
                d["error"] = error_data
        elif record.exc_info:
            d["trace"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                d[key] = value

        return d


LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,  # Keep existing loggers, just configure them
    "formatters": {
        "standard": {"()": lambda: CustomJSONFormatter(fmt="%(asctime)s")},
    },
    "handlers": {
        "default": {
            "formatter": "standard",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "bitmap_ingest": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "bitmap_ingest.core.ingestion": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "bitmap_ingest.clients": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "urllib3": {
            "handlers": ["default"],
            "level": "WARNING",  # Connection pool chatter is noise during bulk loads
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
}


def configure_logging(level: str | None = None) -> None:
    """Apply `LOGGING_CONFIG`, optionally overriding the package log level.

    Args:
        level: Level name for the `bitmap_ingest` loggers (e.g. "DEBUG").
            Uses the configured defaults when None.
    """
    if level is None:
        dictConfig(LOGGING_CONFIG)
        return

    config = {**LOGGING_CONFIG, "loggers": {name: dict(cfg) for name, cfg in LOGGING_CONFIG["loggers"].items()}}
    for name, logger_cfg in config["loggers"].items():
        if name.startswith("bitmap_ingest"):
            logger_cfg["level"] = level.upper()
    dictConfig(config)
