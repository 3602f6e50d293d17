"""Logging setup for Sky Planner.

Everything goes to stdout through one root handler. ``structured`` writes a
JSON object per line for log shipping, including any ``extra={...}`` fields
passed at the call site; ``dev`` writes aligned plain text.
"""

import json
import logging
import logging.config
import time
from typing import Any, Literal

LogFormat = Literal["structured", "dev"]

DEV_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Chatty at INFO; only their warnings are interesting
_QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore")

# Attributes every LogRecord has; anything else came from ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON line per record, timestamps in UTC with milliseconds."""

    converter = time.gmtime
    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry.setdefault(key, value)
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def logging_config(level: str, format_type: LogFormat) -> dict[str, Any]:
    """dictConfig schema for the given level and output format."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {"()": JSONFormatter},
            "dev": {"format": DEV_FORMAT, "datefmt": "%H:%M:%S"},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": format_type,
            },
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {
            # SQL statements are logged at INFO by the engine
            "sqlalchemy.engine": {"level": "INFO" if level == "DEBUG" else "WARNING"},
            **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
        },
    }


def setup_logging(level: str = "INFO", format_type: LogFormat = "dev") -> None:
    """Replace the root handler according to LOG_LEVEL and LOG_FORMAT."""
    logging.config.dictConfig(logging_config(level, format_type))
    get_logger("logging").info(f"Logging configured: level={level}, format={format_type}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the skyplanner prefix."""
    return logging.getLogger(f"skyplanner.{name}")
