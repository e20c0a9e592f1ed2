"""
Log formatters for structured and console logging.

Reconciliation context passed through ``extra`` (table, tid, batch_nbr,
thread_nbr, side, phase) is what operators filter on, so the JSON
formatter lifts it into a ``reconcile`` object; any other extra fields
go under ``context``. The console formatter appends both as
``[key=value ...]``.
"""

import json
import logging
import os
import sys
import traceback
from datetime import UTC, datetime

RECONCILE_FIELDS = ("table", "tid", "batch_nbr", "thread_nbr", "side", "phase")

# LogRecord attributes that are not user context
_RESERVED_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def extract_context(record: logging.LogRecord) -> dict:
    """Return the extra fields attached to a log record."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_FIELDS and not key.startswith("_")
    }


def split_context(record: logging.LogRecord) -> tuple[dict, dict]:
    """Split extra fields into (reconciliation context, other context)."""
    reconcile, other = {}, {}
    for key, value in extract_context(record).items():
        (reconcile if key in RECONCILE_FIELDS else other)[key] = value
    return reconcile, other


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(
        self,
        include_timestamp: bool = True,
        include_hostname: bool = True,
        app_name: str = "dcompare",
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_hostname = include_hostname
        self.app_name = app_name
        self.hostname = os.uname().nodename if include_hostname else None

    def _exception(self, record: logging.LogRecord) -> dict:
        exc_type, exc_value, exc_tb = record.exc_info
        return {
            "type": exc_type.__name__,
            "message": str(exc_value),
            "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        }

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "app": self.app_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_timestamp:
            entry["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat()
        if self.hostname:
            entry["hostname"] = self.hostname

        # one table fans out over several worker threads
        entry["thread"] = record.threadName
        entry["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        reconcile, other = split_context(record)
        if reconcile:
            entry["reconcile"] = reconcile
        if other:
            entry["context"] = other
        if record.exc_info:
            entry["exception"] = self._exception(record)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with optional ANSI level colors."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def formatMessage(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        if color is None:
            return super().formatMessage(record)

        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().formatMessage(record)
        finally:
            record.levelname = plain

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        reconcile, other = split_context(record)
        fields = {**reconcile, **other}
        if fields:
            formatted += " [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"
        return formatted
