"""
Root logger setup for the dcompare engine.

``setup_logging`` runs once per process. A batch run writes to stderr
and, when a log file is given, to a size-rotated file; both share one
level and either the JSON or the plain layout.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path

from .formatters import ConsoleFormatter, JSONFormatter

APP_NAME = "dcompare"

_FILE_FORMAT = logging.Formatter(
    fmt="%(asctime)s %(levelname)-8s %(threadName)s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Driver and exporter loggers that are noisy at INFO
_QUIET_LOGGERS = ("urllib3", "opentelemetry")

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _stream_handler(json_format: bool, app_name: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        JSONFormatter(app_name=app_name) if json_format else ConsoleFormatter(use_colors=True)
    )
    return handler


def _file_handler(
    log_file: str, json_format: bool, app_name: str, max_bytes: int, backup_count: int
) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(JSONFormatter(app_name=app_name) if json_format else _FILE_FORMAT)
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
    json_format: bool = False,
    app_name: str = APP_NAME,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Level name; unknown names fall back to INFO
        log_file: Rotating log file path, or None for no file
        console_output: Write to stderr
        json_format: JSON lines instead of the plain layout
        app_name: Value of the ``app`` field in JSON output
        max_bytes: Rotation threshold for the log file
        backup_count: Rotated files kept
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handlers = []
    if console_output:
        handlers.append(_stream_handler(json_format, app_name))
    if log_file:
        handlers.append(_file_handler(log_file, json_format, app_name, max_bytes, backup_count))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    for handler in handlers:
        handler.setLevel(numeric_level)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging ready: level=%s file=%s json=%s",
        logging.getLevelName(numeric_level),
        log_file or "-",
        json_format,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """Detach and close root handlers so the log file is released."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    logging.shutdown()


def configure_from_env(level: str | None = None) -> None:
    """
    Set up logging from LOG_LEVEL, LOG_FILE, LOG_JSON and LOG_CONSOLE.

    An explicit ``level`` (the CLI's ``--log-level``) wins over LOG_LEVEL.
    """
    setup_logging(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE") or None,
        console_output=_env_flag("LOG_CONSOLE", True),
        json_format=_env_flag("LOG_JSON", False),
    )
