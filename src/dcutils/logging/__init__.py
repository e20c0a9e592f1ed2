"""
Structured logging configuration for the dcompare engine

Provides JSON-formatted logging with contextual information (table,
batch, thread, phase) and console output for operators.

Usage:
    from dcutils.logging import setup_logging, get_logger

    # Setup logging (call once at application startup)
    setup_logging(level="INFO", log_file="/var/log/dcompare/dcompare.log")

    # Get logger for your module
    logger = get_logger(__name__)

    # Log with context
    logger.info("Staged fingerprints", extra={
        "table": "customers",
        "batch_nbr": 1,
        "thread_nbr": 2,
    })
"""

from .config import configure_from_env, get_logger, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "get_logger",
    "configure_from_env",
    "shutdown_logging",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
