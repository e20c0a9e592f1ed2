"""
Logger wrappers.

ContextLogger binds reconciliation context (table, batch, thread, phase)
once so every message from a worker carries it.
"""

import logging
from typing import Any


class ContextLogger:
    """
    Logger that merges bound context into every record's ``extra``.

    Usage:
        log = ContextLogger(__name__, table="customers", tid=7, batch_nbr=1)
        worker_log = log.bind(thread_nbr=2)
        worker_log.info("Staged fingerprints", rows=12345)
    """

    def __init__(self, name: str, **context):
        self.logger = logging.getLogger(name)
        self.context = context

    def log(self, level: int, msg: str, *args, exc_info=None, **fields) -> None:
        if not self.logger.isEnabledFor(level):
            return
        # call-site fields override bound ones
        self.logger.log(
            level, msg, *args, exc_info=exc_info, extra={**self.context, **fields}, stacklevel=3
        )

    def debug(self, msg: str, *args, **fields) -> None:
        self.log(logging.DEBUG, msg, *args, **fields)

    def info(self, msg: str, *args, **fields) -> None:
        self.log(logging.INFO, msg, *args, **fields)

    def warning(self, msg: str, *args, **fields) -> None:
        self.log(logging.WARNING, msg, *args, **fields)

    def error(self, msg: str, *args, **fields) -> None:
        self.log(logging.ERROR, msg, *args, **fields)

    def critical(self, msg: str, *args, **fields) -> None:
        self.log(logging.CRITICAL, msg, *args, **fields)

    def bind(self, **context) -> "ContextLogger":
        """Child logger with extra context; this logger is unchanged."""
        return ContextLogger(self.logger.name, **{**self.context, **context})

    def update_context(self, **context) -> None:
        self.context.update(context)

    def get_context(self) -> dict[str, Any]:
        return dict(self.context)
