"""
Exception taxonomy for the reconciliation engine.

Every engine error carries the table, batch, thread and phase it was
raised in, plus a category. The orchestrator writes these into the
table's ``error`` history record, so an operator can tell a dropped
connection (transient) from a data problem or a bug.
"""

from typing import Any

TRANSIENT = "transient"
DATA_INTEGRITY = "data-integrity"
LOGIC = "logic"
MAINTENANCE = "maintenance"

_TRANSIENT_PATTERNS = (
    "connection",
    "timeout",
    "deadlock",
    "lock wait timeout",
    "server has gone away",
    "could not connect",
    "unable to connect",
    "connection refused",
    "connection reset",
    "broken pipe",
    "network error",
    "communication link failure",
    "terminating connection",
    "canceling statement",
)

_TRANSIENT_TYPES = (
    "operationalerror",
    "interfaceerror",
    "connectionerror",
    "timeouterror",
    "poolexhaustederror",
)


class DataCompareError(Exception):
    """Base class for engine errors."""

    category = LOGIC

    def __init__(
        self,
        message: str,
        table: str | None = None,
        batch: int | None = None,
        thread: int | None = None,
        phase: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.table = table
        self.batch = batch
        self.thread = thread
        self.phase = phase

    def with_context(self, **context) -> "DataCompareError":
        """Fill in context fields that were not known where the error was raised."""
        for key in ("table", "batch", "thread", "phase"):
            if getattr(self, key) is None and context.get(key) is not None:
                setattr(self, key, context[key])
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "batch": self.batch,
            "thread": self.thread,
            "phase": self.phase,
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category,
        }


class DataIntegrityError(DataCompareError):
    """Findings or counts do not agree with what was read."""

    category = DATA_INTEGRITY


class UnhashableRowError(DataIntegrityError):
    """A row has a NULL primary key column and cannot be fingerprinted."""


class RowCountMismatchError(DataIntegrityError):
    """Rows loaded into findings differ from rows staged."""

    def __init__(self, message: str, staged: int, loaded: int, **context):
        super().__init__(message, **context)
        self.staged = staged
        self.loaded = loaded

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(staged=self.staged, loaded=self.loaded)
        return payload


class LedgerError(DataCompareError):
    """Progress history used out of order."""


class DuplicateHistoryError(LedgerError):
    """A history record was started while the same record is still open."""


class HistoryNotOpenError(LedgerError):
    """A history record was completed without having been started."""


class MaintenanceError(DataCompareError):
    """Clearing findings or vacuuming failed for a table."""

    category = MAINTENANCE


class ColumnMapError(DataCompareError):
    """Source and target columns cannot be aligned."""


class ConfigurationError(DataCompareError):
    """Invalid engine or database configuration."""


class CancellationError(DataCompareError):
    """A thread stopped because a sibling thread of its table failed."""


def classify_exception(exception: BaseException) -> str:
    """
    Categorize an exception for the error payload.

    Engine errors carry their own category. Driver errors (psycopg2,
    pyodbc, pool timeouts) whose type or message looks like a connection,
    timeout or deadlock problem are ``transient``; everything else is
    ``logic``. The engine never retries; the category only tells the
    operator whether re-running the batch is likely to help.
    """
    if isinstance(exception, DataCompareError):
        return exception.category

    exception_type = type(exception).__name__.lower()
    if exception_type in _TRANSIENT_TYPES:
        return TRANSIENT

    message = str(exception).lower()
    if any(pattern in message for pattern in _TRANSIENT_PATTERNS):
        return TRANSIENT

    return LOGIC


def error_payload(exception: BaseException, **context) -> dict[str, Any]:
    """Structured description of an exception for history and reports."""
    if isinstance(exception, DataCompareError):
        exception.with_context(**context)
        return exception.to_dict()

    return {
        "table": context.get("table"),
        "batch": context.get("batch"),
        "thread": context.get("thread"),
        "phase": context.get("phase"),
        "error_type": type(exception).__name__,
        "message": str(exception),
        "category": classify_exception(exception),
    }
