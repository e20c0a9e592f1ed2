"""
Progress ledger (``dc_table_history``).

Every phase of a table run opens a history record when it starts and
closes it when it finishes. A phase that fails is left open, so the
history shows exactly where a run stopped.
"""

import logging
import threading
from typing import Any

from .errors import DuplicateHistoryError, HistoryNotOpenError
from .repository import Repository

logger = logging.getLogger(__name__)

RECONCILE = "reconcile"
COMPARE = "compare"
ERROR = "error"


def stage_action(side: str, thread_nbr: int) -> str:
    return f"stage-{getattr(side, 'value', side)}-{thread_nbr}"


def load_action(side: str, thread_nbr: int) -> str:
    return f"load-{getattr(side, 'value', side)}-{thread_nbr}"


class ProgressLedger:
    """
    Start/complete history records for one run.

    All records of a run share ``load_id = "reconcile-<run id>"``, so an
    operator re-running a batch after a failure never collides with the
    open records the failed run left behind.
    """

    def __init__(self, repo: Repository, run_id: int):
        self.repo = repo
        self.run_id = run_id
        self.load_id = f"reconcile-{run_id}"
        self._open: set[tuple[int, str, int]] = set()
        self._lock = threading.Lock()

    def start(self, tid: int, action_type: str, batch_nbr: int) -> None:
        """
        Open a history record.

        Raises:
            DuplicateHistoryError: If the same record is already open
        """
        key = (tid, action_type, batch_nbr)
        with self._lock:
            if key in self._open or self.repo.count_open_history(
                tid, action_type, self.load_id, batch_nbr
            ):
                raise DuplicateHistoryError(
                    f"History {action_type!r} already open for table {tid}",
                    batch=batch_nbr,
                    phase=action_type,
                )
            self.repo.start_history(tid, action_type, self.load_id, batch_nbr)
            self._open.add(key)

    def complete(
        self,
        tid: int,
        action_type: str,
        batch_nbr: int,
        row_count: int = 0,
        result: dict[str, Any] | None = None,
    ) -> None:
        """
        Close an open history record.

        Raises:
            HistoryNotOpenError: If no matching record is open
        """
        key = (tid, action_type, batch_nbr)
        with self._lock:
            closed = self.repo.complete_history(
                tid, action_type, self.load_id, batch_nbr, row_count, result
            )
            if not closed:
                raise HistoryNotOpenError(
                    f"History {action_type!r} is not open for table {tid}",
                    batch=batch_nbr,
                    phase=action_type,
                )
            self._open.discard(key)

    def record_error(self, tid: int, batch_nbr: int, payload: dict[str, Any]) -> None:
        """Write a closed ``error`` record carrying the failure payload."""
        with self._lock:
            self.repo.start_history(tid, ERROR, self.load_id, batch_nbr)
            self.repo.complete_history(tid, ERROR, self.load_id, batch_nbr, 0, payload)

    def open_actions(self, tid: int | None = None) -> list[tuple[int, str, int]]:
        """Records this ledger opened and has not closed."""
        with self._lock:
            return sorted(key for key in self._open if tid is None or key[0] == tid)
