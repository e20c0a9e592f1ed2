"""
Bounded parallel execution with error isolation.

Used twice by the orchestrator: once to run tables on ``table_workers``
threads, and once per table to run its ``parallel_degree`` partitions.
A failing task never takes its siblings down; its exception is captured
in its TaskOutcome.
"""

import logging
import threading
from collections.abc import Callable, Hashable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

from dcutils.tracing import trace_operation

from .metrics import ACTIVE_TABLE_WORKERS, TABLE_QUEUE_SIZE

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    key: Hashable
    result: Any = None
    error: BaseException | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class ParallelRunner:
    """
    Runs ``func(key, cancel)`` for every key on a bounded thread pool.

    All tasks share one cancellation event. With ``cancel_on_error`` the
    event is set as soon as any task fails, so siblings that poll it can
    stop early; ``run`` still waits for every task before returning.
    """

    def __init__(
        self,
        max_workers: int,
        name: str = "dc-worker",
        cancel_on_error: bool = False,
        track_metrics: bool = False,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self.name = name
        self.cancel_on_error = cancel_on_error
        self.track_metrics = track_metrics
        self._metrics_lock = threading.Lock()

    def _set_gauges(self, queued: int, active: int) -> None:
        if not self.track_metrics:
            return
        with self._metrics_lock:
            TABLE_QUEUE_SIZE.set(queued)
            ACTIVE_TABLE_WORKERS.set(active)

    def _call(
        self,
        func: Callable[[Hashable, threading.Event], Any],
        key: Hashable,
        cancel: threading.Event,
    ) -> TaskOutcome:
        start = datetime.now(UTC)
        outcome = TaskOutcome(key=key)
        try:
            outcome.result = func(key, cancel)
        except Exception as e:
            outcome.error = e
            if self.cancel_on_error:
                cancel.set()
        outcome.duration_seconds = (datetime.now(UTC) - start).total_seconds()
        return outcome

    def run(
        self,
        keys: Iterable[Hashable],
        func: Callable[[Hashable, threading.Event], Any],
        cancel: threading.Event | None = None,
    ) -> list[TaskOutcome]:
        """
        Run all tasks and wait for every one of them.

        Returns:
            One TaskOutcome per key, in the order the keys were given
        """
        keys = list(keys)
        cancel = cancel or threading.Event()
        if not keys:
            return []

        with trace_operation(
            "parallel_run",
            kind=trace.SpanKind.INTERNAL,
            runner=self.name,
            tasks=len(keys),
            max_workers=self.max_workers,
        ):
            outcomes: dict[Hashable, TaskOutcome] = {}
            self._set_gauges(len(keys), min(self.max_workers, len(keys)))

            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(keys)),
                thread_name_prefix=self.name,
            ) as executor:
                futures = {
                    executor.submit(self._call, func, key, cancel): key for key in keys
                }
                for future in as_completed(futures):
                    outcome = future.result()
                    outcomes[outcome.key] = outcome
                    remaining = len(keys) - len(outcomes)
                    self._set_gauges(remaining, min(self.max_workers, remaining))

                    if outcome.ok:
                        logger.debug(
                            f"{self.name}: {outcome.key} done in {outcome.duration_seconds:.2f}s "
                            f"({len(outcomes)}/{len(keys)})"
                        )
                    else:
                        logger.error(
                            f"{self.name}: {outcome.key} failed: {outcome.error} "
                            f"({len(outcomes)}/{len(keys)})"
                        )

            self._set_gauges(0, 0)

        return [outcomes[key] for key in keys]
