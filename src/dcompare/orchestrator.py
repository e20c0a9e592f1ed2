"""
Reconciliation orchestrator.

``run_batch`` selects ready tables and reconciles each one:

    claim -> clear previous findings -> create result row -> column map
          -> partitions (threads 1..parallel_degree, each side:
             stage -> load -> add row count -> drop staging)
          -> barrier -> compare -> complete

Tables run on ``table_workers`` threads. A table that fails is marked
``error`` with a structured payload and never affects its siblings.
"""

import logging
import threading
import time
from contextlib import ExitStack, closing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

from dcutils.database_types import DatabaseType
from dcutils.db_pool import BaseConnectionPool, create_pool
from dcutils.logging import ContextLogger
from dcutils.tracing import add_span_attributes, trace_operation

from .comparator import Comparator
from .config import EngineConfig
from .discovery import CatalogReader, Discovery
from .errors import CancellationError, ColumnMapError, error_payload
from .fingerprint import ColumnMap, FingerprintComputer
from .fingerprint.computer import PartitionReader
from .ledger import COMPARE, RECONCILE, ProgressLedger, load_action, stage_action
from .loader import Loader
from .metrics import (
    BATCH_DURATION,
    PHASE_DURATION,
    ROWS_FINGERPRINTED,
    TABLES_PROCESSED,
    record_counts,
)
from .models import ResultRecord, ResultStatus, Side, TableSpec, TableStatus
from .parallel import ParallelRunner
from .repository import Database, Repository
from .staging import StagingStore

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"


@dataclass
class TableOutcome:
    """What happened to one table in a run."""

    table: str
    tid: int
    batch_nbr: int
    status: str
    result: ResultRecord | None = None
    error: dict[str, Any] | None = None
    duration_seconds: float = 0.0
    discrepancies: list[dict[str, Any]] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return (
            self.status == STATUS_COMPLETE
            and self.result is not None
            and self.result.counts.in_sync
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "tid": self.tid,
            "batch_nbr": self.batch_nbr,
            "status": self.status,
            "in_sync": self.in_sync,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
            "discrepancies": self.discrepancies,
        }


@dataclass
class BatchOutcome:
    """Per-table outcomes of one ``run_batch`` call."""

    run_id: int
    batch_nbr: int
    started_at: datetime
    finished_at: datetime | None = None
    tables: list[TableOutcome] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def by_status(self, status: str) -> list[TableOutcome]:
        return [t for t in self.tables if t.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "batch_nbr": self.batch_nbr,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "tables": [t.to_dict() for t in self.tables],
        }


class _PartitionFailure(Exception):
    """Carries the first failure of a table's partitions with its thread and phase."""

    def __init__(self, error: BaseException, thread: int, phase: str):
        super().__init__(str(error))
        self.error = error
        self.thread = thread
        self.phase = phase


class Orchestrator:
    """Runs reconciliation batches over the tables registered in ``dc_table``."""

    def __init__(
        self,
        config: EngineConfig,
        repo: Repository,
        computers: dict[Side, FingerprintComputer],
        staging: StagingStore | None = None,
        loader: Loader | None = None,
        comparator: Comparator | None = None,
        discovery: Discovery | None = None,
        discrepancy_sample: int = 20,
    ):
        self.config = config
        self.repo = repo
        self.computers = computers
        self.staging = staging or StagingStore(repo, config)
        self.loader = loader or Loader(repo)
        self.comparator = comparator or Comparator(repo)
        self.discovery = discovery
        self.discrepancy_sample = discrepancy_sample
        self._pools: list[BaseConnectionPool] = []

    @classmethod
    def from_config(cls, config: EngineConfig) -> "Orchestrator":
        """Open connection pools for the three databases and wire the components."""
        repo_pool = create_pool(config.repository, "repository")
        source_pool = create_pool(config.source, "source")
        target_pool = create_pool(config.target, "target")

        repo = Repository(Database(repo_pool), config)
        source_type = DatabaseType.parse(config.source.db_type)
        target_type = DatabaseType.parse(config.target.db_type)

        orchestrator = cls(
            config,
            repo,
            computers={
                Side.SOURCE: FingerprintComputer(source_pool, source_type, Side.SOURCE, config),
                Side.TARGET: FingerprintComputer(target_pool, target_type, Side.TARGET, config),
            },
            discovery=Discovery(
                repo,
                CatalogReader(source_pool, source_type),
                CatalogReader(target_pool, target_type),
            ),
        )
        orchestrator._pools = [repo_pool, source_pool, target_pool]
        return orchestrator

    def close(self) -> None:
        for pool in self._pools:
            pool.close()
        self._pools = []

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run_batch(
        self, batch_nbr: int = 0, table: str | None = None, check: bool = False
    ) -> BatchOutcome:
        """
        Reconcile every ready table matching the selection.

        Args:
            batch_nbr: Restrict to this batch when > 0
            table: Restrict to this target table
            check: Only tables whose previous findings were not all equal

        Returns:
            Per-table outcomes; a failed table never raises out of here
        """
        run_id = int(time.time() * 1000)
        ledger = ProgressLedger(self.repo, run_id)
        outcome = BatchOutcome(run_id=run_id, batch_nbr=batch_nbr, started_at=datetime.now(UTC))

        with trace_operation(
            "run_batch",
            kind=trace.SpanKind.INTERNAL,
            run_id=run_id,
            batch=batch_nbr,
            check=check,
        ), BATCH_DURATION.labels(table_workers=self.config.table_workers).time():
            tables = self.repo.get_tables(batch_nbr=batch_nbr, table=table, check=check)
            add_span_attributes(tables=len(tables))
            logger.info(
                f"Run {run_id}: {len(tables)} table(s) selected "
                f"(batch={batch_nbr}, table={table or '*'}, check={check})"
            )

            specs = {spec.tid: spec for spec in tables}
            runner = ParallelRunner(
                self.config.table_workers, name="dc-table", track_metrics=True
            )
            results = runner.run(
                specs, lambda tid, cancel: self.run_table(specs[tid], ledger)
            )

            for task in results:
                if task.ok:
                    outcome.tables.append(task.result)
                    continue
                # run_table handles its own failures; this is a failure in that handling
                spec = specs[task.key]
                logger.error(f"Table {spec.table_name} could not be processed: {task.error}")
                outcome.tables.append(
                    TableOutcome(
                        table=spec.table_name,
                        tid=spec.tid,
                        batch_nbr=spec.batch_nbr,
                        status=STATUS_ERROR,
                        error=error_payload(task.error, table=spec.table_name, batch=spec.batch_nbr),
                        duration_seconds=task.duration_seconds,
                    )
                )

        outcome.finished_at = datetime.now(UTC)
        logger.info(
            f"Run {run_id} finished in {outcome.duration_seconds:.2f}s: "
            f"{len(outcome.by_status(STATUS_COMPLETE))} complete, "
            f"{len(outcome.by_status(STATUS_ERROR))} error, "
            f"{len(outcome.by_status(STATUS_SKIPPED))} skipped"
        )
        return outcome

    # ------------------------------------------------------------------
    # Table
    # ------------------------------------------------------------------

    def run_table(self, table: TableSpec, ledger: ProgressLedger) -> TableOutcome:
        """Reconcile one table; failures are recorded, never raised."""
        log = ContextLogger(
            __name__, table=table.table_name, tid=table.tid, batch_nbr=table.batch_nbr
        )
        started = time.monotonic()

        if not self.repo.claim_table(table.tid):
            log.warning("Table was claimed by another run, skipping")
            TABLES_PROCESSED.labels(status=STATUS_SKIPPED).inc()
            return TableOutcome(
                table=table.table_name,
                tid=table.tid,
                batch_nbr=table.batch_nbr,
                status=STATUS_SKIPPED,
            )

        phase = RECONCILE
        thread = None
        cid = None

        with trace_operation(
            "reconcile_table",
            kind=trace.SpanKind.INTERNAL,
            table=table.table_name,
            tid=table.tid,
            batch=table.batch_nbr,
            parallel_degree=table.parallel_degree,
        ), PHASE_DURATION.labels(phase="table").time():
            try:
                log.info("Reconciliation started", parallel_degree=table.parallel_degree)
                ledger.start(table.tid, RECONCILE, table.batch_nbr)
                self.staging.cleanup_orphans(table.tid)

                phase = "clear-findings"
                with PHASE_DURATION.labels(phase="clear").time():
                    for side in Side:
                        self.repo.delete_findings(side, table.tid, table.batch_nbr)

                phase = "create-result"
                cid = self.repo.create_result(table.tid, table.table_name, ledger.run_id)

                phase = "column-map"
                column_map = self.resolve_column_map(table)

                phase = "partitions"
                self._run_partitions(table, column_map, cid, ledger)

                phase = COMPARE
                ledger.start(table.tid, COMPARE, table.batch_nbr)
                with PHASE_DURATION.labels(phase="compare").time():
                    result = self.comparator.compare(table, ledger.run_id, cid=cid)
                ledger.complete(
                    table.tid,
                    COMPARE,
                    table.batch_nbr,
                    row_count=result.counts.total,
                    result=result.to_dict(),
                )
                record_counts(result.counts)

                phase = "finish"
                discrepancies = []
                if not result.counts.in_sync and self.discrepancy_sample:
                    discrepancies = self.repo.find_discrepancies(
                        table.tid, table.batch_nbr, self.discrepancy_sample
                    )

                self.repo.set_table_status(table.tid, TableStatus.COMPLETE)
                ledger.complete(
                    table.tid,
                    RECONCILE,
                    table.batch_nbr,
                    row_count=result.source_cnt + result.target_cnt,
                    result=result.to_dict(),
                )

            except _PartitionFailure as failure:
                thread, phase = failure.thread, failure.phase
                return self._fail(table, ledger, cid, failure.error, phase, thread, log, started)
            except Exception as e:
                return self._fail(table, ledger, cid, e, phase, thread, log, started)

        TABLES_PROCESSED.labels(status=STATUS_COMPLETE).inc()
        log.info(
            "Reconciliation complete",
            equal=result.equal_cnt,
            not_equal=result.not_equal_cnt,
            missing_source=result.missing_source_cnt,
            missing_target=result.missing_target_cnt,
        )
        return TableOutcome(
            table=table.table_name,
            tid=table.tid,
            batch_nbr=table.batch_nbr,
            status=STATUS_COMPLETE,
            result=result,
            duration_seconds=time.monotonic() - started,
            discrepancies=discrepancies,
        )

    def resolve_column_map(self, table: TableSpec) -> ColumnMap:
        """
        The table's stored column map, or one discovered from the catalogs.

        A discovered map is saved back to ``dc_table``.

        Raises:
            ColumnMapError: If there is no stored map and no way to discover one
        """
        if table.column_map.get("columns"):
            return ColumnMap.from_json(table.column_map)

        if self.discovery is None:
            raise ColumnMapError("No column map stored and discovery is unavailable")

        column_map = self.discovery.column_map_for(table)
        self.repo.save_column_map(table.tid, column_map.to_json())
        table.column_map = column_map.to_json()
        logger.info(
            f"Discovered column map for {table.table_name}: "
            f"{len(column_map.pk_columns)} key, {len(column_map.compare_columns)} compared"
        )
        return column_map

    def _run_partitions(
        self,
        table: TableSpec,
        column_map: ColumnMap,
        cid: int,
        ledger: ProgressLedger,
    ) -> None:
        """Run every thread of the table and wait for all of them (the barrier)."""
        phases: dict[int, str] = {}
        cancel = threading.Event()
        runner = ParallelRunner(
            table.parallel_degree, name=f"dc-{table.tid}", cancel_on_error=True
        )
        with ExitStack() as stack:
            readers = {
                side: stack.enter_context(
                    self.computers[side].partitions(table, column_map, cancel)
                )
                for side in Side
            }
            outcomes = runner.run(
                table.threads,
                lambda thread_nbr, cancel: self._run_partition(
                    table, cid, ledger, thread_nbr, cancel, phases, readers
                ),
                cancel=cancel,
            )

        failures = [o for o in outcomes if not o.ok]
        if not failures:
            return

        # report the root cause, not the siblings that were cancelled because of it
        root = next(
            (o for o in failures if not isinstance(o.error, CancellationError)), failures[0]
        )
        raise _PartitionFailure(root.error, root.key, phases.get(root.key, "partitions"))

    def _run_partition(
        self,
        table: TableSpec,
        cid: int,
        ledger: ProgressLedger,
        thread_nbr: int,
        cancel: threading.Event,
        phases: dict[int, str],
        readers: dict[Side, PartitionReader],
    ) -> int:
        log = ContextLogger(
            __name__, table=table.table_name, batch_nbr=table.batch_nbr, thread_nbr=thread_nbr
        )
        total = 0

        for side in Side:
            if cancel.is_set():
                raise CancellationError(
                    "Partition cancelled", table=table.table_name, thread=thread_nbr
                )

            action = stage_action(side, thread_nbr)
            phases[thread_nbr] = action
            staging_table = self.staging.create(side, table.tid, thread_nbr)
            try:
                ledger.start(table.tid, action, table.batch_nbr)
                with PHASE_DURATION.labels(phase="stage").time():
                    with closing(readers[side](thread_nbr)) as fingerprints:
                        staged = self.staging.write(staging_table, fingerprints, cancel)
                ROWS_FINGERPRINTED.labels(side=side.value).inc(staged)
                ledger.complete(table.tid, action, table.batch_nbr, row_count=staged)

                action = load_action(side, thread_nbr)
                phases[thread_nbr] = action
                ledger.start(table.tid, action, table.batch_nbr)
                with PHASE_DURATION.labels(phase="load").time():
                    loaded = self.loader.load(side, staging_table, table, thread_nbr)
                    self.repo.increment_result_count(cid, side, loaded)
                ledger.complete(table.tid, action, table.batch_nbr, row_count=loaded)
            finally:
                self._drop_staging(staging_table, log)

            log.debug(f"{side.value} partition loaded", rows=loaded)
            total += loaded

        return total

    def _drop_staging(self, staging_table: str, log: ContextLogger) -> None:
        # a failed drop must not replace the error that ended the partition
        try:
            self.staging.drop(staging_table)
        except Exception as e:
            log.warning(f"Could not drop staging table {staging_table}: {e}")

    def _fail(
        self,
        table: TableSpec,
        ledger: ProgressLedger,
        cid: int | None,
        error: BaseException,
        phase: str,
        thread: int | None,
        log: ContextLogger,
        started: float,
    ) -> TableOutcome:
        """
        Record a table failure: table and result marked ``error``, an
        ``error`` history record with the payload. The failing phase's own
        history record is left open.
        """
        payload = error_payload(
            error, table=table.table_name, batch=table.batch_nbr, thread=thread, phase=phase
        )
        log.error(
            f"Reconciliation failed in {payload['phase']}: {payload['message']}",
            exc_info=error,
            category=payload["category"],
        )

        steps = [
            ("table status", lambda: self.repo.set_table_status(table.tid, TableStatus.ERROR)),
            ("error history", lambda: ledger.record_error(table.tid, table.batch_nbr, payload)),
        ]
        if cid is not None:
            steps.insert(
                1, ("result status", lambda: self.repo.set_result_status(cid, ResultStatus.ERROR))
            )

        for label, step in steps:
            try:
                step()
            except Exception as e:
                log.error(f"Could not record {label} after failure: {e}", exc_info=True)

        result = None
        if cid is not None:
            try:
                result = self.repo.get_result(cid)
            except Exception as e:
                log.warning(f"Could not read result row {cid} after failure: {e}")

        TABLES_PROCESSED.labels(status=STATUS_ERROR).inc()
        return TableOutcome(
            table=table.table_name,
            tid=table.tid,
            batch_nbr=table.batch_nbr,
            status=STATUS_ERROR,
            result=result,
            error=payload,
            duration_seconds=time.monotonic() - started,
        )
