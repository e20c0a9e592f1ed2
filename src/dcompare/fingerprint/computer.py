"""
Fingerprint computation for one side of a table pair.

Reads a table partition from the source or target database and yields a
``Fingerprint`` per row. Rows are fetched in ``batch_fetch_size`` chunks
(server-side named cursor on PostgreSQL, ``fetchmany`` on SQL Server),
so memory stays bounded no matter how large the table is.

A table with ``parallel_degree`` > 1 is split across its threads in one
of two ways. With a ``mod_column`` or a single integer primary key, each
thread's SELECT carries a modulus predicate and reads only its share.
Otherwise ``FanOut`` scans the table once and routes every row to its
thread by ``pk_hash``.

Reads are capped by ``read_slots``, sized from the pool, so partitions
queue for a connection instead of exhausting the pool.
"""

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager
from typing import Any

from opentelemetry import trace

from dcutils.database_types import DatabaseType
from dcutils.db_pool import BaseConnectionPool
from dcutils.sql_safety import validate_filter_fragment
from dcutils.tracing import trace_operation

from ..config import EngineConfig
from ..errors import CancellationError, ColumnMapError, UnhashableRowError
from ..models import Fingerprint, Side, TableSpec
from .column_map import ColumnMap
from .hashing import hash_values, json_safe

logger = logging.getLogger(__name__)

SPLIT_NONE = "none"
SPLIT_MODULUS = "modulus"
SPLIT_FAN_OUT = "fan-out"

# seconds between cancellation checks while blocked
_POLL_SECONDS = 0.2
# pages buffered per thread by a fan-out scan
_QUEUE_PAGES = 4
_END = object()

PartitionReader = Callable[[int], Iterator[Fingerprint]]


def partition_of(pk_hash: str, degree: int) -> int:
    """Thread number (1-based) a primary key hash belongs to."""
    return int(pk_hash[:8], 16) % degree + 1


def readers_for(pool: Any) -> int | None:
    """Concurrent reads a pool can serve, leaving one connection for catalog queries."""
    max_size = getattr(pool, "max_size", None)
    if not isinstance(max_size, int):
        return None
    return max(max_size - 1, 1)


class RowHasher:
    """Turns a selected row (primary key columns first) into a Fingerprint."""

    def __init__(self, column_map: ColumnMap, float_scale: int):
        self.pk_aliases = [c.alias for c in column_map.pk_columns]
        self.pk_hints = [c.type for c in column_map.pk_columns]
        self.compare_hints = [c.type for c in column_map.compare_columns]
        self.float_scale = float_scale
        self._pk_width = len(self.pk_aliases)

    def fingerprint(self, row: tuple) -> Fingerprint:
        pk_values = row[: self._pk_width]
        if any(value is None for value in pk_values):
            raise UnhashableRowError(
                "Primary key contains NULL: "
                f"{dict(zip(self.pk_aliases, (json_safe(v) for v in pk_values)))}"
            )

        return Fingerprint(
            pk_hash=hash_values(pk_values, self.pk_hints, self.float_scale),
            column_hash=hash_values(
                row[self._pk_width :], self.compare_hints, self.float_scale
            ),
            pk={alias: json_safe(value) for alias, value in zip(self.pk_aliases, pk_values)},
        )



class FingerprintComputer:
    """Computes fingerprints for one side (source or target) of a table pair."""

    def __init__(
        self,
        pool: BaseConnectionPool,
        db_type: DatabaseType,
        side: Side,
        config: EngineConfig,
        max_readers: int | None = None,
    ):
        self.pool = pool
        self.db_type = DatabaseType.parse(db_type)
        self.side = Side(side)
        self.config = config
        if max_readers is None:
            max_readers = readers_for(pool)
        # shared by every table on this side
        self.read_slots = threading.BoundedSemaphore(max_readers) if max_readers else None

    def split_column(self, table: TableSpec, column_map: ColumnMap) -> str | None:
        """Column the modulus split uses: ``mod_column``, else a single integer key."""
        return table.mod_column or column_map.split_column(self.side)

    def split_mode(self, table: TableSpec, column_map: ColumnMap) -> str:
        if table.parallel_degree <= 1:
            return SPLIT_NONE
        if self.split_column(table, column_map):
            return SPLIT_MODULUS
        return SPLIT_FAN_OUT

    def build_query(self, table: TableSpec, column_map: ColumnMap, thread_nbr: int) -> str:
        """
        SELECT for one thread's partition of the table.

        Without a split column every thread gets the same full-table SELECT.

        Raises:
            ColumnMapError: If a table or column name is not a valid identifier
            ValueError: If the table filter contains a statement separator or comment
        """
        if self.side == Side.SOURCE:
            schema, name = table.source_schema, table.source_table
        else:
            schema, name = table.target_schema, table.target_table

        split_column = self.split_column(table, column_map)
        try:
            columns = ", ".join(
                self.db_type.quote_identifier(c) for c in column_map.select_columns(self.side)
            )
            sql = f"SELECT {columns} FROM {self.db_type.quote_table(schema, name)}"
            split_column = self.db_type.quote_identifier(split_column) if split_column else None
        except ValueError as e:
            raise ColumnMapError(str(e), table=table.table_name) from e

        conditions = []
        if table.table_filter:
            validate_filter_fragment(table.table_filter)
            conditions.append(f"({table.table_filter})")
        if split_column and table.parallel_degree > 1:
            conditions.append(
                self.db_type.partition_predicate(split_column, table.parallel_degree, thread_nbr)
            )

        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        return sql

    def _open_cursor(self, conn: Any, name: str):
        if self.db_type == DatabaseType.POSTGRESQL:
            cursor = conn.cursor(name=name)
            cursor.itersize = self.config.batch_fetch_size
            return cursor
        return conn.cursor()

    def _close_cursor(self, cursor: Any, conn: Any, table: TableSpec) -> None:
        # a failed cleanup must not replace the error that ended the read
        for step in (cursor.close, conn.rollback):
            try:
                step()
            except Exception as e:
                logger.warning(
                    f"{self.side.value} cursor cleanup for {table.table_name} failed: {e}"
                )

    @contextmanager
    def _read_slot(self, table: TableSpec, thread_nbr: int | None, cancel: threading.Event | None):
        """Hold one of ``read_slots`` for the duration of a read."""
        if self.read_slots is None:
            yield
            return

        while not self.read_slots.acquire(timeout=_POLL_SECONDS):
            if cancel is not None and cancel.is_set():
                raise CancellationError(
                    f"{self.side.value} read cancelled while waiting for a connection",
                    table=table.table_name,
                    thread=thread_nbr,
                )
        try:
            yield
        finally:
            self.read_slots.release()

    def compute(
        self,
        table: TableSpec,
        column_map: ColumnMap,
        thread_nbr: int,
        cancel: threading.Event | None = None,
    ) -> Iterator[Fingerprint]:
        """
        Yield fingerprints for the rows of one thread's partition.

        The iterator holds a pooled connection until it is exhausted or
        closed. It is not restartable. Without a split column the whole
        table is read and rows of other threads are skipped; ``partitions``
        avoids that repeated scan.

        Raises:
            UnhashableRowError: If a row's primary key contains NULL
            CancellationError: If ``cancel`` is set between fetches
        """
        sql = self.build_query(table, column_map, thread_nbr)
        if self.split_mode(table, column_map) != SPLIT_FAN_OUT:
            return self._stream(table, column_map, sql, thread_nbr, cancel)

        degree = table.parallel_degree

        def keep(fp: Fingerprint) -> bool:
            return partition_of(fp.pk_hash, degree) == thread_nbr

        return self._stream(table, column_map, sql, thread_nbr, cancel, keep)

    def _stream(
        self,
        table: TableSpec,
        column_map: ColumnMap,
        sql: str,
        thread_nbr: int | None,
        cancel: threading.Event | None,
        keep: Callable[[Fingerprint], bool] | None = None,
    ) -> Iterator[Fingerprint]:
        hasher = RowHasher(column_map, self.config.float_scale)
        cursor_name = f"dc_{self.side.value}_{table.tid}_{thread_nbr or 'all'}_cur"

        logger.debug(f"{self.side.value} partition query for {table.table_name}: {sql}")

        with trace_operation(
            "compute_fingerprints",
            kind=trace.SpanKind.CLIENT,
            table=table.table_name,
            side=self.side.value,
            thread=thread_nbr,
        ) as span, self._read_slot(table, thread_nbr, cancel), self.pool.acquire() as conn:
            cursor = self._open_cursor(conn, cursor_name)
            rows_read = 0
            try:
                cursor.execute(sql)
                while True:
                    rows = cursor.fetchmany(self.config.batch_fetch_size)
                    if not rows:
                        break
                    rows_read += len(rows)

                    for row in rows:
                        try:
                            fp = hasher.fingerprint(row)
                        except UnhashableRowError as e:
                            raise e.with_context(
                                table=table.table_name, thread=thread_nbr, batch=table.batch_nbr
                            )
                        if keep is None or keep(fp):
                            yield fp

                    if cancel is not None and cancel.is_set():
                        raise CancellationError(
                            f"{self.side.value} read cancelled",
                            table=table.table_name,
                            thread=thread_nbr,
                        )
            finally:
                span.set_attribute("rows_read", rows_read)
                self._close_cursor(cursor, conn, table)

    @contextmanager
    def partitions(
        self,
        table: TableSpec,
        column_map: ColumnMap,
        cancel: threading.Event | None = None,
    ) -> Iterator[PartitionReader]:
        """
        Per-thread readers for one table.

        Yields ``read(thread_nbr)``, which returns that thread's fingerprint
        iterator. A table without a split column is scanned once for all
        of its threads, so every thread must read its partition
        concurrently.
        """
        if self.split_mode(table, column_map) != SPLIT_FAN_OUT:
            yield lambda thread_nbr: self.compute(table, column_map, thread_nbr, cancel)
            return

        fan_out = FanOut(self, table, column_map, cancel)
        try:
            yield fan_out.read
        finally:
            fan_out.close()


class FanOut:
    """
    One scan of a table shared by all of its threads.

    A scan thread streams the whole table and routes each fingerprint to
    the queue of the thread ``partition_of`` assigns it to. Queues hold a
    few pages each, so the scan runs at the pace of the slowest thread.
    The scan starts on the first ``read`` and holds one read slot; the
    threads draining the queues hold none.
    """

    def __init__(
        self,
        computer: FingerprintComputer,
        table: TableSpec,
        column_map: ColumnMap,
        cancel: threading.Event | None = None,
    ):
        self.computer = computer
        self.table = table
        self.column_map = column_map
        self.cancel = cancel
        self.page_size = computer.config.batch_fetch_size
        self.queues: dict[int, queue.Queue] = {
            n: queue.Queue(maxsize=_QUEUE_PAGES) for n in table.threads
        }
        self.error: BaseException | None = None
        self.rows_routed = 0
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._scanner: threading.Thread | None = None

    def _stopped(self) -> bool:
        return self._stop.is_set() or (self.cancel is not None and self.cancel.is_set())

    def _put(self, thread_nbr: int, item: Any) -> bool:
        """Queue ``item`` for a thread; False once the scan should stop."""
        target = self.queues[thread_nbr]
        while not self._stopped():
            try:
                target.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _scan(self) -> None:
        computer, table = self.computer, self.table
        pages: dict[int, list[Fingerprint]] = {n: [] for n in self.queues}
        try:
            sql = computer.build_query(table, self.column_map, 1)
            stream = computer._stream(table, self.column_map, sql, None, self._stop)
            with closing(stream) as fingerprints:
                for fp in fingerprints:
                    thread_nbr = partition_of(fp.pk_hash, table.parallel_degree)
                    pages[thread_nbr].append(fp)
                    self.rows_routed += 1
                    if len(pages[thread_nbr]) >= self.page_size:
                        page, pages[thread_nbr] = pages[thread_nbr], []
                        if not self._put(thread_nbr, page):
                            return

            for thread_nbr, page in pages.items():
                if page and not self._put(thread_nbr, page):
                    return
                if not self._put(thread_nbr, _END):
                    return
        except Exception as e:
            # raised again by every thread still draining its queue
            self.error = e
            logger.debug(f"{computer.side.value} scan of {table.table_name} failed: {e}")

    def _start(self) -> None:
        with self._lock:
            if self._scanner is None:
                self._scanner = threading.Thread(
                    target=self._scan,
                    name=f"dc-{self.computer.side.value}-{self.table.tid}-scan",
                    daemon=True,
                )
                self._scanner.start()

    def read(self, thread_nbr: int) -> Iterator[Fingerprint]:
        """Fingerprints routed to one thread, in scan order."""
        self._start()
        return self._drain(thread_nbr)

    def _drain(self, thread_nbr: int) -> Iterator[Fingerprint]:
        source = self.queues[thread_nbr]
        while True:
            try:
                item = source.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self.error is not None:
                    raise self.error
                if self._stopped():
                    raise CancellationError(
                        f"{self.computer.side.value} scan stopped",
                        table=self.table.table_name,
                        thread=thread_nbr,
                    )
                continue
            if item is _END:
                return
            yield from item

    def close(self) -> None:
        """Stop the scan and wait for its thread."""
        self._stop.set()
        if self._scanner is not None:
            self._scanner.join()
