"""
Pytest configuration and fixtures for dcompare tests.

Engine-level tests run against in-memory stand-ins for the repository
and for the source/target connection pools, so the whole table pipeline
(fingerprint -> stage -> load -> compare) runs without a database.
"""

import dataclasses
import re
import threading
import time
from contextlib import contextmanager
from datetime import UTC, datetime

import pytest

from dcompare.config import EngineConfig
from dcompare.errors import MaintenanceError
from dcompare.models import (
    CompareCounts,
    CompareResult,
    FindingsRecord,
    HistoryRecord,
    ResultRecord,
    ResultStatus,
    Side,
    TableSpec,
    TableStatus,
)

SIMPLE_COLUMN_MAP = {
    "columns": [
        {"alias": "id", "source": "id", "target": "id", "primary_key": True},
        {"alias": "name", "source": "name", "target": "name"},
    ]
}

INTEGER_COLUMN_MAP = {
    "columns": [
        {"alias": "id", "source": "id", "target": "id", "primary_key": True, "integer": True},
        {"alias": "name", "source": "name", "target": "name"},
    ]
}


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as needing live databases")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def make_table(
    tid: int = 1,
    name: str = "customers",
    parallel_degree: int = 1,
    batch_nbr: int = 1,
    column_map: dict | None = None,
    **kwargs,
) -> TableSpec:
    return TableSpec(
        tid=tid,
        source_schema=kwargs.pop("source_schema", "public"),
        source_table=kwargs.pop("source_table", name),
        target_schema=kwargs.pop("target_schema", "public"),
        target_table=name,
        parallel_degree=parallel_degree,
        batch_nbr=batch_nbr,
        column_map=SIMPLE_COLUMN_MAP if column_map is None else column_map,
        **kwargs,
    )


# ----------------------------------------------------------------------
# Source / target database fakes
# ----------------------------------------------------------------------

_FROM_TABLE = re.compile(r'FROM (?:["\[](\w+)["\]]\.)?["\[](\w+)["\]]')
_PARTITION = re.compile(r"ABS\((?:MOD\(\S+, (\d+)\)|\(\S+ % (\d+)\))\) = (\d+)")


class FakeCursor:
    """
    DB-API cursor over canned rows, selected by the table in the FROM clause.

    Tables are looked up as ``schema.table`` first, then ``table``. A
    modulus partition predicate is applied to the first column; any other
    WHERE condition is ignored.
    """

    def __init__(
        self,
        tables: dict[str, list[tuple]],
        name: str | None = None,
        fetch_delay: float = 0.0,
    ):
        self.tables = tables
        self.name = name
        self.fetch_delay = fetch_delay
        self.itersize = None
        self.executed: list[tuple[str, object]] = []
        self.closed = False
        self._rows: list[tuple] = []

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        match = _FROM_TABLE.search(sql)
        if match is None:
            self._rows = [(1,)] if sql.strip() == "SELECT 1" else []
            return
        schema, table = match.groups()
        rows = self.tables.get(f"{schema}.{table}", self.tables.get(table, []))

        partition = _PARTITION.search(sql)
        if partition:
            degree = int(partition.group(1) or partition.group(2))
            remainder = int(partition.group(3))
            rows = [row for row in rows if abs(row[0]) % degree == remainder]
        self._rows = list(rows)

    def fetchmany(self, size):
        if self.fetch_delay:
            time.sleep(self.fetch_delay)
        chunk, self._rows = self._rows[:size], self._rows[size:]
        return chunk

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class FakeConnection:
    def __init__(self, tables: dict[str, list[tuple]], fetch_delay: float = 0.0):
        self.tables = tables
        self.fetch_delay = fetch_delay
        self.cursors: list[FakeCursor] = []
        self.rollbacks = 0
        self.commits = 0
        self.autocommit = False
        self.closed = False

    def cursor(self, name=None):
        cursor = FakeCursor(self.tables, name=name, fetch_delay=self.fetch_delay)
        self.cursors.append(cursor)
        return cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


class FakePool:
    """Connection pool stand-in; every acquire shares one FakeConnection."""

    def __init__(self, tables: dict[str, list[tuple]] | None = None, fetch_delay: float = 0.0):
        self.connection = FakeConnection(tables or {}, fetch_delay)
        self.acquired = 0
        self.released = 0
        self.closed = False

    @contextmanager
    def acquire(self):
        self.acquired += 1
        try:
            yield self.connection
        finally:
            self.released += 1

    def close(self):
        self.closed = True


# ----------------------------------------------------------------------
# Repository fake
# ----------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(UTC)


class FakeRepository:
    """
    In-memory Repository with the same method surface.

    ``fail_on`` maps a method name to an exception that method raises.
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.lock = threading.RLock()
        self.tables: dict[int, TableSpec] = {}
        self.staging: dict[str, list] = {}
        self.dropped: list[str] = []
        self.findings: dict[Side, list[FindingsRecord]] = {Side.SOURCE: [], Side.TARGET: []}
        self.results: dict[int, ResultRecord] = {}
        self.history: list[HistoryRecord] = []
        self.fail_on: dict[str, Exception] = {}
        self._next_cid = 1

    def _maybe_fail(self, operation: str) -> None:
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    def add_table(self, spec: TableSpec) -> TableSpec:
        self.tables[spec.tid] = spec
        return spec

    # tables

    def get_tables(self, batch_nbr=0, table=None, check=False):
        with self.lock:
            selected = [
                dataclasses.replace(t)
                for t in self.tables.values()
                if t.status == TableStatus.READY
                and (batch_nbr <= 0 or t.batch_nbr == batch_nbr)
                and (not table or t.target_table == table)
            ]
            if check:
                flagged = {
                    f.tid
                    for side in Side
                    for f in self.findings[side]
                    if f.compare_result != CompareResult.EQUAL.value
                }
                selected = [t for t in selected if t.tid in flagged]
            return sorted(selected, key=lambda t: (t.target_table, t.tid))

    def claim_table(self, tid):
        with self.lock:
            self._maybe_fail("claim_table")
            if self.tables[tid].status != TableStatus.READY:
                return False
            self.tables[tid].status = TableStatus.RUNNING
            return True

    def set_table_status(self, tid, status):
        with self.lock:
            self._maybe_fail("set_table_status")
            self.tables[tid].status = TableStatus(status)

    def reset_tables(self, batch_nbr=0, table=None):
        with self.lock:
            count = 0
            for t in self.tables.values():
                if t.status not in (TableStatus.COMPLETE, TableStatus.ERROR):
                    continue
                if batch_nbr > 0 and t.batch_nbr != batch_nbr:
                    continue
                if table and t.target_table != table:
                    continue
                t.status = TableStatus.READY
                count += 1
            return count

    def save_column_map(self, tid, column_map):
        with self.lock:
            self.tables[tid].column_map = column_map

    # staging

    def create_staging_table(self, name):
        with self.lock:
            self._maybe_fail("create_staging_table")
            self.staging[name] = []

    def drop_staging_table(self, name):
        with self.lock:
            self._maybe_fail("drop_staging_table")
            self.staging.pop(name, None)
            self.dropped.append(name)

    def list_staging_tables(self):
        with self.lock:
            return sorted(self.staging)

    def insert_staging_rows(self, name, rows):
        with self.lock:
            self._maybe_fail("insert_staging_rows")
            self.staging[name].extend(rows)
            return len(rows)

    def count_staging_rows(self, name):
        with self.lock:
            return len(self.staging[name])

    # findings

    def load_findings(self, side, staging_table, tid, table_name, batch_nbr, thread_nbr):
        with self.lock:
            self._maybe_fail("load_findings")
            rows = self.staging[staging_table]
            for fp in rows:
                self.findings[Side(side)].append(
                    FindingsRecord(
                        tid=tid,
                        table_name=table_name,
                        thread_nbr=thread_nbr,
                        pk_hash=fp.pk_hash,
                        column_hash=fp.column_hash,
                        pk=fp.pk,
                        compare_result=fp.compare_result,
                        batch_nbr=batch_nbr,
                    )
                )
            return len(rows)

    def _table_findings(self, side, tid, batch_nbr):
        return [f for f in self.findings[Side(side)] if f.tid == tid and f.batch_nbr == batch_nbr]

    def count_findings(self, side, tid, batch_nbr, thread_nbr=None):
        with self.lock:
            return sum(
                1
                for f in self._table_findings(side, tid, batch_nbr)
                if thread_nbr is None or f.thread_nbr == thread_nbr
            )

    def delete_findings(self, side, tid, batch_nbr):
        with self.lock:
            error = self.fail_on.get("delete_findings")
            if error is not None:
                raise MaintenanceError(
                    f"Clearing findings failed: {error}",
                    table=f"tid {tid}",
                    batch=batch_nbr,
                    phase="clear-findings",
                ) from error
            before = len(self.findings[Side(side)])
            self.findings[Side(side)] = [
                f
                for f in self.findings[Side(side)]
                if not (f.tid == tid and f.batch_nbr == batch_nbr)
            ]
            return before - len(self.findings[Side(side)])

    def mark_compare_results(self, tid, batch_nbr):
        with self.lock:
            self._maybe_fail("mark_compare_results")
            rows = {side: self._table_findings(side, tid, batch_nbr) for side in Side}
            for side, other in ((Side.SOURCE, Side.TARGET), (Side.TARGET, Side.SOURCE)):
                partner = {f.pk_hash: f.column_hash for f in rows[other]}
                for f in rows[side]:
                    if f.pk_hash not in partner:
                        f.compare_result = CompareResult.MISSING.value
                    elif partner[f.pk_hash] == f.column_hash:
                        f.compare_result = CompareResult.EQUAL.value
                    else:
                        f.compare_result = CompareResult.NOT_EQUAL.value

    def summarize_compare_results(self, tid, batch_nbr):
        with self.lock:
            codes = {
                side: [f.compare_result for f in self._table_findings(side, tid, batch_nbr)]
                for side in Side
            }
            source, target = codes[Side.SOURCE], codes[Side.TARGET]
            counts = CompareCounts(
                equal=source.count("e"),
                not_equal=source.count("n"),
                missing_target=source.count("m"),
                missing_source=target.count("m"),
            )
            return counts, {side: len(codes[side]) for side in Side}

    def find_discrepancies(self, tid, batch_nbr, limit=100):
        with self.lock:
            kinds = ((Side.SOURCE, "n"), (Side.SOURCE, "m"), (Side.TARGET, "m"))
            found = []
            for side, code in kinds:
                rows = sorted(
                    (f for f in self._table_findings(side, tid, batch_nbr) if f.compare_result == code),
                    key=lambda f: f.pk_hash,
                )[:limit]
                found.extend({"side": side.value, "pk": f.pk, "compare_result": code} for f in rows)
            return found

    # results

    def create_result(self, tid, table_name, rid):
        with self.lock:
            self._maybe_fail("create_result")
            cid = self._next_cid
            self._next_cid += 1
            self.results[cid] = ResultRecord(
                cid=cid, rid=rid, table_name=table_name, compare_dt=_now(), tid=tid
            )
            return cid

    def increment_result_count(self, cid, side, row_count):
        with self.lock:
            column = Side(side).count_column
            record = self.results[cid]
            setattr(record, column, getattr(record, column) + row_count)

    def finalize_result(self, cid, counts, status):
        with self.lock:
            record = self.results[cid]
            record.equal_cnt = counts.equal
            record.not_equal_cnt = counts.not_equal
            record.missing_source_cnt = counts.missing_source
            record.missing_target_cnt = counts.missing_target
            record.status = ResultStatus(status)
            return dataclasses.replace(record)

    def set_result_status(self, cid, status):
        with self.lock:
            self.results[cid].status = ResultStatus(status)

    def get_result(self, cid):
        with self.lock:
            record = self.results.get(cid)
            return dataclasses.replace(record) if record else None

    def find_result(self, tid, rid):
        with self.lock:
            matches = [r for r in self.results.values() if r.tid == tid and r.rid == rid]
            return dataclasses.replace(max(matches, key=lambda r: r.cid)) if matches else None

    # history

    def start_history(self, tid, action_type, load_id, batch_nbr):
        with self.lock:
            self.history.append(
                HistoryRecord(
                    tid=tid,
                    action_type=action_type,
                    load_id=load_id,
                    batch_nbr=batch_nbr,
                    start_dt=_now(),
                )
            )

    def _open_records(self, tid, action_type, load_id, batch_nbr):
        return [
            h
            for h in self.history
            if (h.tid, h.action_type, h.load_id, h.batch_nbr)
            == (tid, action_type, load_id, batch_nbr)
            and h.is_open
        ]

    def complete_history(self, tid, action_type, load_id, batch_nbr, row_count, action_result):
        with self.lock:
            records = self._open_records(tid, action_type, load_id, batch_nbr)
            for record in records:
                record.end_dt = _now()
                record.row_count = row_count
                record.action_result = action_result
            return len(records)

    def count_open_history(self, tid, action_type, load_id, batch_nbr):
        with self.lock:
            return len(self._open_records(tid, action_type, load_id, batch_nbr))

    def get_history(self, tid, load_id=None):
        with self.lock:
            return [
                h for h in self.history if h.tid == tid and (load_id is None or h.load_id == load_id)
            ]


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(batch_fetch_size=3, batch_commit_size=2)


@pytest.fixture
def fake_repo(engine_config: EngineConfig) -> FakeRepository:
    return FakeRepository(engine_config)
