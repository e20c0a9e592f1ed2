"""
Repository statements.

Every statement the engine runs against the repository database lives
here. Callers pass and receive the typed records from ``dcompare.models``;
data values are always bound, and the few identifiers that vary
(staging table names, the findings table for a side) are validated and
quoted first.
"""

import json
import logging
from typing import Any

from dcutils.sql_safety import quote_identifier, validate_integer_param

from ..config import EngineConfig
from ..errors import MaintenanceError
from ..models import (
    CompareCounts,
    CompareResult,
    Fingerprint,
    HistoryRecord,
    ResultRecord,
    ResultStatus,
    Side,
    TableSpec,
    TableStatus,
)
from .database import Database
from .schema import DDL

logger = logging.getLogger(__name__)

STAGING_TABLE_PATTERN = r"^dc_(source|target)_[0-9]+_[0-9]+$"

_TABLE_COLUMNS = ", ".join(
    c if c != "column_map" else "coalesce(column_map::text, '{}') AS column_map"
    for c in TableSpec.COLUMNS
)
_RESULT_COLUMNS = ", ".join(ResultRecord.COLUMNS)

# not-equal keys are reported once, from the source side
_DISCREPANCY_KINDS = (
    (Side.SOURCE, CompareResult.NOT_EQUAL),
    (Side.SOURCE, CompareResult.MISSING),
    (Side.TARGET, CompareResult.MISSING),
)


def _findings_table(side: Side) -> str:
    return quote_identifier(Side(side).findings_table)


class Repository:
    """Typed access to the ``dc_*`` repository tables."""

    def __init__(self, db: Database, config: EngineConfig):
        self.db = db
        self.config = config

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        """Create repository tables and indexes if they do not exist."""
        with self.db.session() as session:
            for statement in DDL:
                session.execute(statement)
            session.commit()
        logger.info("Repository schema is in place")

    # ------------------------------------------------------------------
    # Table registry (dc_table)
    # ------------------------------------------------------------------

    def get_tables(
        self, batch_nbr: int = 0, table: str | None = None, check: bool = False
    ) -> list[TableSpec]:
        """
        Select tables ready to reconcile, in target table order.

        Args:
            batch_nbr: Restrict to this batch when > 0
            table: Restrict to this target table name
            check: Only tables whose previous findings hold at least one
                row that was not equal
        """
        sql = f"SELECT {_TABLE_COLUMNS} FROM dc_table WHERE status = %s"
        params: list[Any] = [TableStatus.READY.value]

        if batch_nbr > 0:
            sql += " AND batch_nbr = %s"
            params.append(batch_nbr)

        if table:
            sql += " AND target_table = %s"
            params.append(table)

        if check:
            sql += (
                " AND (tid IN (SELECT tid FROM dc_target WHERE compare_result != 'e')"
                " OR tid IN (SELECT tid FROM dc_source WHERE compare_result != 'e'))"
            )

        sql += " ORDER BY target_table, tid"

        return [TableSpec.from_row(row) for row in self.db.execute_query(sql, params)]

    def get_table(self, tid: int) -> TableSpec | None:
        rows = self.db.execute_query(
            f"SELECT {_TABLE_COLUMNS} FROM dc_table WHERE tid = %s", [tid]
        )
        return TableSpec.from_row(rows[0]) if rows else None

    def claim_table(self, tid: int) -> bool:
        """Move a table from ready to running; False if another run took it."""
        updated = self.db.execute_update(
            "UPDATE dc_table SET status = %s WHERE tid = %s AND status = %s",
            [TableStatus.RUNNING.value, tid, TableStatus.READY.value],
        )
        return updated == 1

    def set_table_status(self, tid: int, status: TableStatus) -> None:
        self.db.execute_update(
            "UPDATE dc_table SET status = %s WHERE tid = %s",
            [TableStatus(status).value, tid],
        )

    def reset_tables(self, batch_nbr: int = 0, table: str | None = None) -> int:
        """Return finished or failed tables to ready; returns rows changed."""
        sql = "UPDATE dc_table SET status = %s WHERE status IN (%s, %s)"
        params: list[Any] = [
            TableStatus.READY.value,
            TableStatus.COMPLETE.value,
            TableStatus.ERROR.value,
        ]
        if batch_nbr > 0:
            sql += " AND batch_nbr = %s"
            params.append(batch_nbr)
        if table:
            sql += " AND target_table = %s"
            params.append(table)
        return self.db.execute_update(sql, params)

    def save_table(
        self,
        source_schema: str,
        source_table: str,
        target_schema: str | None = None,
        target_table: str | None = None,
        batch_nbr: int = 1,
        parallel_degree: int = 1,
        table_filter: str | None = None,
        mod_column: str | None = None,
    ) -> int | None:
        """
        Register a table pair as ready.

        Returns:
            The new tid, or None when the pair is already registered
        """
        rows = self.db.execute_update_returning(
            "INSERT INTO dc_table (source_schema, source_table, target_schema,"
            " target_table, table_filter, parallel_degree, status, batch_nbr,"
            " mod_column) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)"
            " ON CONFLICT (source_schema, source_table, target_schema, target_table)"
            " DO NOTHING RETURNING tid",
            [
                source_schema,
                source_table,
                target_schema or source_schema,
                target_table or source_table,
                table_filter,
                parallel_degree,
                TableStatus.READY.value,
                batch_nbr,
                mod_column,
            ],
        )
        return rows[0][0] if rows else None

    def save_column_map(self, tid: int, column_map: dict[str, Any]) -> None:
        self.db.execute_update(
            "UPDATE dc_table SET column_map = %s::jsonb WHERE tid = %s",
            [json.dumps(column_map), tid],
        )

    # ------------------------------------------------------------------
    # Staging tables
    # ------------------------------------------------------------------

    def create_staging_table(self, name: str) -> None:
        """Drop any leftover table of this name, then create it empty."""
        quoted = quote_identifier(name)
        parallel = self.config.stage_table_parallel
        validate_integer_param(parallel, "stage-table-parallel")

        with self.db.session() as session:
            session.execute(f"DROP TABLE IF EXISTS {quoted}")
            session.execute(
                f"CREATE UNLOGGED TABLE {quoted} ("
                " pk_hash varchar(100) NULL,"
                " column_hash varchar(100) NULL,"
                " pk jsonb NULL,"
                " compare_result bpchar(1) NULL"
                f") WITH (autovacuum_enabled=false, parallel_workers={parallel})"
            )
            session.commit()

    def drop_staging_table(self, name: str) -> None:
        self.db.execute(f"DROP TABLE IF EXISTS {quote_identifier(name)}")

    def list_staging_tables(self) -> list[str]:
        rows = self.db.execute_query(
            "SELECT tablename FROM pg_tables"
            " WHERE schemaname = current_schema() AND tablename ~ %s"
            " ORDER BY tablename",
            [STAGING_TABLE_PATTERN],
        )
        return [row[0] for row in rows]

    def insert_staging_rows(self, name: str, rows: list[Fingerprint]) -> int:
        """Insert one page of fingerprints in a single statement and commit."""
        if not rows:
            return 0

        values = [
            (fp.pk_hash, fp.column_hash, json.dumps(fp.pk, default=str), fp.compare_result)
            for fp in rows
        ]
        with self.db.session() as session:
            session.execute_values(
                f"INSERT INTO {quote_identifier(name)}"
                " (pk_hash, column_hash, pk, compare_result) VALUES %s",
                values,
                page_size=len(values),
            )
        return len(values)

    def count_staging_rows(self, name: str) -> int:
        rows = self.db.execute_query(f"SELECT count(*) FROM {quote_identifier(name)}")
        return rows[0][0]

    # ------------------------------------------------------------------
    # Findings (dc_source / dc_target)
    # ------------------------------------------------------------------

    def load_findings(
        self,
        side: Side,
        staging_table: str,
        tid: int,
        table_name: str,
        batch_nbr: int,
        thread_nbr: int,
    ) -> int:
        """Copy a staging table into the side's findings; returns rows inserted."""
        sql = (
            f"INSERT INTO {_findings_table(side)}"
            " (tid, table_name, thread_nbr, pk_hash, column_hash, pk, compare_result,"
            " batch_nbr)"
            " SELECT %s, %s, %s, pk_hash, column_hash, pk, compare_result, %s"
            f" FROM {quote_identifier(staging_table)}"
        )
        return self.db.execute_update(sql, [tid, table_name, thread_nbr, batch_nbr])

    def count_findings(
        self,
        side: Side,
        tid: int,
        batch_nbr: int,
        thread_nbr: int | None = None,
    ) -> int:
        sql = (
            f"SELECT count(*) FROM {_findings_table(side)}"
            " WHERE tid = %s AND batch_nbr = %s"
        )
        params: list[Any] = [tid, batch_nbr]
        if thread_nbr is not None:
            sql += " AND thread_nbr = %s"
            params.append(thread_nbr)
        return self.db.execute_query(sql, params)[0][0]

    def delete_findings(self, side: Side, tid: int, batch_nbr: int) -> int:
        """
        Remove a table's findings for one batch, then VACUUM the findings table.

        Raises:
            MaintenanceError: If the delete or the vacuum fails
        """
        findings = _findings_table(side)
        try:
            with self.db.session() as session:
                deleted = session.execute_update(
                    f"DELETE FROM {findings} WHERE tid = %s AND batch_nbr = %s",
                    [tid, batch_nbr],
                )
                with session.autocommit():
                    session.execute(f"VACUUM {findings}")
        except Exception as e:
            raise MaintenanceError(
                f"Clearing {Side(side).findings_table} failed: {e}",
                table=f"tid {tid}",
                batch=batch_nbr,
                phase="clear-findings",
            ) from e

        logger.debug(f"Cleared {deleted} {Side(side).value} findings for tid {tid}")
        return deleted

    def mark_compare_results(self, tid: int, batch_nbr: int) -> None:
        """
        Classify every finding of a table by joining the sides on pk_hash.

        Matched rows become ``e`` or ``n`` depending on column_hash;
        unmatched rows become ``m``. Runs as one transaction.
        """
        key = [tid, batch_nbr]
        with self.db.session() as session:
            for side in Side:
                session.execute_update(
                    f"UPDATE {_findings_table(side)} SET compare_result = NULL"
                    " WHERE tid = %s AND batch_nbr = %s",
                    key,
                    commit=False,
                )

            for side, other in ((Side.SOURCE, Side.TARGET), (Side.TARGET, Side.SOURCE)):
                session.execute_update(
                    f"UPDATE {_findings_table(side)} f SET compare_result ="
                    f" CASE WHEN f.column_hash = o.column_hash"
                    f" THEN '{CompareResult.EQUAL.value}'"
                    f" ELSE '{CompareResult.NOT_EQUAL.value}' END"
                    f" FROM {_findings_table(other)} o"
                    " WHERE f.tid = %s AND f.batch_nbr = %s"
                    " AND o.tid = f.tid AND o.batch_nbr = f.batch_nbr"
                    " AND o.pk_hash = f.pk_hash",
                    key,
                    commit=False,
                )

            for side in Side:
                session.execute_update(
                    f"UPDATE {_findings_table(side)}"
                    f" SET compare_result = '{CompareResult.MISSING.value}'"
                    " WHERE tid = %s AND batch_nbr = %s AND compare_result IS NULL",
                    key,
                    commit=False,
                )

            session.commit()

    def summarize_compare_results(
        self, tid: int, batch_nbr: int
    ) -> tuple[CompareCounts, dict[Side, int]]:
        """
        Count classified findings.

        Returns:
            The compare counts, and the total findings per side
        """
        per_side: dict[Side, dict[str, int]] = {}
        for side in Side:
            rows = self.db.execute_query(
                f"SELECT compare_result, count(*) FROM {_findings_table(side)}"
                " WHERE tid = %s AND batch_nbr = %s GROUP BY compare_result",
                [tid, batch_nbr],
            )
            per_side[side] = {(code or "").strip(): count for code, count in rows}

        source, target = per_side[Side.SOURCE], per_side[Side.TARGET]
        counts = CompareCounts(
            equal=source.get(CompareResult.EQUAL.value, 0),
            not_equal=source.get(CompareResult.NOT_EQUAL.value, 0),
            missing_target=source.get(CompareResult.MISSING.value, 0),
            missing_source=target.get(CompareResult.MISSING.value, 0),
        )
        totals = {side: sum(per_side[side].values()) for side in Side}
        return counts, totals

    def find_discrepancies(
        self, tid: int, batch_nbr: int, limit: int = 100
    ) -> list[dict[str, Any]]:
        """
        Sample of primary keys that are not equal or missing.

        Each kind is sampled separately, so a table with many changed rows
        still reports up to ``limit`` keys missing from the target.
        """
        discrepancies = []
        for side, code in _DISCREPANCY_KINDS:
            rows = self.db.execute_query(
                f"SELECT pk FROM {_findings_table(side)}"
                " WHERE tid = %s AND batch_nbr = %s AND compare_result = %s"
                " ORDER BY pk_hash LIMIT %s",
                [tid, batch_nbr, code.value, limit],
            )
            discrepancies.extend(
                {
                    "side": side.value,
                    "pk": json.loads(pk) if isinstance(pk, str) else pk,
                    "compare_result": code.value,
                }
                for (pk,) in rows
            )
        return discrepancies

    # ------------------------------------------------------------------
    # Results (dc_result)
    # ------------------------------------------------------------------

    def create_result(self, tid: int, table_name: str, rid: int) -> int:
        """Insert a zero-count running result row; returns its cid."""
        rows = self.db.execute_update_returning(
            "INSERT INTO dc_result (compare_dt, tid, table_name, equal_cnt,"
            " missing_source_cnt, missing_target_cnt, not_equal_cnt, source_cnt,"
            " target_cnt, status, rid)"
            " VALUES (current_timestamp, %s, %s, 0, 0, 0, 0, 0, 0, %s, %s) RETURNING cid",
            [tid, table_name, ResultStatus.RUNNING.value, rid],
        )
        return rows[0][0]

    def increment_result_count(self, cid: int, side: Side, row_count: int) -> None:
        """Add to source_cnt or target_cnt without reading it first."""
        column = Side(side).count_column
        self.db.execute_update(
            f"UPDATE dc_result SET {column} = {column} + %s WHERE cid = %s",
            [row_count, cid],
        )

    def finalize_result(
        self, cid: int, counts: CompareCounts, status: ResultStatus
    ) -> ResultRecord:
        rows = self.db.execute_update_returning(
            "UPDATE dc_result SET equal_cnt = %s, not_equal_cnt = %s,"
            " missing_source_cnt = %s, missing_target_cnt = %s, status = %s"
            f" WHERE cid = %s RETURNING {_RESULT_COLUMNS}",
            [
                counts.equal,
                counts.not_equal,
                counts.missing_source,
                counts.missing_target,
                ResultStatus(status).value,
                cid,
            ],
        )
        return ResultRecord.from_row(rows[0])

    def set_result_status(self, cid: int, status: ResultStatus) -> None:
        self.db.execute_update(
            "UPDATE dc_result SET status = %s WHERE cid = %s",
            [ResultStatus(status).value, cid],
        )

    def get_result(self, cid: int) -> ResultRecord | None:
        rows = self.db.execute_query(
            f"SELECT {_RESULT_COLUMNS} FROM dc_result WHERE cid = %s", [cid]
        )
        return ResultRecord.from_row(rows[0]) if rows else None

    def find_result(self, tid: int, rid: int) -> ResultRecord | None:
        rows = self.db.execute_query(
            f"SELECT {_RESULT_COLUMNS} FROM dc_result"
            " WHERE tid = %s AND rid = %s ORDER BY cid DESC LIMIT 1",
            [tid, rid],
        )
        return ResultRecord.from_row(rows[0]) if rows else None


    # ------------------------------------------------------------------
    # History (dc_table_history)
    # ------------------------------------------------------------------

    def start_history(
        self, tid: int, action_type: str, load_id: str, batch_nbr: int
    ) -> None:
        self.db.execute_update(
            "INSERT INTO dc_table_history"
            " (tid, action_type, start_dt, load_id, batch_nbr, row_count)"
            " VALUES (%s, %s, current_timestamp, %s, %s, 0)",
            [tid, action_type, load_id, batch_nbr],
        )

    def complete_history(
        self,
        tid: int,
        action_type: str,
        load_id: str,
        batch_nbr: int,
        row_count: int,
        action_result: dict[str, Any] | None,
    ) -> int:
        """Close the open record for this key; returns rows closed."""
        return self.db.execute_update(
            "UPDATE dc_table_history SET end_dt = current_timestamp, row_count = %s,"
            " action_result = %s::jsonb"
            " WHERE tid = %s AND action_type = %s AND load_id = %s AND batch_nbr = %s"
            " AND end_dt IS NULL",
            [
                row_count,
                json.dumps(action_result, default=str) if action_result is not None else None,
                tid,
                action_type,
                load_id,
                batch_nbr,
            ],
        )

    def count_open_history(
        self, tid: int, action_type: str, load_id: str, batch_nbr: int
    ) -> int:
        rows = self.db.execute_query(
            "SELECT count(*) FROM dc_table_history"
            " WHERE tid = %s AND action_type = %s AND load_id = %s AND batch_nbr = %s"
            " AND end_dt IS NULL",
            [tid, action_type, load_id, batch_nbr],
        )
        return rows[0][0]

    def get_history(self, tid: int, load_id: str | None = None) -> list[HistoryRecord]:
        sql = (
            "SELECT tid, action_type, load_id, batch_nbr, start_dt, end_dt,"
            " row_count, action_result FROM dc_table_history WHERE tid = %s"
        )
        params: list[Any] = [tid]
        if load_id is not None:
            sql += " AND load_id = %s"
            params.append(load_id)
        sql += " ORDER BY start_dt"

        records = []
        for row in self.db.execute_query(sql, params):
            record = HistoryRecord(*row)
            if isinstance(record.action_result, str):
                record.action_result = json.loads(record.action_result)
            records.append(record)
        return records
