"""
Catalog discovery.

Reads ``information_schema`` on the source and target databases to
register tables in ``dc_table`` and to build column maps for tables
that were registered without one.
"""

import logging
from typing import Any

from dcutils.database_types import DatabaseType
from dcutils.db_pool import BaseConnectionPool

from .errors import ColumnMapError
from .fingerprint import CatalogColumn, ColumnMap
from .models import TableSpec
from .repository import Repository

logger = logging.getLogger(__name__)

_COLUMNS_SQL = """
    SELECT c.column_name, c.data_type,
           CASE WHEN k.column_name IS NULL THEN 0 ELSE 1 END AS is_pk
    FROM information_schema.columns c
    LEFT JOIN (
        SELECT kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON kcu.constraint_name = tc.constraint_name
         AND kcu.table_schema = tc.table_schema
         AND kcu.table_name = tc.table_name
        WHERE tc.constraint_type = 'PRIMARY KEY'
          AND tc.table_schema = {p} AND tc.table_name = {p}
    ) k ON k.column_name = c.column_name
    WHERE c.table_schema = {p} AND c.table_name = {p}
    ORDER BY c.ordinal_position
"""

_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = {p} AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""


class CatalogReader:
    """Catalog queries against one source or target database."""

    def __init__(self, pool: BaseConnectionPool, db_type: DatabaseType):
        self.pool = pool
        self.db_type = DatabaseType.parse(db_type)

    def _query(self, sql: str, params: list[Any]) -> list[tuple]:
        with self.pool.acquire() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql.format(p=self.db_type.placeholder), params)
                return cursor.fetchall()
            finally:
                cursor.close()
                conn.rollback()

    def columns(self, schema: str, table: str) -> list[CatalogColumn]:
        rows = self._query(_COLUMNS_SQL, [schema, table, schema, table])
        return [CatalogColumn(name, data_type, bool(is_pk)) for name, data_type, is_pk in rows]

    def tables(self, schema: str) -> list[str]:
        return [row[0] for row in self._query(_TABLES_SQL, [schema])]


class Discovery:
    """Registers tables and builds column maps from the two catalogs."""

    def __init__(self, repo: Repository, source: CatalogReader, target: CatalogReader):
        self.repo = repo
        self.source = source
        self.target = target

    def column_map_for(self, table: TableSpec) -> ColumnMap:
        """
        Build a column map by matching the two catalogs by column name.

        Raises:
            ColumnMapError: If either table has no columns or no usable primary key
        """
        source_columns = self.source.columns(table.source_schema, table.source_table)
        target_columns = self.target.columns(table.target_schema, table.target_table)

        if not source_columns:
            raise ColumnMapError(
                f"Source table {table.source_schema}.{table.source_table} not found",
                table=table.table_name,
            )
        if not target_columns:
            raise ColumnMapError(
                f"Target table {table.target_schema}.{table.target_table} not found",
                table=table.table_name,
            )

        return ColumnMap.from_catalogs(source_columns, target_columns, table=table.table_name)

    def register_schema(
        self,
        source_schema: str,
        target_schema: str | None = None,
        batch_nbr: int = 1,
        parallel_degree: int = 1,
    ) -> list[tuple[str, int]]:
        """
        Register every source table that also exists on the target.

        Column maps are stored for tables whose catalogs line up; a table
        whose map cannot be built is registered without one and logged.
        Pairs already in ``dc_table`` are left as they are.

        Returns:
            ``(table name, tid)`` for each registered table
        """
        target_schema = target_schema or source_schema
        target_tables = {name.lower(): name for name in self.target.tables(target_schema)}

        registered = []
        for source_table in self.source.tables(source_schema):
            target_table = target_tables.get(source_table.lower())
            if target_table is None:
                logger.warning(
                    f"Skipping {source_schema}.{source_table}: not found in {target_schema}"
                )
                continue

            tid = self.repo.save_table(
                source_schema,
                source_table,
                target_schema,
                target_table,
                batch_nbr=batch_nbr,
                parallel_degree=parallel_degree,
            )
            if tid is None:
                logger.info(f"{source_schema}.{source_table} is already registered, skipping")
                continue

            spec = TableSpec(
                tid=tid,
                source_schema=source_schema,
                source_table=source_table,
                target_schema=target_schema,
                target_table=target_table,
                batch_nbr=batch_nbr,
                parallel_degree=parallel_degree,
            )
            try:
                self.repo.save_column_map(tid, self.column_map_for(spec).to_json())
            except ColumnMapError as e:
                logger.warning(f"Registered {target_table} without a column map: {e}")

            registered.append((target_table, tid))
            logger.info(f"Registered {source_schema}.{source_table} as table {tid}")

        return registered
