"""
Statement execution helpers for the repository database.

All statements use positional ``%s`` binds (psycopg2 paramstyle). The
only text interpolated into SQL is identifiers that have been through
``dcutils.sql_safety``.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from psycopg2.extras import execute_values

from dcutils.db_pool import BaseConnectionPool

logger = logging.getLogger(__name__)


class Session:
    """
    Statement helpers bound to one borrowed connection.

    Used where several statements must share a connection: bulk staging
    writes, and maintenance that needs auto-commit (``VACUUM`` cannot run
    inside a transaction block).
    """

    def __init__(self, conn):
        self.conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute(sql, params)

    def execute_update(
        self, sql: str, params: Sequence[Any] | None = None, commit: bool = True
    ) -> int:
        """Run a DML statement; returns the affected row count."""
        with self.conn.cursor() as cursor:
            cursor.execute(sql, params)
            rowcount = cursor.rowcount
        if commit and not self.conn.autocommit:
            self.conn.commit()
        return rowcount

    def execute_query(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[tuple]:
        with self.conn.cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.fetchall()

    def execute_update_returning(
        self, sql: str, params: Sequence[Any] | None = None, commit: bool = True
    ) -> list[tuple]:
        """Run ``INSERT/UPDATE ... RETURNING`` and return the returned rows."""
        with self.conn.cursor() as cursor:
            cursor.execute(sql, params)
            rows = cursor.fetchall()
        if commit and not self.conn.autocommit:
            self.conn.commit()
        return rows

    def execute_values(
        self,
        sql: str,
        rows: Iterable[Sequence[Any]],
        page_size: int = 1000,
        commit: bool = True,
    ) -> None:
        """Bulk insert with a single ``VALUES %s`` statement per page."""
        with self.conn.cursor() as cursor:
            execute_values(cursor, sql, rows, page_size=page_size)
        if commit and not self.conn.autocommit:
            self.conn.commit()

    def commit(self) -> None:
        if not self.conn.autocommit:
            self.conn.commit()

    def rollback(self) -> None:
        if not self.conn.autocommit:
            self.conn.rollback()

    @contextmanager
    def autocommit(self) -> Iterator["Session"]:
        """
        Run the block with the connection in auto-commit mode.

        Pending work is committed first. The previous mode is restored on
        every exit path, including when the block raises.
        """
        previous = self.conn.autocommit
        if not previous:
            self.conn.commit()
            self.conn.autocommit = True
        try:
            yield self
        finally:
            if self.conn.autocommit != previous:
                self.conn.autocommit = previous


class Database:
    """
    Pool-backed statement execution.

    Each call borrows a connection, runs one statement and returns the
    connection; use ``session()`` when statements must share one.
    """

    def __init__(self, pool: BaseConnectionPool):
        self.pool = pool

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Borrow a connection; uncommitted work is rolled back on error."""
        with self.pool.acquire() as conn:
            session = Session(conn)
            try:
                yield session
            except Exception:
                if not getattr(conn, "closed", False):
                    session.rollback()
                raise

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        with self.session() as session:
            session.execute(sql, params)
            session.commit()

    def execute_update(
        self, sql: str, params: Sequence[Any] | None = None, commit: bool = True
    ) -> int:
        with self.session() as session:
            return session.execute_update(sql, params, commit=commit)

    def execute_query(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[tuple]:
        with self.session() as session:
            return session.execute_query(sql, params)

    def execute_update_returning(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[tuple]:
        with self.session() as session:
            return session.execute_update_returning(sql, params)

    def close(self) -> None:
        self.pool.close()
