"""
Unit tests for repository statement execution helpers.
"""

from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeConnection, FakePool
from dcompare.repository import Database, Session


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.autocommit = False
    connection.closed = False
    return connection


@pytest.fixture
def cursor(conn):
    cur = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cur
    return cur


class TestSession:
    """Test statement helpers on one connection"""

    def test_execute_update_commits_and_returns_rowcount(self, conn, cursor):
        cursor.rowcount = 3

        assert Session(conn).execute_update("UPDATE t SET a = %s", [1]) == 3

        cursor.execute.assert_called_once_with("UPDATE t SET a = %s", [1])
        conn.commit.assert_called_once()

    def test_execute_update_without_commit(self, conn, cursor):
        Session(conn).execute_update("UPDATE t SET a = 1", commit=False)
        conn.commit.assert_not_called()

    def test_no_commit_in_autocommit_mode(self, conn, cursor):
        conn.autocommit = True
        Session(conn).execute_update("UPDATE t SET a = 1")
        conn.commit.assert_not_called()

    def test_execute_query(self, conn, cursor):
        cursor.fetchall.return_value = [(1,), (2,)]
        assert Session(conn).execute_query("SELECT 1") == [(1,), (2,)]

    def test_execute_update_returning(self, conn, cursor):
        cursor.fetchall.return_value = [(42,)]
        assert Session(conn).execute_update_returning("INSERT ... RETURNING tid") == [(42,)]
        conn.commit.assert_called_once()

    def test_execute_values(self, conn, cursor):
        with patch("dcompare.repository.database.execute_values") as bulk:
            Session(conn).execute_values("INSERT INTO t VALUES %s", [(1,), (2,)], page_size=2)

        bulk.assert_called_once_with(cursor, "INSERT INTO t VALUES %s", [(1,), (2,)], page_size=2)
        conn.commit.assert_called_once()

    def test_autocommit_commits_pending_work_and_restores(self):
        conn = FakeConnection({})
        session = Session(conn)

        with session.autocommit():
            assert conn.autocommit is True

        assert conn.commits == 1
        assert conn.autocommit is False

    def test_autocommit_restored_when_block_raises(self):
        conn = FakeConnection({})
        session = Session(conn)

        with pytest.raises(RuntimeError):
            with session.autocommit():
                raise RuntimeError("VACUUM failed")

        assert conn.autocommit is False

    def test_autocommit_already_on(self):
        conn = FakeConnection({})
        conn.autocommit = True

        with Session(conn).autocommit():
            pass

        assert conn.commits == 0
        assert conn.autocommit is True


class TestDatabase:
    """Test pool-backed execution"""

    def test_session_rolls_back_on_error(self):
        pool = FakePool()

        with pytest.raises(ValueError):
            with Database(pool).session():
                raise ValueError("bad statement")

        assert pool.connection.rollbacks == 1
        assert pool.released == 1

    def test_session_skips_rollback_on_closed_connection(self):
        pool = FakePool()
        pool.connection.closed = True

        with pytest.raises(ValueError):
            with Database(pool).session():
                raise ValueError("connection lost")

        assert pool.connection.rollbacks == 0

    def test_each_call_borrows_a_connection(self):
        pool = FakePool({"t": [(1,)]})
        db = Database(pool)

        assert db.execute_query('SELECT a FROM "t"') == [(1,)]
        db.execute("SELECT 1")

        assert pool.acquired == 2
        assert pool.connection.commits == 1

    def test_close_closes_pool(self):
        pool = FakePool()
        Database(pool).close()
        assert pool.closed
