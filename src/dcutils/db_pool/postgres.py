"""PostgreSQL connection pool (repository, source or target)."""

from typing import Any

import psycopg2

from .base import BaseConnectionPool


class PostgresConnectionPool(BaseConnectionPool):
    db_type = "postgresql"
    driver_error = psycopg2.Error

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        application_name: str = "dcompare",
        connect_timeout: int = 10,
        **kwargs: Any,
    ):
        # shows up in pg_stat_activity next to the staging loads
        self._dsn = {
            "host": host,
            "port": port,
            "dbname": database,
            "user": user,
            "password": password,
            "application_name": application_name,
            "connect_timeout": connect_timeout,
        }
        self.host = host
        self.database = database

        super().__init__(**kwargs)

    def _connect(self):
        conn = psycopg2.connect(**self._dsn)
        conn.set_session(autocommit=self.autocommit)
        return conn
