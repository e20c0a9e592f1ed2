"""SQL Server connection pool over pyodbc."""

from typing import Any

import pyodbc

from .base import BaseConnectionPool

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"


def build_odbc_connection_string(
    host: str, port: int, database: str, user: str, password: str, driver: str = DEFAULT_DRIVER
) -> str:
    """ODBC connection string for an encrypted SQL Server login."""
    attributes = {
        "DRIVER": f"{{{driver}}}",
        "SERVER": f"{host},{port}",
        "DATABASE": database,
        "UID": user,
        "PWD": password,
        "Encrypt": "yes",
        "TrustServerCertificate": "yes",
    }
    return "".join(f"{key}={value};" for key, value in attributes.items())


def odbc_attribute(connection_string: str, key: str) -> str | None:
    """Case-insensitive lookup of one ``KEY=value`` pair."""
    for pair in connection_string.split(";"):
        name, sep, value = pair.partition("=")
        if sep and name.strip().casefold() == key.casefold():
            return value.strip()
    return None


class SQLServerConnectionPool(BaseConnectionPool):
    """
    Pool for SQL Server source or target databases.

    Either pass a complete ``connection_string`` or every one of host,
    port, database, user and password.
    """

    db_type = "sqlserver"
    driver_error = pyodbc.Error

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        driver: str = DEFAULT_DRIVER,
        connection_string: str | None = None,
        login_timeout: int = 10,
        **kwargs: Any,
    ):
        if not connection_string:
            missing = [
                name
                for name, value in (
                    ("host", host), ("port", port), ("database", database),
                    ("user", user), ("password", password),
                )
                if not value
            ]
            if missing:
                raise ValueError(
                    f"SQL Server pool needs a connection_string or {', '.join(missing)}"
                )
            connection_string = build_odbc_connection_string(
                host, port, database, user, password, driver
            )

        self.connection_string = connection_string
        self.login_timeout = login_timeout
        self.host = odbc_attribute(connection_string, "SERVER") or host
        self.database = odbc_attribute(connection_string, "DATABASE") or database

        super().__init__(**kwargs)

    def _connect(self):
        return pyodbc.connect(
            self.connection_string, timeout=self.login_timeout, autocommit=self.autocommit
        )
