"""
Database connection pooling for PostgreSQL and SQL Server.

``create_pool`` builds the right pool for a database configuration. The
SQL Server pool is imported on demand because pyodbc needs the system
ODBC driver manager, which PostgreSQL-only deployments do not install.
"""

import logging
from typing import Any

from .base import (
    BaseConnectionPool,
    ConnectionPoolError,
    PoolClosedError,
    PooledConnection,
    PoolExhaustedError,
)
from .postgres import PostgresConnectionPool

logger = logging.getLogger(__name__)


def create_pool(
    config: Any,
    pool_name: str,
    autocommit: bool = False,
    **pool_kwargs: Any,
) -> BaseConnectionPool:
    """
    Create a connection pool from a database configuration.

    Args:
        config: Object with ``db_type``, ``host``, ``port``, ``database``,
            ``user``, ``password``, ``min_pool_size``, ``max_pool_size`` and
            optionally ``connection_string`` attributes
        pool_name: Pool label for logs and metrics
        autocommit: Open connections in auto-commit mode
        **pool_kwargs: Additional BaseConnectionPool options

    Raises:
        ValueError: If the database type is not supported
    """
    db_type = str(getattr(config.db_type, "value", config.db_type)).lower()
    pool_kwargs.setdefault("min_size", config.min_pool_size)
    pool_kwargs.setdefault("max_size", config.max_pool_size)

    logger.info(f"Creating {db_type} pool '{pool_name}' for {config.host}/{config.database}")

    if db_type == "postgresql":
        return PostgresConnectionPool(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password,
            pool_name=pool_name,
            autocommit=autocommit,
            **pool_kwargs,
        )

    if db_type == "sqlserver":
        from .sqlserver import SQLServerConnectionPool

        return SQLServerConnectionPool(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password,
            connection_string=getattr(config, "connection_string", None),
            pool_name=pool_name,
            autocommit=autocommit,
            **pool_kwargs,
        )

    raise ValueError(f"Unsupported database type for pool '{pool_name}': {db_type}")


__all__ = [
    "BaseConnectionPool",
    "PostgresConnectionPool",
    "PooledConnection",
    "ConnectionPoolError",
    "PoolExhaustedError",
    "PoolClosedError",
    "create_pool",
]
