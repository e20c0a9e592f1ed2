"""
Shared runtime utilities for the dcompare engine

Provides:
- logging: structured logging setup and context loggers
- tracing: OpenTelemetry spans for engine phases
- metrics: Prometheus metric registration and publishing
- db_pool: PostgreSQL and SQL Server connection pools
- sql_safety: identifier validation and quoting
- database_types: supported dialects and their statement syntax
"""

__version__ = "1.0.0"
__all__ = ["logging", "tracing", "metrics", "db_pool", "sql_safety", "database_types"]
