"""Repository database access: statement helpers, DDL and typed statements."""

from .database import Database, Session
from .repo import STAGING_TABLE_PATTERN, Repository
from .schema import DDL, TABLES

__all__ = [
    "Database",
    "Session",
    "Repository",
    "STAGING_TABLE_PATTERN",
    "DDL",
    "TABLES",
]
