"""
Database type enumeration for the supported source/target dialects.

Carries the per-dialect details the engine needs when it builds
statements: bind placeholder, identifier quoting and the
modulus syntax used when partitioning a table across threads.
"""

from enum import Enum

from dcutils.sql_safety import quote_identifier as _quote_identifier
from dcutils.sql_safety import quote_schema_table as _quote_schema_table


class DatabaseType(str, Enum):
    """
    Enumeration of supported database types.

    Inherits from str so values compare equal to configuration strings.
    """

    POSTGRESQL = "postgresql"
    SQLSERVER = "sqlserver"

    @classmethod
    def parse(cls, value: "str | DatabaseType") -> "DatabaseType":
        """
        Parse a configuration value, accepting common aliases.

        Raises:
            ValueError: If the value names no supported database
        """
        if isinstance(value, DatabaseType):
            return value

        normalized = str(value).strip().lower()
        aliases = {
            "postgres": cls.POSTGRESQL,
            "postgresql": cls.POSTGRESQL,
            "pg": cls.POSTGRESQL,
            "sqlserver": cls.SQLSERVER,
            "mssql": cls.SQLSERVER,
        }
        if normalized not in aliases:
            raise ValueError(
                f"Unsupported database type: {value!r} "
                f"(expected one of {sorted(aliases)})"
            )
        return aliases[normalized]

    @property
    def placeholder(self) -> str:
        """Bind parameter placeholder for the driver (psycopg2 or pyodbc)."""
        if self == DatabaseType.POSTGRESQL:
            return "%s"
        return "?"

    def quote_identifier(self, identifier: str) -> str:
        """Validate and quote a column or table name."""
        return _quote_identifier(identifier, self.value)

    def quote_table(self, schema: str, table: str) -> str:
        """Validate and quote ``schema.table`` (schema may be empty)."""
        if schema:
            return _quote_schema_table(f"{schema}.{table}", self.value)
        return _quote_schema_table(table, self.value)

    def modulus(self, expression: str, divisor: int) -> str:
        """Modulus expression used to split rows across threads."""
        if self == DatabaseType.POSTGRESQL:
            return f"MOD({expression}, {divisor})"
        return f"({expression} % {divisor})"

    def partition_predicate(self, expression: str, degree: int, thread_nbr: int) -> str:
        """
        WHERE condition selecting thread ``thread_nbr`` (1-based) of ``degree``.

        The remainder is taken as an absolute value so negative keys land
        in a partition too.
        """
        return f"ABS({self.modulus(expression, degree)}) = {thread_nbr - 1}"
