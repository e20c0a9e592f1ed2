"""
Identifier and fragment checks for dynamically built SQL.

Catalog names, staging table names and configured column names are the
only text interpolated into statements. Each name must match a strict
ASCII pattern before it is quoted for its dialect; row values always
travel as bind parameters.
"""

import re
from typing import Literal

DbDialect = Literal["postgresql", "sqlserver"]

_NAME = r"[A-Za-z_][A-Za-z0-9_$]*"
VALID_IDENTIFIER = re.compile(rf"^{_NAME}$")
VALID_SCHEMA_TABLE = re.compile(rf"^{_NAME}(?:\.{_NAME})?$")

# Postgres silently truncates longer names, which would alias staging tables
MAX_IDENTIFIER_LENGTH = 63

_QUOTES: dict[str, tuple[str, str]] = {
    "postgresql": ('"', '"'),
    "sqlserver": ("[", "]"),
}

# Tokens that end a statement or hide the rest of it
_FORBIDDEN_TOKENS = (";", "--", "/*", "*/")


def validate_identifier(identifier: str) -> None:
    """
    Check a single schema, table or column name.

    Raises:
        ValueError: empty, too long, or outside ``[A-Za-z_][A-Za-z0-9_$]*``
    """
    if not identifier:
        raise ValueError("SQL identifier cannot be empty")
    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Identifier {identifier[:20]!r}... is invalid: "
            f"Longer than {MAX_IDENTIFIER_LENGTH} characters"
        )
    if VALID_IDENTIFIER.fullmatch(identifier) is None:
        raise ValueError(
            f"Identifier {identifier!r} is invalid: expected an ASCII letter or "
            "underscore followed by letters, digits, '_' or '$'"
        )


def validate_schema_table(schema_table: str) -> None:
    """Check a ``table`` or ``schema.table`` name."""
    if not schema_table or VALID_SCHEMA_TABLE.fullmatch(schema_table) is None:
        raise ValueError(f"Table name {schema_table!r} is invalid: expected table or schema.table")


def quote_identifier(identifier: str, db_type: DbDialect = "postgresql") -> str:
    """Validate ``identifier`` and wrap it in the dialect's quote characters."""
    validate_identifier(identifier)
    opening, closing = _QUOTES[db_type]
    return f"{opening}{identifier}{closing}"


def quote_schema_table(schema_table: str, db_type: DbDialect = "postgresql") -> str:
    """
    Quote ``table`` or ``schema.table`` part by part.

    >>> quote_schema_table("dbo.orders", "sqlserver")
    '[dbo].[orders]'
    """
    validate_schema_table(schema_table)
    return ".".join(quote_identifier(part, db_type) for part in schema_table.split("."))


def validate_integer_param(value: int, param_name: str, min_value: int = 0) -> None:
    """
    Check an integer rendered into SQL text (fillfactor, modulus divisor).

    ``bool`` is rejected even though it subclasses ``int``.
    """
    if type(value) is not int:
        raise ValueError(f"{param_name}={value!r} is invalid: Must be an integer")
    if value < min_value:
        raise ValueError(f"{param_name}={value} is invalid: Must be >= {min_value}")


def validate_filter_fragment(fragment: str) -> None:
    """
    Check an operator-supplied row filter before it is ANDed into a WHERE clause.

    Filters come from the ``dc_table`` registry rather than row data, but
    they must remain a single predicate.
    """
    found = next((token for token in _FORBIDDEN_TOKENS if token in fragment), None)
    if found is not None:
        raise ValueError(f"Table filter {fragment!r} rejected: {found!r} is not allowed")
