"""
Column maps: which source column lines up with which target column.

Stored as JSON in ``dc_table.column_map``::

    {"columns": [
        {"alias": "id", "source": "ID", "target": "id", "primary_key": true,
         "integer": true},
        {"alias": "amount", "source": "AMOUNT", "target": "amount", "type": "number"}
    ]}

Primary key columns are hashed into ``pk_hash``, the rest into
``column_hash``, both in the order listed. A single integer primary key
lets a table be split across threads with a SQL modulus.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, NamedTuple

from dcutils.sql_safety import validate_identifier

from ..errors import ColumnMapError
from ..models import Side
from .hashing import TYPE_BOOLEAN, TYPE_HINTS, TYPE_NUMBER, TYPE_STRING

logger = logging.getLogger(__name__)

_NUMBER_TYPES = {
    "smallint", "integer", "int", "bigint", "tinyint", "numeric", "decimal",
    "real", "double precision", "float", "money", "smallmoney", "smallserial",
    "serial", "bigserial",
}
_INTEGER_TYPES = {
    "smallint", "integer", "int", "bigint", "tinyint", "smallserial", "serial", "bigserial",
}
_BOOLEAN_TYPES = {"boolean", "bool", "bit"}
_STRING_TYPES = {
    "character varying", "varchar", "character", "char", "bpchar", "text",
    "nvarchar", "nchar", "ntext", "citext",
}


class CatalogColumn(NamedTuple):
    """A column as reported by a database catalog."""

    name: str
    data_type: str
    primary_key: bool = False


def type_hint_for(data_type: str) -> str | None:
    """Hashing type hint for a catalog data type, if one applies."""
    data_type = data_type.lower()
    if data_type in _NUMBER_TYPES:
        return TYPE_NUMBER
    if data_type in _BOOLEAN_TYPES:
        return TYPE_BOOLEAN
    if data_type in _STRING_TYPES:
        return TYPE_STRING
    return None


def _is_integer(data_type: str) -> bool:
    return data_type.lower() in _INTEGER_TYPES


def _resolve_hint(source_type: str, target_type: str) -> str | None:
    """
    Hint for a column pair whose declared types may differ.

    Only hints that change how a value is hashed are kept: text holding
    numbers compares as numbers, and bit/integer flags compare as booleans.
    """
    hints = {type_hint_for(source_type), type_hint_for(target_type)}
    if hints == {TYPE_NUMBER}:
        return TYPE_NUMBER
    if hints == {TYPE_BOOLEAN} or hints == {TYPE_BOOLEAN, TYPE_NUMBER}:
        return TYPE_BOOLEAN
    if hints == {TYPE_NUMBER, TYPE_STRING}:
        return TYPE_NUMBER
    return None


@dataclass(frozen=True)
class ColumnMapping:
    alias: str
    source: str
    target: str
    primary_key: bool = False
    type: str | None = None
    # whole-number column on both sides; primary keys like this split in SQL
    integer: bool = False

    def name_for(self, side: Side) -> str:
        return self.source if Side(side) == Side.SOURCE else self.target

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "alias": self.alias,
            "source": self.source,
            "target": self.target,
            "primary_key": self.primary_key,
        }
        if self.type:
            payload["type"] = self.type
        if self.integer:
            payload["integer"] = True
        return payload


class ColumnMap:
    """Ordered, validated set of column mappings for one table pair."""

    def __init__(self, columns: Iterable[ColumnMapping]):
        self.columns = list(columns)
        self._validate()

    def _validate(self) -> None:
        if not self.columns:
            raise ColumnMapError("Column map has no columns")

        aliases = [c.alias for c in self.columns]
        duplicates = sorted({a for a in aliases if aliases.count(a) > 1})
        if duplicates:
            raise ColumnMapError(f"Column map repeats aliases: {duplicates}")

        if not any(c.primary_key for c in self.columns):
            raise ColumnMapError("Column map has no primary key column")

        for column in self.columns:
            if column.type is not None and column.type not in TYPE_HINTS:
                raise ColumnMapError(
                    f"Column {column.alias!r} has unknown type {column.type!r} "
                    f"(expected one of {TYPE_HINTS})"
                )
            for name in (column.source, column.target):
                try:
                    validate_identifier(name)
                except ValueError as e:
                    raise ColumnMapError(str(e)) from e

    @property
    def pk_columns(self) -> list[ColumnMapping]:
        return [c for c in self.columns if c.primary_key]

    @property
    def compare_columns(self) -> list[ColumnMapping]:
        return [c for c in self.columns if not c.primary_key]

    def split_column(self, side: Side) -> str | None:
        """
        Column a table can be split on with a SQL modulus, if any.

        Only a primary key made of a single integer column qualifies.
        """
        pk = self.pk_columns
        if len(pk) == 1 and pk[0].integer:
            return pk[0].name_for(side)
        return None

    def select_columns(self, side: Side) -> list[str]:
        """Column names to select on one side: primary key first, then compared."""
        return [c.name_for(side) for c in self.pk_columns + self.compare_columns]

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "ColumnMap":
        try:
            columns = [
                ColumnMapping(
                    alias=entry.get("alias") or entry["source"],
                    source=entry["source"],
                    target=entry.get("target") or entry["source"],
                    primary_key=bool(entry.get("primary_key", False)),
                    type=entry.get("type"),
                    integer=bool(entry.get("integer", False)),
                )
                for entry in payload.get("columns", [])
            ]
        except (KeyError, AttributeError, TypeError) as e:
            raise ColumnMapError(f"Malformed column map: {e}") from e
        return cls(columns)

    def to_json(self) -> dict[str, Any]:
        return {"columns": [c.to_dict() for c in self.columns]}

    @classmethod
    def from_catalogs(
        cls,
        source_columns: list[CatalogColumn],
        target_columns: list[CatalogColumn],
        table: str | None = None,
    ) -> "ColumnMap":
        """
        Match source and target catalog columns by case-insensitive name.

        Columns present on one side only are left out of the comparison.
        Primary key columns come from the source catalog, or from the
        target catalog when the source declares none.

        Raises:
            ColumnMapError: If a primary key column is missing on either side
        """
        targets = {c.name.lower(): c for c in target_columns}
        source_pk = any(c.primary_key for c in source_columns)

        mappings = []
        for column in source_columns:
            match = targets.get(column.name.lower())
            if match is None:
                if column.primary_key:
                    raise ColumnMapError(
                        f"Primary key column {column.name!r} not found on target",
                        table=table,
                    )
                logger.warning(f"{table}: column {column.name!r} not on target, not compared")
                continue

            mappings.append(
                ColumnMapping(
                    alias=column.name.lower(),
                    source=column.name,
                    target=match.name,
                    primary_key=column.primary_key if source_pk else match.primary_key,
                    type=_resolve_hint(column.data_type, match.data_type),
                    integer=_is_integer(column.data_type) and _is_integer(match.data_type),
                )
            )

        sources = {c.name.lower() for c in source_columns}
        for column in target_columns:
            if column.name.lower() not in sources:
                if column.primary_key and not source_pk:
                    raise ColumnMapError(
                        f"Primary key column {column.name!r} not found on source",
                        table=table,
                    )
                logger.warning(f"{table}: column {column.name!r} not on source, not compared")

        try:
            return cls(mappings)
        except ColumnMapError as e:
            raise e.with_context(table=table)
