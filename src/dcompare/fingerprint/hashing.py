"""
Row hashing.

Both sides must produce the same hash for the same logical row even
though they come from different drivers (psycopg2 and pyodbc return
different Python types for the same SQL value). Every value is first
normalized to a canonical string:

    NULL            -> "\\x1eNULL\\x1e"
    bool            -> "1" / "0"
    int, Decimal    -> plain decimal, no exponent, no trailing zeros ("1.50" -> "1.5")
    float           -> rounded to ``float_scale`` places, then as Decimal
    datetime        -> "YYYY-MM-DD HH:MM:SS.ffffff" (aware values in UTC)
    date / time     -> ISO format
    str             -> NFC normalized, trailing spaces removed
    bytes           -> lowercase hex
    UUID            -> lowercase canonical form
    dict / list     -> JSON with sorted keys

Normalized values are joined with a unit separator and hashed with SHA-256.
"""

import hashlib
import json
import math
import unicodedata
import uuid
from collections.abc import Sequence
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

NULL_TOKEN = "\x1eNULL\x1e"
SEPARATOR = "\x1f"

TYPE_NUMBER = "number"
TYPE_STRING = "string"
TYPE_BOOLEAN = "boolean"
TYPE_HINTS = (TYPE_NUMBER, TYPE_STRING, TYPE_BOOLEAN)

_TRUE_STRINGS = {"1", "t", "true", "y", "yes", "on"}
_FALSE_STRINGS = {"0", "f", "false", "n", "no", "off"}

DEFAULT_FLOAT_SCALE = 10


def _canonical_decimal(value: Decimal) -> str:
    if value.is_nan():
        return "NaN"
    if value.is_infinite():
        return "-Infinity" if value < 0 else "Infinity"
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def _canonical_float(value: float, float_scale: int) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "-Infinity" if value < 0 else "Infinity"
    return _canonical_decimal(Decimal(repr(round(value, float_scale))))


def _canonical_number(value: Any, float_scale: int) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _canonical_float(value, float_scale)
    if isinstance(value, Decimal):
        return _canonical_decimal(value)
    try:
        return _canonical_decimal(Decimal(str(value).strip()))
    except InvalidOperation:
        return _canonical_text(str(value))


def _canonical_text(value: str) -> str:
    return unicodedata.normalize("NFC", value).rstrip(" ")


def _canonical_boolean(value: Any) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return "1"
        if lowered in _FALSE_STRINGS:
            return "0"
        return _canonical_text(value)
    return "1" if value else "0"


def normalize_value(
    value: Any,
    type_hint: str | None = None,
    float_scale: int = DEFAULT_FLOAT_SCALE,
) -> str:
    """
    Canonical string form of a single column value.

    Args:
        value: Value as returned by the database driver
        type_hint: Optional ``number``, ``string`` or ``boolean`` override
            for columns whose types differ between the two sides
        float_scale: Decimal places binary floats are rounded to
    """
    if value is None:
        return NULL_TOKEN

    if type_hint == TYPE_NUMBER:
        return _canonical_number(value, float_scale)
    if type_hint == TYPE_BOOLEAN:
        return _canonical_boolean(value)

    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return _canonical_number(value, float_scale)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value.strftime("%Y-%m-%d %H:%M:%S.%f")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, timedelta):
        return _canonical_decimal(Decimal(str(value.total_seconds())))
    if isinstance(value, str):
        return _canonical_text(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)

    return _canonical_text(str(value))


def hash_values(
    values: Sequence[Any],
    type_hints: Sequence[str | None] | None = None,
    float_scale: int = DEFAULT_FLOAT_SCALE,
) -> str:
    """SHA-256 hex digest of the normalized, separator-joined values."""
    hints = type_hints or [None] * len(values)
    joined = SEPARATOR.join(
        normalize_value(value, hint, float_scale) for value, hint in zip(values, hints)
    )
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def json_safe(value: Any) -> Any:
    """Primary key value as stored in the ``pk`` JSON object."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else normalize_value(value)
    return normalize_value(value)
