"""
Per-row fingerprints: primary key hash, column hash and primary key JSON.
"""

from .column_map import CatalogColumn, ColumnMap, ColumnMapping, type_hint_for
from .computer import FanOut, FingerprintComputer, RowHasher, partition_of
from .hashing import hash_values, json_safe, normalize_value

__all__ = [
    "CatalogColumn",
    "ColumnMap",
    "ColumnMapping",
    "type_hint_for",
    "FanOut",
    "FingerprintComputer",
    "RowHasher",
    "partition_of",
    "hash_values",
    "json_safe",
    "normalize_value",
]
