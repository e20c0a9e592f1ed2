"""
Data model for the reconciliation engine.

Rows read from the repository are decoded into these types inside the
repository layer; the rest of the engine never touches raw tuples.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple


class Side(str, Enum):
    """Which database a fingerprint was read from."""

    SOURCE = "source"
    TARGET = "target"

    @property
    def findings_table(self) -> str:
        return f"dc_{self.value}"

    @property
    def count_column(self) -> str:
        return f"{self.value}_cnt"


class TableStatus(str, Enum):
    READY = "ready"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class ResultStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class CompareResult(str, Enum):
    """Classification code stored in ``compare_result``."""

    EQUAL = "e"
    NOT_EQUAL = "n"
    MISSING = "m"


@dataclass
class TableSpec:
    """A registered table pair (one row of ``dc_table``)."""

    tid: int
    source_schema: str
    source_table: str
    target_schema: str
    target_table: str
    table_filter: str | None = None
    parallel_degree: int = 1
    status: TableStatus = TableStatus.READY
    batch_nbr: int = 1
    mod_column: str | None = None
    column_map: dict[str, Any] = field(default_factory=dict)

    COLUMNS = (
        "tid",
        "source_schema",
        "source_table",
        "target_schema",
        "target_table",
        "table_filter",
        "parallel_degree",
        "status",
        "batch_nbr",
        "mod_column",
        "column_map",
    )

    @classmethod
    def from_row(cls, row: tuple) -> "TableSpec":
        values = dict(zip(cls.COLUMNS, row))
        column_map = values["column_map"]
        if isinstance(column_map, str):
            column_map = json.loads(column_map) if column_map else {}
        values["column_map"] = column_map or {}
        values["status"] = TableStatus(values["status"])
        values["parallel_degree"] = max(int(values["parallel_degree"] or 1), 1)
        values["table_filter"] = values["table_filter"] or None
        values["mod_column"] = values["mod_column"] or None
        return cls(**values)

    @property
    def table_name(self) -> str:
        """Display name (the target table). Not unique: findings are keyed on ``tid``."""
        return self.target_table

    @property
    def threads(self) -> range:
        return range(1, self.parallel_degree + 1)


class Fingerprint(NamedTuple):
    """A staged row fingerprint: hashes plus the primary key as JSON."""

    pk_hash: str
    column_hash: str
    pk: dict[str, Any]
    compare_result: str | None = None


@dataclass
class FindingsRecord:
    tid: int
    table_name: str
    thread_nbr: int
    pk_hash: str
    column_hash: str
    pk: dict[str, Any]
    compare_result: str | None
    batch_nbr: int


@dataclass
class CompareCounts:
    equal: int = 0
    not_equal: int = 0
    missing_source: int = 0
    missing_target: int = 0

    @property
    def total(self) -> int:
        """Distinct primary keys across both sides."""
        return self.equal + self.not_equal + self.missing_source + self.missing_target

    @property
    def in_sync(self) -> bool:
        return self.not_equal == 0 and self.missing_source == 0 and self.missing_target == 0


@dataclass
class ResultRecord:
    """One row of ``dc_result``."""

    cid: int
    rid: int
    table_name: str
    compare_dt: datetime | None = None
    equal_cnt: int = 0
    missing_source_cnt: int = 0
    missing_target_cnt: int = 0
    not_equal_cnt: int = 0
    source_cnt: int = 0
    target_cnt: int = 0
    status: ResultStatus = ResultStatus.RUNNING
    tid: int | None = None

    COLUMNS = (
        "cid",
        "rid",
        "table_name",
        "compare_dt",
        "equal_cnt",
        "missing_source_cnt",
        "missing_target_cnt",
        "not_equal_cnt",
        "source_cnt",
        "target_cnt",
        "status",
        "tid",
    )

    @classmethod
    def from_row(cls, row: tuple) -> "ResultRecord":
        values = dict(zip(cls.COLUMNS, row))
        values["status"] = ResultStatus(values["status"])
        return cls(**values)

    @property
    def counts(self) -> CompareCounts:
        return CompareCounts(
            equal=self.equal_cnt,
            not_equal=self.not_equal_cnt,
            missing_source=self.missing_source_cnt,
            missing_target=self.missing_target_cnt,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        if self.compare_dt is not None:
            payload["compare_dt"] = self.compare_dt.isoformat()
        return payload


@dataclass
class HistoryRecord:
    """One row of ``dc_table_history``."""

    tid: int
    action_type: str
    load_id: str
    batch_nbr: int
    start_dt: datetime | None = None
    end_dt: datetime | None = None
    row_count: int = 0
    action_result: dict[str, Any] | None = None

    @property
    def is_open(self) -> bool:
        return self.end_dt is None
