"""
dcompare: hash-based table reconciliation.

Each side of a table pair (source and target database) is read
independently and reduced to per-row fingerprints, which are staged in
a PostgreSQL repository and compared there. Row content never moves
between the two databases.
"""

from .comparator import Comparator, classify
from .config import DatabaseConfig, EngineConfig
from .ledger import ProgressLedger
from .loader import Loader
from .models import CompareCounts, ResultRecord, Side, TableSpec, TableStatus
from .orchestrator import BatchOutcome, Orchestrator, TableOutcome
from .staging import StagingStore

__version__ = "1.0.0"

__all__ = [
    "Comparator",
    "classify",
    "DatabaseConfig",
    "EngineConfig",
    "ProgressLedger",
    "Loader",
    "CompareCounts",
    "ResultRecord",
    "Side",
    "TableSpec",
    "TableStatus",
    "BatchOutcome",
    "Orchestrator",
    "TableOutcome",
    "StagingStore",
]
