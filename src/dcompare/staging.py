"""
Staging tables.

Each (side, table, thread) stages its fingerprints in its own unlogged
table named ``dc_<side>_<tid>_<thread>``. The name is deterministic, so
a table left behind by a crashed run is simply dropped and recreated.
"""

import logging
import re
import threading
from collections.abc import Iterable
from itertools import islice

from .config import EngineConfig
from .errors import CancellationError
from .models import Fingerprint, Side
from .repository import STAGING_TABLE_PATTERN, Repository

logger = logging.getLogger(__name__)

_STAGING_NAME = re.compile(STAGING_TABLE_PATTERN)


def staging_table_name(side: Side, tid: int, thread_nbr: int) -> str:
    return f"dc_{Side(side).value}_{tid}_{thread_nbr}"


class StagingStore:
    """Creates, fills and drops staging tables."""

    def __init__(self, repo: Repository, config: EngineConfig):
        self.repo = repo
        self.config = config

    def create(self, side: Side, tid: int, thread_nbr: int) -> str:
        """Create an empty staging table (dropping any leftover one); returns its name."""
        name = staging_table_name(side, tid, thread_nbr)
        self.repo.create_staging_table(name)
        logger.debug(f"Created staging table {name}")
        return name

    def drop(self, name: str) -> None:
        self.repo.drop_staging_table(name)
        logger.debug(f"Dropped staging table {name}")

    def write(
        self,
        name: str,
        fingerprints: Iterable[Fingerprint],
        cancel: threading.Event | None = None,
    ) -> int:
        """
        Write fingerprints in pages of ``batch_commit_size`` rows.

        Each page is one insert statement and one commit.

        Returns:
            Number of rows written

        Raises:
            CancellationError: If ``cancel`` is set between pages
        """
        page_size = self.config.batch_commit_size
        iterator = iter(fingerprints)
        written = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise CancellationError(f"Staging into {name} cancelled")

            page = list(islice(iterator, page_size))
            if not page:
                break

            written += self.repo.insert_staging_rows(name, page)
            logger.debug(f"{name}: {written} rows staged")

        return written

    def cleanup_orphans(self, tid: int | None = None) -> int:
        """
        Drop staging tables left behind by earlier runs.

        With ``tid``, only that table's staging tables are dropped; callers
        pass it once they have claimed the table, so tables another run is
        working on are never touched.

        Returns:
            Number of tables dropped
        """
        dropped = 0
        for name in self.repo.list_staging_tables():
            if not _STAGING_NAME.match(name):
                continue
            if tid is not None and name.split("_")[2] != str(tid):
                continue
            self.drop(name)
            dropped += 1

        if dropped:
            logger.info(f"Dropped {dropped} leftover staging table(s)")
        return dropped
