"""
Loader: moves a staging table into consolidated findings.
"""

import logging

from .errors import RowCountMismatchError
from .models import Side, TableSpec
from .repository import Repository

logger = logging.getLogger(__name__)


class Loader:
    """Set-based copy of staged fingerprints into ``dc_source`` / ``dc_target``."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def load(
        self,
        side: Side,
        staging_table: str,
        table: TableSpec,
        thread_nbr: int,
    ) -> int:
        """
        Copy one staging table into the side's findings in a single statement.

        Returns:
            Rows loaded

        Raises:
            RowCountMismatchError: If the findings for this table, batch and
                thread do not number exactly the staged rows
        """
        staged = self.repo.count_staging_rows(staging_table)
        inserted = self.repo.load_findings(
            side, staging_table, table.tid, table.table_name, table.batch_nbr, thread_nbr
        )
        loaded = self.repo.count_findings(side, table.tid, table.batch_nbr, thread_nbr)

        if loaded != staged or inserted != staged:
            raise RowCountMismatchError(
                f"{Side(side).value} findings hold {loaded} rows "
                f"(inserted {inserted}) but {staged} were staged",
                staged=staged,
                loaded=loaded,
                table=table.table_name,
                batch=table.batch_nbr,
                thread=thread_nbr,
                phase=f"load-{Side(side).value}-{thread_nbr}",
            )

        logger.debug(
            f"Loaded {loaded} {Side(side).value} findings for {table.table_name} "
            f"(tid {table.tid}) thread {thread_nbr}"
        )
        return loaded
