"""
Comparator: classifies findings and finalizes the result row.

Rows are matched across sides by ``pk_hash``. A matched pair is equal
when the ``column_hash`` values agree and not equal otherwise; a row
with no partner is missing on the other side.
"""

import logging
from collections.abc import Mapping

from opentelemetry import trace

from dcutils.tracing import trace_operation

from .errors import DataIntegrityError
from .models import CompareCounts, ResultRecord, ResultStatus, Side, TableSpec
from .repository import Repository

logger = logging.getLogger(__name__)


def classify(source: Mapping[str, str], target: Mapping[str, str]) -> CompareCounts:
    """
    Classify two ``{pk_hash: column_hash}`` maps.

    >>> classify({"A": "h1", "B": "h2"}, {"A": "h1", "C": "h3"})
    CompareCounts(equal=1, not_equal=0, missing_source=1, missing_target=1)
    """
    counts = CompareCounts()
    for pk_hash, column_hash in source.items():
        if pk_hash not in target:
            counts.missing_target += 1
        elif target[pk_hash] == column_hash:
            counts.equal += 1
        else:
            counts.not_equal += 1

    counts.missing_source = sum(1 for pk_hash in target if pk_hash not in source)
    return counts


def check_conservation(counts: CompareCounts, source_cnt: int, target_cnt: int) -> None:
    """
    Every loaded row is counted exactly once on its side.

    Raises:
        DataIntegrityError: If the classes do not add up to the loaded counts
    """
    source_total = counts.equal + counts.not_equal + counts.missing_target
    target_total = counts.equal + counts.not_equal + counts.missing_source

    if source_total != source_cnt or target_total != target_cnt:
        raise DataIntegrityError(
            f"Compare counts do not add up: source {source_total} classified vs "
            f"{source_cnt} loaded, target {target_total} classified vs {target_cnt} loaded",
            phase="compare",
        )


class Comparator:
    """Runs the set comparison for one table and batch in the repository."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def compare(
        self,
        table: TableSpec,
        run_id: int,
        cid: int | None = None,
    ) -> ResultRecord:
        """
        Mark findings, count the classes and finalize the result row.

        Uses the result row ``cid`` when given, otherwise the latest row
        for this table and run, creating one when the run has none.

        Raises:
            DataIntegrityError: If the counts break conservation
        """
        tid, table_name, batch_nbr = table.tid, table.table_name, table.batch_nbr
        with trace_operation(
            "compare_findings",
            kind=trace.SpanKind.INTERNAL,
            table=table_name,
            tid=tid,
            batch=batch_nbr,
        ) as span:
            if cid is None:
                existing = self.repo.find_result(tid, run_id)
                cid = existing.cid if existing else self.repo.create_result(tid, table_name, run_id)

            self.repo.mark_compare_results(tid, batch_nbr)
            counts, totals = self.repo.summarize_compare_results(tid, batch_nbr)

            result = self.repo.get_result(cid)
            if result is None:
                raise DataIntegrityError(
                    f"Result row {cid} disappeared", table=table_name, batch=batch_nbr
                )

            try:
                check_conservation(counts, result.source_cnt, result.target_cnt)
                if totals[Side.SOURCE] != result.source_cnt or totals[Side.TARGET] != result.target_cnt:
                    raise DataIntegrityError(
                        f"Findings hold {totals[Side.SOURCE]} source and "
                        f"{totals[Side.TARGET]} target rows but {result.source_cnt} and "
                        f"{result.target_cnt} were loaded",
                        phase="compare",
                    )
            except DataIntegrityError as e:
                raise e.with_context(table=table_name, batch=batch_nbr)

            final = self.repo.finalize_result(cid, counts, ResultStatus.COMPLETE)

            span.set_attribute("equal", counts.equal)
            span.set_attribute("not_equal", counts.not_equal)
            span.set_attribute("missing_source", counts.missing_source)
            span.set_attribute("missing_target", counts.missing_target)

        logger.info(
            f"Compared {table_name} batch {batch_nbr}: equal={counts.equal} "
            f"not_equal={counts.not_equal} missing_source={counts.missing_source} "
            f"missing_target={counts.missing_target}"
        )
        return final
