"""
Report generation from batch outcomes.

A report summarizes one ``run_batch`` call: overall status, per-table
counts, discrepancies with a severity, failed tables with their error
payloads, and recommendations for the operator.
"""

from datetime import UTC, datetime
from typing import Any

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_NO_DATA = "NO_DATA"


class DiscrepancyType:
    NOT_EQUAL = "NOT_EQUAL"
    MISSING_IN_TARGET = "MISSING_IN_TARGET"
    MISSING_IN_SOURCE = "MISSING_IN_SOURCE"


# result field -> discrepancy type
_COUNT_FIELDS = (
    ("not_equal_cnt", DiscrepancyType.NOT_EQUAL),
    ("missing_target_cnt", DiscrepancyType.MISSING_IN_TARGET),
    ("missing_source_cnt", DiscrepancyType.MISSING_IN_SOURCE),
)


def _calculate_severity(base_count: int, affected: int) -> str:
    """
    Severity of a discrepancy relative to the table size.

    Args:
        base_count: Rows on the larger side
        affected: Rows in the discrepancy class

    Returns:
        LOW, MEDIUM, HIGH or CRITICAL
    """
    if base_count == 0:
        return "LOW" if affected == 0 else "CRITICAL"

    percentage = affected / base_count * 100
    if percentage < 0.1:
        return "LOW"
    elif percentage < 1.0:
        return "MEDIUM"
    elif percentage < 10.0:
        return "HIGH"
    return "CRITICAL"


def _table_discrepancies(table: dict[str, Any]) -> list[dict[str, Any]]:
    result = table["result"]
    base = max(result["source_cnt"], result["target_cnt"])
    samples = table.get("discrepancies") or []

    discrepancies = []
    for field, issue_type in _COUNT_FIELDS:
        affected = result[field]
        if not affected:
            continue

        if issue_type == DiscrepancyType.NOT_EQUAL:
            keys = [s["pk"] for s in samples if s["compare_result"] == "n"]
        elif issue_type == DiscrepancyType.MISSING_IN_TARGET:
            keys = [s["pk"] for s in samples if s["compare_result"] == "m" and s["side"] == "source"]
        else:
            keys = [s["pk"] for s in samples if s["compare_result"] == "m" and s["side"] == "target"]

        discrepancies.append(
            {
                "table": table["table"],
                "issue_type": issue_type,
                "severity": _calculate_severity(base, affected),
                "rows": affected,
                "sample_keys": keys,
            }
        )
    return discrepancies


def _generate_summary(total: int, in_sync: int, out_of_sync: int, failed: int) -> str:
    if out_of_sync == 0 and failed == 0:
        return f"All {total} tables reconciled. Source and target are in sync."

    parts = []
    if out_of_sync:
        parts.append(f"{out_of_sync} of {total} tables have discrepancies")
    if failed:
        parts.append(f"{failed} of {total} tables failed to reconcile")
    return "; ".join(parts) + f". {in_sync} tables are in sync."


def _generate_recommendations(
    discrepancies: list[dict[str, Any]], failures: list[dict[str, Any]]
) -> list[str]:
    recommendations = []

    if not discrepancies and not failures:
        return ["Source and target are in sync. No action needed."]

    by_type: dict[str, int] = {}
    for d in discrepancies:
        by_type[d["issue_type"]] = by_type.get(d["issue_type"], 0) + d["rows"]

    if by_type.get(DiscrepancyType.MISSING_IN_TARGET):
        recommendations.append(
            f"{by_type[DiscrepancyType.MISSING_IN_TARGET]} rows exist only on the source. "
            "Check that loads into the target completed for this batch."
        )
    if by_type.get(DiscrepancyType.MISSING_IN_SOURCE):
        recommendations.append(
            f"{by_type[DiscrepancyType.MISSING_IN_SOURCE]} rows exist only on the target. "
            "Look for deletes not applied to the target or rows inserted there directly."
        )
    if by_type.get(DiscrepancyType.NOT_EQUAL):
        recommendations.append(
            f"{by_type[DiscrepancyType.NOT_EQUAL]} rows differ in column values. "
            "If the differences are type-related, add type hints to the column map "
            "or adjust float-scale."
        )

    categories = {f.get("category") for f in failures}
    if "transient" in categories:
        recommendations.append(
            "Some tables failed on connection or timeout errors. "
            "Reset them to ready and run the batch again."
        )
    if "data-integrity" in categories:
        recommendations.append(
            "Some tables failed integrity checks (NULL primary keys or row count "
            "mismatches). Inspect the error payloads before re-running."
        )
    if "maintenance" in categories:
        recommendations.append(
            "Clearing previous findings failed. Check locks and VACUUM permissions "
            "on dc_source and dc_target."
        )
    if "logic" in categories:
        recommendations.append(
            "Some tables failed with configuration or processing errors. "
            "Check their column maps, filters and the run log."
        )

    if discrepancies:
        recommendations.append(
            "Re-run affected tables with --check to confirm the discrepancies persist."
        )
    return recommendations


def generate_report(batch: dict[str, Any]) -> dict[str, Any]:
    """
    Build a report from ``BatchOutcome.to_dict()``.

    Returns:
        Dictionary with ``status`` (PASS, FAIL or NO_DATA), table totals,
        per-table rows, discrepancies, failures, summary and recommendations
    """
    tables = batch.get("tables", [])
    processed = [t for t in tables if t["status"] != "skipped"]

    report: dict[str, Any] = {
        "run_id": batch.get("run_id"),
        "batch_nbr": batch.get("batch_nbr"),
        "timestamp": datetime.now(UTC).isoformat(),
        "duration_seconds": batch.get("duration_seconds", 0),
        "total_tables": len(tables),
        "tables_in_sync": 0,
        "tables_out_of_sync": 0,
        "tables_failed": 0,
        "tables_skipped": len(tables) - len(processed),
        "source_total_rows": 0,
        "target_total_rows": 0,
        "tables": [],
        "discrepancies": [],
        "failures": [],
    }

    if not processed:
        report.update(
            status=STATUS_NO_DATA,
            summary="No tables were reconciled",
            recommendations=[],
        )
        return report

    for table in processed:
        result = table.get("result") or {}
        row = {
            "table": table["table"],
            "status": table["status"],
            "source_cnt": result.get("source_cnt", 0),
            "target_cnt": result.get("target_cnt", 0),
            "equal_cnt": result.get("equal_cnt", 0),
            "not_equal_cnt": result.get("not_equal_cnt", 0),
            "missing_source_cnt": result.get("missing_source_cnt", 0),
            "missing_target_cnt": result.get("missing_target_cnt", 0),
            "duration_seconds": table.get("duration_seconds", 0),
        }
        report["tables"].append(row)
        report["source_total_rows"] += row["source_cnt"]
        report["target_total_rows"] += row["target_cnt"]

        if table["status"] == "error":
            report["tables_failed"] += 1
            report["failures"].append(table.get("error") or {"table": table["table"]})
        elif table.get("in_sync"):
            report["tables_in_sync"] += 1
        else:
            report["tables_out_of_sync"] += 1
            report["discrepancies"].extend(_table_discrepancies(table))

    failed = report["tables_failed"] or report["tables_out_of_sync"]
    report["status"] = STATUS_FAIL if failed else STATUS_PASS
    report["summary"] = _generate_summary(
        len(processed),
        report["tables_in_sync"],
        report["tables_out_of_sync"],
        report["tables_failed"],
    )
    report["recommendations"] = _generate_recommendations(
        report["discrepancies"], report["failures"]
    )
    return report
