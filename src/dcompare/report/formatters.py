"""
Report export: JSON file, per-table CSV and console text.

The JSON file is the full report dict; CSV keeps only the per-table
counts, which is what spreadsheets and diff tools want.
"""

import csv
import json
from typing import Any

CSV_COLUMNS = [
    "table",
    "status",
    "source_cnt",
    "target_cnt",
    "equal_cnt",
    "not_equal_cnt",
    "missing_source_cnt",
    "missing_target_cnt",
    "duration_seconds",
]

RULE_WIDTH = 80
CONSOLE_SAMPLE_KEYS = 5

# (report field, column label, width)
COUNT_COLUMNS = (
    ("equal_cnt", "Equal", 10),
    ("not_equal_cnt", "Not Eq", 8),
    ("missing_source_cnt", "Miss Src", 9),
    ("missing_target_cnt", "Miss Tgt", 9),
)


def export_report_json(report: dict[str, Any], output_path: str) -> None:
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)


def export_report_csv(report: dict[str, Any], output_path: str) -> None:
    """One row per table with its counts."""
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for row in report.get("tables", []):
            writer.writerow(row)


def _section(title: str, body: list[str]) -> list[str]:
    return [title, "-" * RULE_WIDTH, *body, ""] if body else []


def _table_lines(tables: list[dict[str, Any]]) -> list[str]:
    if not tables:
        return []
    header = f"{'Table':<30} {'Status':<9} " + " ".join(
        f"{label:>{width}}" for _, label, width in COUNT_COLUMNS
    )
    rows = [
        f"{row['table'][:30]:<30} {row['status']:<9} "
        + " ".join(f"{row[key]:>{width},}" for key, _, width in COUNT_COLUMNS)
        for row in tables
    ]
    return [header, *rows]


def _discrepancy_lines(discrepancies: list[dict[str, Any]]) -> list[str]:
    lines = []
    for disc in discrepancies:
        lines.append(
            f"{disc['table']}: {disc['issue_type']} ({disc['severity']}), {disc['rows']:,} rows"
        )
        sample = disc.get("sample_keys") or []
        if sample:
            keys = ", ".join(json.dumps(k, sort_keys=True) for k in sample[:CONSOLE_SAMPLE_KEYS])
            more = len(sample) - CONSOLE_SAMPLE_KEYS
            lines.append(f"  Sample keys: {keys}" + (f" (+{more} more)" if more > 0 else ""))
    return lines


def _failure_lines(failures: list[dict[str, Any]]) -> list[str]:
    return [
        f"{f.get('table')}: {f.get('error_type')} in {f.get('phase')} "
        f"[thread {f.get('thread')}, {f.get('category')}] {f.get('message')}"
        for f in failures
    ]


def format_report_console(report: dict[str, Any]) -> str:
    """Plain-text rendering of a report for the terminal."""
    rule = "=" * RULE_WIDTH
    header = [
        rule,
        f"DATA COMPARE REPORT  run {report.get('run_id')}  batch {report.get('batch_nbr')}",
        rule,
        f"Status: {report['status']}   ({report['timestamp']})",
        f"Tables: {report['total_tables']} total, {report['tables_in_sync']} in sync, "
        f"{report['tables_out_of_sync']} out of sync, {report['tables_failed']} failed, "
        f"{report['tables_skipped']} skipped",
        f"Rows: source {report['source_total_rows']:,}, target {report['target_total_rows']:,}",
        "",
    ]
    recommendations = [f"{i}. {rec}" for i, rec in enumerate(report.get("recommendations", []), 1)]

    lines = [
        *header,
        *_section("SUMMARY", [report["summary"]]),
        *_section("TABLES", _table_lines(report.get("tables", []))),
        *_section("DISCREPANCIES", _discrepancy_lines(report.get("discrepancies", []))),
        *_section("FAILURES", _failure_lines(report.get("failures", []))),
        *_section("RECOMMENDATIONS", recommendations),
        rule,
    ]
    return "\n".join(lines)
