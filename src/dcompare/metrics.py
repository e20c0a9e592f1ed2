"""
Prometheus metrics for reconciliation runs.
"""

from prometheus_client import Counter, Gauge, Histogram

from dcutils.metrics import get_or_create_metric

TABLES_PROCESSED = get_or_create_metric(
    lambda: Counter(
        "dc_tables_processed_total",
        "Tables reconciled, by final status",
        ["status"],  # complete, error, skipped
    ),
    "dc_tables_processed_total",
)

ROWS_FINGERPRINTED = get_or_create_metric(
    lambda: Counter(
        "dc_rows_fingerprinted_total",
        "Rows fingerprinted and staged",
        ["side"],
    ),
    "dc_rows_fingerprinted_total",
)

COMPARE_ROWS = get_or_create_metric(
    lambda: Counter(
        "dc_compare_rows_total",
        "Primary keys classified by the comparator",
        ["outcome"],  # equal, not_equal, missing_source, missing_target
    ),
    "dc_compare_rows_total",
)

PHASE_DURATION = get_or_create_metric(
    lambda: Histogram(
        "dc_phase_duration_seconds",
        "Duration of table run phases",
        ["phase"],  # clear, stage, load, compare, table
        buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
    ),
    "dc_phase_duration_seconds",
)

BATCH_DURATION = get_or_create_metric(
    lambda: Histogram(
        "dc_batch_duration_seconds",
        "Duration of a whole run_batch call",
        ["table_workers"],
        buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600, 7200],
    ),
    "dc_batch_duration_seconds",
)

ACTIVE_TABLE_WORKERS = get_or_create_metric(
    lambda: Gauge(
        "dc_active_table_workers",
        "Table workers currently reconciling a table",
    ),
    "dc_active_table_workers",
)

TABLE_QUEUE_SIZE = get_or_create_metric(
    lambda: Gauge(
        "dc_table_queue_size",
        "Tables selected but not yet finished",
    ),
    "dc_table_queue_size",
)


def record_counts(counts) -> None:
    """Add one table's compare outcome to the counters."""
    COMPARE_ROWS.labels(outcome="equal").inc(counts.equal)
    COMPARE_ROWS.labels(outcome="not_equal").inc(counts.not_equal)
    COMPARE_ROWS.labels(outcome="missing_source").inc(counts.missing_source)
    COMPARE_ROWS.labels(outcome="missing_target").inc(counts.missing_target)
