"""
Command-line argument parser configuration.

Connection settings come from ``DC_*`` environment variables (see
``dcompare.config``); flags override the engine options.
"""

import argparse


def _add_engine_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("engine options (override DC_* environment)")
    group.add_argument(
        "--stage-table-parallel",
        type=int,
        help="parallel_workers storage parameter for staging tables",
    )
    group.add_argument(
        "--batch-fetch-size", type=int, help="Rows fetched per round trip (default: 2000)"
    )
    group.add_argument(
        "--batch-commit-size", type=int, help="Staging rows per insert/commit (default: 2000)"
    )
    group.add_argument(
        "--float-scale", type=int, help="Decimal places floats are rounded to (default: 10)"
    )
    group.add_argument(
        "--table-workers", type=int, help="Tables reconciled concurrently (default: 1)"
    )


def _add_selection_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--batch",
        type=int,
        default=0,
        help="Only tables in this batch (default: 0 = all batches)",
    )
    parser.add_argument("--table", help="Only this target table")


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="dcompare",
        description="Hash-based table reconciliation between a source and a target database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the repository tables
  dcompare init

  # Register every table of a schema
  dcompare discover --schema hr --parallel-degree 4

  # Reconcile batch 1 with 4 tables at a time, saving a JSON report
  dcompare run --batch 1 --table-workers 4 --output report.json --format json

  # Re-run tables that had differences last time
  dcompare reset --batch 1 && dcompare run --batch 1 --check

  # Show a saved report on the console
  dcompare report --input report.json
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument("--log-file", help="Also log to this file (rotated)")
    parser.add_argument("--log-json", action="store_true", help="Log as JSON lines")
    parser.add_argument(
        "--metrics-port", type=int, help="Expose Prometheus metrics on this port"
    )
    parser.add_argument(
        "--otlp-endpoint", help="Export traces to this OTLP collector (host:port)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ========== init ==========
    subparsers.add_parser("init", help="Create repository tables")

    # ========== discover ==========
    discover_parser = subparsers.add_parser(
        "discover", help="Register the tables of a schema"
    )
    discover_parser.add_argument("--schema", required=True, help="Source schema")
    discover_parser.add_argument(
        "--target-schema", help="Target schema (default: same as --schema)"
    )
    discover_parser.add_argument(
        "--batch", type=int, default=1, help="Batch number for the tables (default: 1)"
    )
    discover_parser.add_argument(
        "--parallel-degree",
        type=int,
        default=1,
        help="Threads per table (default: 1)",
    )

    # ========== reset ==========
    reset_parser = subparsers.add_parser(
        "reset", help="Return complete or failed tables to ready"
    )
    _add_selection_options(reset_parser)

    # ========== run ==========
    run_parser = subparsers.add_parser("run", help="Reconcile ready tables")
    _add_selection_options(run_parser)
    run_parser.add_argument(
        "--check",
        action="store_true",
        help="Only tables whose previous findings had differences",
    )
    run_parser.add_argument("--output", help="Output file path for report")
    run_parser.add_argument(
        "--format",
        choices=["console", "json", "csv"],
        default="console",
        help="Output format (default: console)",
    )
    _add_engine_options(run_parser)

    # ========== report ==========
    report_parser = subparsers.add_parser(
        "report", help="Render a report saved by a previous run"
    )
    report_parser.add_argument("--input", required=True, help="Input JSON report file")
    report_parser.add_argument(
        "--format",
        choices=["console", "json", "csv"],
        default="console",
        help="Output format (default: console)",
    )
    report_parser.add_argument(
        "--output", help="Output file path (required for json and csv formats)"
    )

    return parser
