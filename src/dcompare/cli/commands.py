"""
CLI command implementations.

Each command returns the process exit code:
- init: create the repository tables
- discover: register a schema's tables with their column maps
- reset: return finished tables to ready
- run: reconcile ready tables and report (1 when the report is not clean)
- report: re-render a saved JSON report
"""

import argparse
import json
import logging
from pathlib import Path

from dcutils.database_types import DatabaseType
from dcutils.db_pool import create_pool

from ..config import EngineConfig
from ..discovery import CatalogReader, Discovery
from ..errors import DataCompareError
from ..orchestrator import Orchestrator
from ..report import (
    STATUS_FAIL,
    export_report_csv,
    export_report_json,
    format_report_console,
    generate_report,
)
from ..repository import Database, Repository

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


def engine_options(args: argparse.Namespace) -> dict:
    """Engine option overrides given on the command line."""
    return {
        option: getattr(args, option.replace("-", "_"), None)
        for option in EngineConfig.OPTIONS
    }


def _open_repository(config: EngineConfig) -> Repository:
    pool = create_pool(config.repository, "repository")
    return Repository(Database(pool), config)


def write_report(report: dict, output: str | None, fmt: str) -> None:
    if output and fmt in ("json", "csv"):
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == "json":
            export_report_json(report, str(output_path))
        else:
            export_report_csv(report, str(output_path))
        logger.info(f"Report saved to {output_path}")
    else:
        print(format_report_console(report))


def cmd_init(args: argparse.Namespace, config: EngineConfig) -> int:
    repo = _open_repository(config)
    try:
        repo.create_schema()
    finally:
        repo.db.close()
    return EXIT_OK


def cmd_discover(args: argparse.Namespace, config: EngineConfig) -> int:
    repo = _open_repository(config)
    source_pool = create_pool(config.source, "source")
    target_pool = create_pool(config.target, "target")
    try:
        discovery = Discovery(
            repo,
            CatalogReader(source_pool, DatabaseType.parse(config.source.db_type)),
            CatalogReader(target_pool, DatabaseType.parse(config.target.db_type)),
        )
        registered = discovery.register_schema(
            args.schema,
            args.target_schema,
            batch_nbr=args.batch,
            parallel_degree=args.parallel_degree,
        )
    finally:
        source_pool.close()
        target_pool.close()
        repo.db.close()

    logger.info(f"Registered {len(registered)} table(s) from schema {args.schema}")
    for table, tid in registered:
        print(f"{tid}\t{table}")
    return EXIT_OK


def cmd_reset(args: argparse.Namespace, config: EngineConfig) -> int:
    repo = _open_repository(config)
    try:
        count = repo.reset_tables(batch_nbr=args.batch, table=args.table)
    finally:
        repo.db.close()

    logger.info(f"Reset {count} table(s) to ready")
    return EXIT_OK


def cmd_run(args: argparse.Namespace, config: EngineConfig) -> int:
    """
    Reconcile ready tables and write the report.

    Returns:
        0 when every reconciled table is in sync (or none was selected),
        1 when any table has discrepancies or failed
    """
    config = config.with_options(engine_options(args))
    logger.info(
        f"Starting run (batch={args.batch}, table={args.table or '*'}, "
        f"check={args.check}, table_workers={config.table_workers})"
    )

    orchestrator = Orchestrator.from_config(config)
    try:
        outcome = orchestrator.run_batch(
            batch_nbr=args.batch, table=args.table, check=args.check
        )
    finally:
        orchestrator.close()

    report = generate_report(outcome.to_dict())
    write_report(report, args.output, args.format)

    if report["status"] == STATUS_FAIL:
        logger.warning(report["summary"])
        return EXIT_FAILED

    logger.info(report["summary"])
    return EXIT_OK


def cmd_report(args: argparse.Namespace, config: EngineConfig | None = None) -> int:
    logger.info(f"Loading report from {args.input}")

    with open(args.input) as f:
        report = json.load(f)

    if args.format in ("json", "csv") and not args.output:
        logger.error(f"Output file required for {args.format.upper()} format")
        return EXIT_FAILED

    write_report(report, args.output, args.format)
    return EXIT_OK


def run_command(args: argparse.Namespace, config_loader=EngineConfig.from_env) -> int:
    """Dispatch a parsed command; engine errors become exit code 1."""
    handlers = {
        "init": cmd_init,
        "discover": cmd_discover,
        "reset": cmd_reset,
        "run": cmd_run,
    }

    try:
        if args.command == "report":
            return cmd_report(args)
        return handlers[args.command](args, config_loader())
    except DataCompareError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_FAILED
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_FAILED
