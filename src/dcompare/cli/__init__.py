"""
Command-line interface for dcompare.

Available commands:
- init: create repository tables
- discover: register a schema's tables
- reset: return tables to ready
- run: reconcile ready tables
- report: render a saved report
"""

import logging
import sys

from dcutils.logging import configure_from_env, setup_logging
from dcutils.metrics import MetricsPublisher
from dcutils.tracing import initialize_tracing, shutdown_tracing

from .commands import (
    cmd_discover,
    cmd_init,
    cmd_report,
    cmd_reset,
    cmd_run,
    run_command,
)
from .parser import create_parser

logger = logging.getLogger(__name__)


def configure_observability(args) -> None:
    """Logging, tracing and the optional metrics endpoint for this process."""
    if args.log_file or args.log_json:
        setup_logging(
            level=args.log_level or "INFO",
            log_file=args.log_file,
            json_format=args.log_json,
        )
    else:
        configure_from_env(level=args.log_level)

    initialize_tracing(otlp_endpoint=args.otlp_endpoint)

    if args.metrics_port:
        MetricsPublisher(port=args.metrics_port).start()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the dcompare CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_observability(args)
    try:
        code = run_command(args)
    finally:
        shutdown_tracing()
    sys.exit(code)


__all__ = [
    "main",
    "create_parser",
    "configure_observability",
    "run_command",
    "cmd_init",
    "cmd_discover",
    "cmd_reset",
    "cmd_run",
    "cmd_report",
]


if __name__ == "__main__":
    main()
