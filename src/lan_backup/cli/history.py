"""History command: show recent backup outcomes."""

import argparse
import logging

from rich.markup import escape
from rich.table import Table

from .. import __logger__, __util__
from ..__logger__ import create_logger
from ..transaction import get_transaction_stats, read_transaction_log
from .common import get_log_levels, load_cli_config

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "success": "green",
    "success-with-warnings": "yellow",
    "failed": "red",
}


def history_table(records: list[dict]) -> Table:
    """Render outcome history records, most recent first."""
    table = Table(title="Backup History")
    table.add_column("Time")
    table.add_column("Host")
    table.add_column("Path")
    table.add_column("Strategy")
    table.add_column("Result")
    table.add_column("Size", justify="right")
    table.add_column("Duration", justify="right")

    for record in records:
        status = record.get("status", "unknown")
        color = STATUS_COLORS.get(status, "white")
        result = status
        if record.get("details", {}).get("via_fallback"):
            result += " (fallback)"
        if record.get("error"):
            result += f": {record['error']}"
        size = record.get("size_bytes")
        duration = record.get("duration_seconds")
        table.add_row(
            record.get("timestamp", ""),
            record.get("host", ""),
            record.get("source", ""),
            record.get("strategy", ""),
            f"[{color}]{escape(result)}[/{color}]",
            __util__.human_size(size) if size is not None else "",
            f"{duration:.1f}s" if duration is not None else "",
        )
    return table


def execute_history(args: argparse.Namespace) -> int:
    """Print the most recent backup outcomes.

    Args:
        args: Parsed command line arguments; args.history is the number of
            records to show, 0 for all of them

    Returns:
        Exit code (1 when the configuration cannot be loaded or history is
        disabled)
    """
    levels = get_log_levels(args)
    create_logger(levels.root, package_level=levels.package)

    config = load_cli_config(args)
    if config is None:
        return 1

    history_file = config.global_config.history_file
    if history_file is None:
        logger.error("Outcome history is disabled (history_file = false)")
        return 1
    if not history_file.exists():
        logger.info("No backups recorded yet in %s", history_file)
        return 0

    records = read_transaction_log(history_file, limit=args.history or None)
    stats = get_transaction_stats(history_file)

    __logger__.cons.print(history_table(records))
    counts = ", ".join(
        f"{count} {status}" for status, count in sorted(stats["by_status"].items())
    )
    __logger__.cons.print(
        f"Showing {len(records)} of {stats['total']} recorded outcomes ({counts})"
    )
    return 0
