"""Command line parsing and dispatch."""

import argparse
import sys

from .. import __version__
from .common import add_verbosity_args, non_negative_int

DEFAULT_HISTORY_LIMIT = 20

STRATEGY_HELP = """\
Backup strategies (per host `backup_strategy`, per path override):
  mirror             exact copy, deletes destination files missing at the source
  safe               only adds or updates files, never deletes
  incremental        keeps replaced files in a timestamped .snapshots directory
  large-incremental  like incremental, tuned for large files (default)

Example host entry (config.toml):
  [[hosts]]
  name = "server1"
  ip = "192.168.1.10"
  user = "backup"
  password_key = "SERVER1_PASSWORD"
  backup_strategy = "incremental"
  max_snapshots = 7
  bandwidth_limit = 3072  # 3 MB/s
  paths = ["/home/backup/documents"]
"""


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lan-backup",
        description="Back up LAN hosts with rsync over ssh",
        epilog=STRATEGY_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file (TOML or YAML)",
    )
    parser.add_argument(
        "--secrets",
        metavar="FILE",
        help="Path to the secret store (overrides config)",
    )
    parser.add_argument(
        "--stop",
        action="store_true",
        help="Stop a running backup process",
    )
    parser.add_argument(
        "--history",
        nargs="?",
        const=DEFAULT_HISTORY_LIMIT,
        type=non_negative_int,
        metavar="N",
        help=f"Show the last N recorded backup outcomes and exit "
        f"(default {DEFAULT_HISTORY_LIMIT}, 0 for all)",
    )

    bw_group = parser.add_argument_group("Bandwidth")
    bw_group.add_argument(
        "--bwlimit",
        "--bandwidth-limit",
        dest="bandwidth_limit",
        type=non_negative_int,
        metavar="KBPS",
        help="Bandwidth limit in KB/s (overrides config, default 5120)",
    )
    bw_group.add_argument(
        "--unlimited",
        dest="bandwidth_limit",
        action="store_const",
        const=0,
        help="Run without bandwidth limits",
    )

    sleep_group = parser.add_argument_group("Pacing")
    sleep_group.add_argument(
        "--sleep",
        dest="sleep_between_hosts",
        type=non_negative_int,
        metavar="SECONDS",
        help="Sleep time between hosts in seconds (overrides config, default 30)",
    )
    sleep_group.add_argument(
        "--no-sleep",
        dest="sleep_between_hosts",
        action="store_const",
        const=0,
        help="Don't sleep between hosts",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the lan-backup CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # --help exits 0; usage errors count as configuration errors
        return 0 if e.code in (0, None) else 1

    if args.history is not None:
        from .history import execute_history

        return execute_history(args)

    from .run import execute_run, execute_stop

    if args.stop:
        return execute_stop(args)
    return execute_run(args)
