"""Run command: back up every configured host, or stop a running backup."""

import argparse
import logging
from pathlib import Path

from .. import __logger__, __util__
from ..__logger__ import create_logger, new_run_log
from ..config import ConfigError, SecretStore
from ..core.orchestrator import BackupRunner
from ..core.strategy import build_strategy_table
from ..runlock import RunLock
from ..transaction import set_transaction_log
from .common import get_log_levels, load_cli_config

logger = logging.getLogger(__name__)


def execute_stop(args: argparse.Namespace) -> int:
    """Stop a running backup. Exit code 0 if one was stopped."""
    levels = get_log_levels(args)
    create_logger(levels.root, package_level=levels.package)
    config = load_cli_config(args)
    if config is None:
        return 1
    return 0 if RunLock(config.global_config.pid_file).stop() else 1


def execute_run(args: argparse.Namespace) -> int:
    """Execute a backup run.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 on completion, 1 on configuration errors or a held lock)
    """
    levels = get_log_levels(args)
    create_logger(levels.root, package_level=levels.package)

    config = load_cli_config(args)
    if config is None:
        return 1
    gc = config.global_config

    secrets_path = Path(args.secrets) if getattr(args, "secrets", None) else gc.secrets_file
    try:
        secrets = SecretStore.from_file(secrets_path)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    lock = RunLock(gc.pid_file)
    try:
        lock.acquire()
    except __util__.RunLockError as e:
        logger.error("%s", e)
        logger.error("To stop it, run: lan-backup --stop")
        return 1

    try:
        log_file = new_run_log(gc.logs_dir)
        create_logger(levels.root, log_file=log_file, package_level=levels.package)
        set_transaction_log(gc.history_file)

        runner = BackupRunner(
            config,
            secrets,
            build_strategy_table(config.strategies.values()),
            bandwidth_limit=getattr(args, "bandwidth_limit", None),
            sleep_between_hosts=getattr(args, "sleep_between_hosts", None),
        )
        summary = runner.run()

        __logger__.cons.print(summary.as_table())
        logger.info("Log file created at: %s", log_file)
        logger.info(
            "Bandwidth limit used: %s",
            "Unlimited" if runner.bandwidth_limit == 0 else f"{runner.bandwidth_limit} KB/s",
        )
        logger.info(
            "Sleep between hosts: %s",
            "None"
            if runner.sleep_between_hosts == 0
            else f"{runner.sleep_between_hosts} seconds",
        )
    finally:
        set_transaction_log(None)
        lock.release()

    return 0
