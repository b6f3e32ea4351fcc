"""Shared CLI utilities and argument parsers."""

import argparse
import logging
from typing import NamedTuple

from ..config import Config, ConfigError, find_config_file, load_config
from ..core.strategy import builtin_strategy_names

logger = logging.getLogger(__name__)


class LogLevels(NamedTuple):
    """Console log levels for third-party libraries and for lan-backup itself."""

    root: str
    package: str


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add the -v/-q/--debug output switches."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show lan-backup's debug messages: connection checks, rsync command "
        "lines and transfer output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only show warnings and errors",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Debug messages from every library as well (lock handling, "
        "config parsing)",
    )


def non_negative_int(value: str) -> int:
    """argparse type for KB/s and second values."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a whole number, got {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def get_log_levels(args: argparse.Namespace) -> LogLevels:
    """Map the output switches to log levels.

    --debug wins over --quiet, which wins over --verbose. Only --debug
    lowers the level of loggers outside the lan_backup package.
    """
    if getattr(args, "debug", False):
        return LogLevels("DEBUG", "DEBUG")
    if getattr(args, "quiet", False):
        return LogLevels("WARNING", "WARNING")
    if getattr(args, "verbose", False):
        return LogLevels("INFO", "DEBUG")
    return LogLevels("INFO", "INFO")


def load_cli_config(args: argparse.Namespace) -> Config | None:
    """Find and load the configuration, logging any problem."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            logger.error("No configuration file found.")
            logger.error("Searched ~/.config/lan-backup and /etc/lan-backup")
            return None

        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path, builtin_strategy_names())
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    for warning in warnings:
        logger.warning("Config: %s", warning)
    return config
