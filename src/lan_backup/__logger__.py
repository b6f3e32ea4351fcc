# pyright: standard

"""lan-backup: lan_backup/__logger__.py
A common logger writing to a rich console and, optionally, a per-run log file.
"""

import logging
import os
import random
import string
import time
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console()
rich_handler = RichHandler(console=cons, show_path=False)
# Create a logger directly
logger = logging.Logger("lan-backup", logging.INFO)

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LATEST_LOG_NAME = "latest_backup.log"
PACKAGE_LOGGER = "lan_backup"


def create_logger(
    level: str | int = "INFO",
    log_file: Path | None = None,
    package_level: str | int | None = None,
) -> None:
    """Helper function to setup logging for the console and an optional log file.

    level applies to the root logger; package_level, when given, overrides it
    for lan-backup's own loggers.
    """
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console()
    rich_handler = RichHandler(console=cons, show_path=False)
    handlers: list[logging.Handler] = [rich_handler]

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(file_handler)

    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(package_level or level)
    for handler in handlers:
        logger.addHandler(handler)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=handlers,
        force=True,
    )
    logging.getLogger(PACKAGE_LOGGER).setLevel(package_level or level)


def new_run_log(logs_dir: Path) -> Path:
    """Create the log file path for a new run and point the latest link at it.

    The file is named backup_<timestamp>_<id>.log so that concurrent log
    directories sort by start time.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_id = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    log_file = logs_dir / f"backup_{time.strftime('%Y%m%d_%H%M%S')}_{run_id}.log"
    log_file.touch()

    latest = logs_dir / LATEST_LOG_NAME
    if latest.is_symlink() or latest.exists():
        latest.unlink()
    try:
        os.symlink(log_file, latest)
    except OSError as e:
        logger.warning("Could not update %s: %s", latest, e)
    return log_file
