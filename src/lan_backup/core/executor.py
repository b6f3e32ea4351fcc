"""Run one rsync invocation and classify its exit status."""

import logging
import subprocess
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .command import SyncCommand

logger = logging.getLogger(__name__)

RSYNC_OK = 0
RSYNC_VANISHED = 24  # source files vanished before they could be transferred
EXIT_NOT_FOUND = 127


class SyncStatus(Enum):
    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success-with-warnings"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not SyncStatus.FAILED


def classify_exit_code(returncode: int) -> SyncStatus:
    """Map an rsync exit status to a SyncStatus.

    Vanished files (24) are routine with live data such as databases and
    count as a successful run.
    """
    if returncode == RSYNC_OK:
        return SyncStatus.SUCCESS
    if returncode == RSYNC_VANISHED:
        return SyncStatus.SUCCESS_WITH_WARNINGS
    return SyncStatus.FAILED


@dataclass
class SyncResult:
    """Outcome of a single rsync run."""

    status: SyncStatus
    returncode: int
    duration_seconds: float = 0.0
    output_tail: list[str] = field(default_factory=list)


def run_sync(
    command: SyncCommand,
    env: Optional[dict[str, str]] = None,
    password: Optional[str] = None,
    tail_lines: int = 20,
) -> SyncResult:
    """Execute command, streaming rsync output to the log.

    Args:
        command: Fully built rsync command
        env: Environment for rsync (carries SSHPASS for the remote shell)
        password: sudo password, used with password elevation
        tail_lines: Number of output lines kept for error reporting
    """
    logger.debug("Running: %s", command.describe())
    args = command.render(password)
    tail: deque[str] = deque(maxlen=tail_lines)
    start = time.monotonic()

    try:
        with subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            env=env,
        ) as proc:
            assert proc.stdout is not None
            for line in proc.stdout:
                line = line.rstrip()
                if line:
                    tail.append(line)
                    logger.debug("rsync: %s", line)
            returncode = proc.wait()
    except FileNotFoundError as e:
        logger.error("Cannot run rsync: %s", e)
        returncode = EXIT_NOT_FOUND
        tail.append(str(e))

    result = SyncResult(
        status=classify_exit_code(returncode),
        returncode=returncode,
        duration_seconds=round(time.monotonic() - start, 3),
        output_tail=list(tail),
    )

    if result.status is SyncStatus.SUCCESS_WITH_WARNINGS:
        logger.warning("rsync reported vanished files during transfer (code 24)")
        logger.info("This is normal for active databases; backup considered successful")
    elif result.status is SyncStatus.FAILED:
        logger.error("rsync failed with exit code %d", returncode)
        for line in result.output_tail[-5:]:
            logger.error("  %s", line)
    return result
