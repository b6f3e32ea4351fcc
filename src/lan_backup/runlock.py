"""Single-run lock based on a pid file.

The pid file records the process running the backup. A pid file whose
process is gone is stale and gets replaced. Reading and writing the pid
file happens under a FileLock so two starting processes cannot both win.
"""

import errno
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from filelock import FileLock

from .__util__ import RunLockError

logger = logging.getLogger(__name__)


def pid_alive(pid: int) -> bool:
    """Return True if a process with pid exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError as e:
        # EPERM: the process exists but belongs to someone else
        return e.errno == errno.EPERM
    return True


class RunLock:
    """Exclusive lock for one backup run.

    Usable as a context manager: the pid file is written on enter and
    removed on exit.
    """

    def __init__(self, pid_file: Path) -> None:
        self.pid_file = Path(pid_file)
        self._guard = FileLock(str(self.pid_file) + ".lock")

    def read_pid(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def active_pid(self) -> Optional[int]:
        """Return the pid of the running backup, or None."""
        pid = self.read_pid()
        if pid is not None and pid_alive(pid):
            return pid
        return None

    def acquire(self) -> None:
        """Record this process as the active run.

        Raises:
            RunLockError: If another live process holds the lock
        """
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        with self._guard:
            pid = self.read_pid()
            if pid is not None and pid != os.getpid():
                if pid_alive(pid):
                    raise RunLockError(f"Backup process is already running with PID: {pid}")
                logger.info("Removing stale pid file for PID %d", pid)
            self.pid_file.write_text(f"{os.getpid()}\n")

    def release(self) -> None:
        with self._guard:
            if self.read_pid() == os.getpid():
                self.pid_file.unlink(missing_ok=True)

    def stop(self) -> bool:
        """Terminate the recorded run and clear the lock.

        Returns:
            True if a running process was signalled, False if none was found
            (a stale pid file is removed either way)
        """
        with self._guard:
            pid = self.read_pid()
            if pid is None:
                logger.info("No backup process found")
                return False
            if not pid_alive(pid):
                logger.info("No running backup process found (stale PID file removed)")
                self.pid_file.unlink(missing_ok=True)
                return False

            logger.info("Stopping backup process with PID: %d", pid)
            try:
                os.kill(pid, signal.SIGTERM)
            except OSError as e:
                logger.error("Could not stop PID %d: %s", pid, e)
                return False
            self.pid_file.unlink(missing_ok=True)
            return True

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
