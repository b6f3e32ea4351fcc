"""Snapshot directories for versioned strategies.

Each versioned run gets a directory below <destination parent>/.snapshots
named by a sortable timestamp. rsync moves files it would overwrite or
delete into that directory (--backup-dir). Retention keeps the newest
max_snapshots directories, ordered by the timestamp in their name.
"""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SNAPSHOT_DIR_NAME = ".snapshots"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


@dataclass(frozen=True, order=True)
class Snapshot:
    """One snapshot directory; ordering follows its timestamp."""

    time_obj: time.struct_time
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


def parse_snapshot_name(name: str) -> Optional[time.struct_time]:
    """Return the timestamp encoded in name, or None if it is not a snapshot."""
    try:
        return time.strptime(name, TIMESTAMP_FORMAT)
    except ValueError:
        return None


class SnapshotManager:
    """Creates and prunes the snapshots of one destination path."""

    def __init__(self, destination: Path, max_snapshots: int) -> None:
        self.destination = destination
        self.root = destination.parent / SNAPSHOT_DIR_NAME
        self.max_snapshots = max_snapshots

    def __repr__(self) -> str:
        return f"SnapshotManager({self.root}, max={self.max_snapshots})"

    def list_snapshots(self) -> list[Snapshot]:
        """Return the snapshots, newest first.

        A missing root means no snapshots. Entries whose name is not a
        timestamp are left alone.
        """
        if not self.root.is_dir():
            return []

        snapshots = []
        for entry in self.root.iterdir():
            if not entry.is_dir():
                continue
            time_obj = parse_snapshot_name(entry.name)
            if time_obj is None:
                logger.debug("Ignoring non-snapshot entry %s", entry)
                continue
            snapshots.append(Snapshot(time_obj, entry))
        return sorted(snapshots, reverse=True)

    def latest(self) -> Optional[Snapshot]:
        snapshots = self.list_snapshots()
        return snapshots[0] if snapshots else None

    def create(self, now: Optional[time.struct_time] = None) -> Path:
        """Create the snapshot directory for this run and return its path."""
        name = time.strftime(TIMESTAMP_FORMAT, now or time.localtime())
        path = self.root / name
        path.mkdir(parents=True, exist_ok=True)
        logger.info("Using incremental backup with snapshots in: %s", self.root)
        logger.debug("Snapshot directory for this run: %s", path)
        return path

    def discard_if_empty(self, path: Path) -> bool:
        """Remove a snapshot directory nothing was moved into.

        Returns:
            True if the directory was removed
        """
        try:
            if any(path.iterdir()):
                return False
            path.rmdir()
        except OSError as e:
            logger.warning("Could not remove unused snapshot %s: %s", path, e)
            return False
        logger.debug("Removed unused snapshot directory %s", path)
        return True

    def prune(self) -> list[Path]:
        """Delete snapshots beyond max_snapshots, oldest first.

        Returns:
            Paths of the removed snapshot directories
        """
        snapshots = self.list_snapshots()
        if len(snapshots) <= self.max_snapshots:
            return []

        logger.info(
            "Cleaning up old snapshots (keeping %d most recent)...", self.max_snapshots
        )
        removed = []
        for snapshot in snapshots[max(self.max_snapshots, 0) :]:
            logger.debug("Removing snapshot %s", snapshot.path)
            shutil.rmtree(snapshot.path)
            removed.append(snapshot.path)
        return removed
