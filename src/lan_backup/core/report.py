"""Backup outcomes: markers, statistics and the end-of-run summary."""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from rich.table import Table

from .. import __util__
from ..transaction import log_transaction
from .executor import SyncStatus
from .snapshots import SnapshotManager

logger = logging.getLogger(__name__)

SUCCESS_MARKER = ".backup_success"
FAILURE_MARKER = ".backup_failed"
MARKERS = (SUCCESS_MARKER, FAILURE_MARKER)


@dataclass(frozen=True)
class BackupOutcome:
    """Final result for one host path in one run.

    Attributes:
        status: Final sync status
        file_count: Files in the destination after the run
        total_bytes: Size of the destination after the run
        error_code: rsync exit status of the last failing attempt
        strategy: Strategy of the attempt that produced this outcome
        attempts: Number of sync attempts made (1 or 2)
        via_fallback: True if the fallback attempt produced this outcome
        warnings: Warnings collected while processing the path
    """

    status: SyncStatus
    file_count: int = 0
    total_bytes: int = 0
    error_code: Optional[int] = None
    strategy: str = ""
    attempts: int = 1
    via_fallback: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        label = self.status.value
        if self.status.ok and self.via_fallback:
            label += " (fallback)"
        return label


@dataclass(frozen=True)
class DirStats:
    file_count: int
    total_bytes: int


def collect_stats(path: Path) -> DirStats:
    """Count regular files and their total size below path."""
    file_count = 0
    total_bytes = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            if name in MARKERS:
                continue
            try:
                st = os.lstat(os.path.join(root, name))
            except OSError:
                continue
            file_count += 1
            total_bytes += st.st_size
    return DirStats(file_count, total_bytes)


def write_marker(destination: Path, success: bool, error_code: Optional[int] = None) -> Path:
    """Write the success or failure marker, removing the other one."""
    destination.mkdir(parents=True, exist_ok=True)
    marker = destination / (SUCCESS_MARKER if success else FAILURE_MARKER)
    stale = destination / (FAILURE_MARKER if success else SUCCESS_MARKER)

    content = time.strftime("%a %b %d %H:%M:%S %Z %Y")
    if error_code is not None:
        content += f"\nexit code: {error_code}"
    marker.write_text(content + "\n")
    stale.unlink(missing_ok=True)
    return marker


def report_outcome(
    host: str,
    remote_path: str,
    destination: Path,
    outcome_status: SyncStatus,
    strategy: str,
    attempts: int,
    via_fallback: bool,
    error_code: Optional[int] = None,
    warnings: tuple[str, ...] = (),
    snapshots: Optional[SnapshotManager] = None,
    duration_seconds: Optional[float] = None,
) -> BackupOutcome:
    """Persist the marker and history record for a path and log statistics."""
    write_marker(destination, outcome_status.ok, None if outcome_status.ok else error_code)

    stats = collect_stats(destination) if destination.is_dir() else DirStats(0, 0)
    outcome = BackupOutcome(
        status=outcome_status,
        file_count=stats.file_count,
        total_bytes=stats.total_bytes,
        error_code=error_code,
        strategy=strategy,
        attempts=attempts,
        via_fallback=via_fallback,
        warnings=warnings,
    )

    if outcome_status.ok:
        how = "safe fallback strategy" if via_fallback else f"{strategy} strategy"
        logger.info("Backup successful with %s.", how)
        logger.info("Backup Statistics:")
        logger.info("  - Total Files: %d", stats.file_count)
        logger.info("  - Total Size: %s", __util__.human_size(stats.total_bytes))
        latest_name = _log_snapshot_stats(snapshots)
    else:
        logger.error(
            "Backup of %s:%s failed after %d attempt(s) (exit code %s).",
            host,
            remote_path,
            attempts,
            error_code,
        )
        latest_name = None

    log_transaction(
        action="backup",
        status=outcome.status.value,
        host=host,
        source=remote_path,
        destination=str(destination),
        strategy=strategy,
        snapshot=latest_name,
        size_bytes=stats.total_bytes,
        duration_seconds=duration_seconds,
        error=f"exit code {error_code}" if not outcome_status.ok else None,
        details={
            "attempts": attempts,
            "via_fallback": via_fallback,
            "file_count": stats.file_count,
            "warnings": list(warnings),
        },
    )
    return outcome


def _log_snapshot_stats(snapshots: Optional[SnapshotManager]) -> Optional[str]:
    if snapshots is None:
        return None
    latest = snapshots.latest()
    if latest is None:
        return None
    snap_stats = collect_stats(latest.path)
    logger.info("  - Latest Snapshot: %s", latest.name)
    logger.info("  - Snapshot Size: %s", __util__.human_size(snap_stats.total_bytes))
    logger.info("  - Changed Files: %d", snap_stats.file_count)
    return latest.name


@dataclass
class PathReport:
    """One line of the run summary."""

    host: str
    path: str
    outcome: Optional[BackupOutcome] = None
    skipped_reason: Optional[str] = None


@dataclass
class RunSummary:
    """Everything that happened during one run."""

    started_at: float = field(default_factory=time.time)
    paths: list[PathReport] = field(default_factory=list)
    skipped_hosts: dict[str, str] = field(default_factory=dict)

    def add(self, report: PathReport) -> None:
        self.paths.append(report)

    def count(self, status: SyncStatus) -> int:
        return sum(1 for p in self.paths if p.outcome and p.outcome.status is status)

    @property
    def skipped_paths(self) -> int:
        return sum(1 for p in self.paths if p.outcome is None)

    @property
    def fallbacks(self) -> int:
        return sum(1 for p in self.paths if p.outcome and p.outcome.via_fallback)

    def as_table(self) -> Table:
        table = Table(title="Backup Summary")
        table.add_column("Host")
        table.add_column("Path")
        table.add_column("Result")
        table.add_column("Files", justify="right")
        table.add_column("Size", justify="right")

        for name, reason in self.skipped_hosts.items():
            table.add_row(name, "*", f"[yellow]host skipped: {reason}[/yellow]", "", "")
        for p in self.paths:
            if p.outcome is None:
                table.add_row(p.host, p.path, f"[yellow]skipped: {p.skipped_reason}[/yellow]", "", "")
                continue
            color = "green" if p.outcome.status is SyncStatus.SUCCESS else (
                "yellow" if p.outcome.status.ok else "red"
            )
            table.add_row(
                p.host,
                p.path,
                f"[{color}]{p.outcome.label}[/{color}]",
                str(p.outcome.file_count),
                __util__.human_size(p.outcome.total_bytes),
            )
        return table
