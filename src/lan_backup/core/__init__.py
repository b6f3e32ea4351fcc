"""Core backup orchestration for lan-backup.

Connectivity and capability probing, strategy selection, snapshots,
rsync execution with a single fallback, and outcome reporting.
"""

from .orchestrator import AttemptState, BackupRunner, PathBackup
from .report import BackupOutcome, RunSummary
from .strategy import ResolvedStrategy, build_strategy_table, select_strategy

__all__ = [
    "AttemptState",
    "BackupRunner",
    "PathBackup",
    "BackupOutcome",
    "RunSummary",
    "ResolvedStrategy",
    "build_strategy_table",
    "select_strategy",
]
