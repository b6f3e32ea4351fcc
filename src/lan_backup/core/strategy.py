"""Backup strategies and their resolution for a path.

A strategy is a named, immutable parameter set for one rsync run. The table
of known strategies is built once per run and handed to select_strategy;
there is no module level mutable state.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ..config.schema import DEFAULT_STRATEGY, StrategyConfig

logger = logging.getLogger(__name__)

SAFE_STRATEGY = "safe"


class DeletionPolicy(Enum):
    NONE = "none"
    DELETE_EXTRA = "delete-extra"


class SnapshotPolicy(Enum):
    NONE = "none"
    VERSIONED = "versioned"


@dataclass(frozen=True)
class ResolvedStrategy:
    """Parameters controlling one synchronization run.

    Attributes:
        name: Strategy name as configured
        deletion_policy: Whether extra destination files are deleted
        snapshot_policy: Whether overwritten files are kept in a snapshot
        block_size: rsync --block-size value, None for rsync's default
        timeout: rsync I/O timeout in seconds
        extra_flags: Additional rsync flags
    """

    name: str
    deletion_policy: DeletionPolicy
    snapshot_policy: SnapshotPolicy
    block_size: Optional[str]
    timeout: int
    extra_flags: tuple[str, ...] = ()

    @property
    def versioned(self) -> bool:
        return self.snapshot_policy is SnapshotPolicy.VERSIONED


_PRESERVE = ("--archive", "--hard-links", "--acls", "--xattrs")

BUILTIN_STRATEGIES: tuple[ResolvedStrategy, ...] = (
    # destination becomes an exact replica
    ResolvedStrategy(
        "mirror",
        DeletionPolicy.DELETE_EXTRA,
        SnapshotPolicy.NONE,
        block_size=None,
        timeout=120,
        extra_flags=_PRESERVE + ("--stats", "--no-compress"),
    ),
    # add and update only
    ResolvedStrategy(
        SAFE_STRATEGY,
        DeletionPolicy.NONE,
        SnapshotPolicy.NONE,
        block_size="128K",
        timeout=120,
        extra_flags=_PRESERVE + ("--update", "--stats", "--no-compress"),
    ),
    ResolvedStrategy(
        "incremental",
        DeletionPolicy.NONE,
        SnapshotPolicy.VERSIONED,
        block_size="128K",
        timeout=120,
        extra_flags=_PRESERVE + ("--stats", "--no-compress"),
    ),
    ResolvedStrategy(
        "large-incremental",
        DeletionPolicy.NONE,
        SnapshotPolicy.VERSIONED,
        block_size="128K",
        timeout=180,
        extra_flags=("--archive", "--whole-file")
        + _PRESERVE[1:]
        + ("--stats", "--no-compress"),
    ),
)

StrategyTable = Mapping[str, ResolvedStrategy]


def _from_config(config: StrategyConfig) -> ResolvedStrategy:
    return ResolvedStrategy(
        name=config.name,
        deletion_policy=DeletionPolicy(config.deletion),
        snapshot_policy=SnapshotPolicy(config.snapshot),
        block_size=config.block_size,
        timeout=config.timeout,
        extra_flags=tuple(config.extra_flags),
    )


def build_strategy_table(
    custom: Iterable[StrategyConfig] = (),
) -> StrategyTable:
    """Build the read-only strategy table.

    Custom strategies are added to, or replace, the builtin ones. The safe
    strategy is always present since it is the fallback for everything else.
    """
    table = {s.name: s for s in BUILTIN_STRATEGIES}
    for config in custom:
        table[config.name] = _from_config(config)
    return MappingProxyType(table)


def builtin_strategy_names() -> set[str]:
    return {s.name for s in BUILTIN_STRATEGIES}


def effective_strategy_name(
    path_override: Optional[str],
    host_default: Optional[str],
    system_default: str = DEFAULT_STRATEGY,
) -> str:
    """Path override, else host default, else system default."""
    return path_override or host_default or system_default


def select_strategy(
    table: StrategyTable,
    path_override: Optional[str],
    host_default: Optional[str],
    system_default: str = DEFAULT_STRATEGY,
) -> tuple[ResolvedStrategy, list[str]]:
    """Resolve the strategy for a path.

    Returns:
        Tuple of (strategy, warnings). An unknown name yields the safe
        strategy and a warning, never an error.
    """
    name = effective_strategy_name(path_override, host_default, system_default)
    strategy = table.get(name)
    if strategy is not None:
        return strategy, []

    message = f"Unknown backup strategy: {name}, falling back to {SAFE_STRATEGY} strategy"
    logger.warning(message)
    return safe_strategy(table), [message]


def safe_strategy(table: StrategyTable) -> ResolvedStrategy:
    return table[SAFE_STRATEGY]
