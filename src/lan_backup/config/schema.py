"""Configuration schema definitions using dataclasses.

Defines the structure of the host configuration with sensible defaults.
Host and path records are frozen: they are loaded once per run and never
change while the run is in progress.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .. import encode_path_for_dir

DEFAULT_STRATEGY = "large-incremental"
DEFAULT_MAX_SNAPSHOTS = 7
DEFAULT_BANDWIDTH_LIMIT = 5120  # KB/s, 0 = unlimited
DEFAULT_SLEEP_BETWEEN_HOSTS = 30  # seconds


@dataclass(frozen=True)
class PathRecord:
    """A remote path to back up.

    Attributes:
        remote_path: Absolute path on the remote host
        strategy_override: Strategy name overriding the host default
        special_handler_params: Parameters of a non-sync handler (e.g. a
            database dump). When set, strategy and snapshots are bypassed.
    """

    remote_path: str
    strategy_override: Optional[str] = None
    special_handler_params: Optional[dict[str, Any]] = None

    @property
    def is_special(self) -> bool:
        return self.special_handler_params is not None


@dataclass(frozen=True)
class HostRecord:
    """A LAN host and the paths to back up from it.

    Attributes:
        name: Host name, also the directory name below the backup root
        symbolic_address: DNS name tried first when connecting
        numeric_address: IP address used as fallback
        user: Remote login user
        credential_ref: Secret-store key or literal password
        credential_lookup: Force credential_ref to be treated as a key
        default_strategy: Host level strategy name
        bandwidth_limit: Host level bandwidth cap in KB/s (overrides the run)
        max_snapshots: Host level snapshot retention count
        exclude_patterns: rsync exclusion patterns applied to every path
        paths: Paths to back up
    """

    name: str
    symbolic_address: str
    numeric_address: str
    user: str
    credential_ref: str = ""
    credential_lookup: bool = False
    default_strategy: Optional[str] = None
    bandwidth_limit: Optional[int] = None
    max_snapshots: Optional[int] = None
    exclude_patterns: tuple[str, ...] = ()
    paths: tuple[PathRecord, ...] = ()


@dataclass(frozen=True)
class StrategyConfig:
    """User-defined strategy parameters from a [strategies.<name>] table."""

    name: str
    deletion: str = "none"
    snapshot: str = "none"
    block_size: Optional[str] = None
    timeout: int = 120
    extra_flags: tuple[str, ...] = ()


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        backup_root: Directory receiving <host>/<path> destinations
        logs_dir: Directory for per-run log files
        pid_file: Run lock file holding the active process id
        secrets_file: dotenv style secret store
        history_file: JSON lines outcome history (None to disable)
        bandwidth_limit: Default bandwidth cap in KB/s (0 = unlimited)
        sleep_between_hosts: Delay between hosts in seconds
        default_strategy: Strategy used when hosts and paths name none
        max_snapshots: Default snapshot retention count
        ssh_connect_timeout: ssh ConnectTimeout in seconds
    """

    backup_root: Path = field(default_factory=lambda: Path("data"))
    logs_dir: Path = field(default_factory=lambda: Path("logs"))
    pid_file: Path = field(default_factory=lambda: Path("lan_backup.pid"))
    secrets_file: Path = field(default_factory=lambda: Path(".env"))
    history_file: Optional[Path] = None
    bandwidth_limit: int = DEFAULT_BANDWIDTH_LIMIT
    sleep_between_hosts: int = DEFAULT_SLEEP_BETWEEN_HOSTS
    default_strategy: str = DEFAULT_STRATEGY
    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS
    ssh_connect_timeout: int = 10


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        global_config: Global settings that apply to all hosts
        hosts: Host records in processing order
        strategies: User-defined strategies keyed by name
    """

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    hosts: list[HostRecord] = field(default_factory=list)
    strategies: dict[str, StrategyConfig] = field(default_factory=dict)

    def get_effective_max_snapshots(self, host: HostRecord) -> int:
        """Host-specific retention overrides the global retention."""
        if host.max_snapshots is not None:
            return host.max_snapshots
        return self.global_config.max_snapshots

    def destination_for(self, host: HostRecord, path: PathRecord) -> Path:
        """Local destination directory for a host path."""
        return self.global_config.backup_root / host.name / encode_path_for_dir(path.remote_path)
