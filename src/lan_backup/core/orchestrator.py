"""Backup orchestration: hosts, paths, and the attempt/fallback state machine.

Hosts are processed one after another, and so are the paths of a host.
Each path goes through PathBackup, the only place where the primary
attempt and its single fallback are sequenced:

    START -> PROBING -> EXECUTING -> DONE
                            |
                            +-> FALLING_BACK -> DONE
"""

import functools
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .. import __util__
from ..config import Config, HostRecord, PathRecord, SecretStore, resolve_credential
from ..sshutil.remote import RemoteShell
from .capability import Capabilities, Elevation, probe_capabilities
from .command import SyncCommand, build_sync_command
from .connectivity import ConnectionTarget, resolve_connection
from .executor import SyncResult, run_sync
from .handlers import HandlerError, run_handler
from .report import PathReport, RunSummary, report_outcome
from .snapshots import SnapshotManager
from .strategy import (
    ResolvedStrategy,
    StrategyTable,
    effective_strategy_name,
    safe_strategy,
    select_strategy,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2

SyncRunner = Callable[[SyncCommand, Optional[dict], Optional[str]], SyncResult]


class AttemptState(Enum):
    START = "start"
    PROBING = "probing"
    EXECUTING = "executing"
    FALLING_BACK = "falling-back"
    DONE = "done"


class PathBackup:
    """Backs up one path of one host.

    Args:
        runner: The BackupRunner providing configuration and collaborators
        host: Host record
        path: Path record
        credential: Resolved password of the host user
    """

    def __init__(
        self,
        runner: "BackupRunner",
        host: HostRecord,
        path: PathRecord,
        credential: str,
    ) -> None:
        self.runner = runner
        self.host = host
        self.path = path
        self.credential = credential
        self.destination = runner.config.destination_for(host, path)

        self.state = AttemptState.START
        self.target: Optional[ConnectionTarget] = None
        self.shell: Optional[RemoteShell] = None
        self.capabilities = Capabilities()
        self.strategy: Optional[ResolvedStrategy] = None
        self.snapshots: Optional[SnapshotManager] = None
        self.snapshot_dir: Optional[Path] = None
        self.attempts = 0
        self.last_result: Optional[SyncResult] = None
        self.warnings: list[str] = []
        self.report = PathReport(host=host.name, path=path.remote_path)
        self._started = time.monotonic()

    def run(self) -> PathReport:
        """Drive the state machine until DONE."""
        transitions = {
            AttemptState.START: self._start,
            AttemptState.PROBING: self._probe,
            AttemptState.EXECUTING: self._execute,
            AttemptState.FALLING_BACK: self._fall_back,
        }
        while self.state is not AttemptState.DONE:
            logger.debug("%s:%s state %s", self.host.name, self.path.remote_path, self.state.value)
            self.state = transitions[self.state]()
        return self.report

    def _start(self) -> AttemptState:
        logger.info(
            "Processing path: %s (Strategy: %s)",
            self.path.remote_path,
            effective_strategy_name(
                self.path.strategy_override,
                self.host.default_strategy,
                self.runner.config.global_config.default_strategy,
            ),
        )
        self.destination.mkdir(parents=True, exist_ok=True)
        logger.info("Destination path: %s", self.destination)
        return AttemptState.PROBING

    def _probe(self) -> AttemptState:
        make_shell = self.runner.shell_factory(self.host, self.credential)
        self.target = resolve_connection(
            self.host.symbolic_address,
            self.host.numeric_address,
            self.host.user,
            self.credential,
            self.path.remote_path,
            make_shell,
        )
        if self.target.degraded:
            self.warnings.append(
                f"Connectivity degraded, using {self.target.address_used} without a successful probe"
            )
        self.shell = make_shell(self.target.address_used)

        try:
            self.capabilities = probe_capabilities(self.shell, self.path.remote_path)
        except __util__.ToolUnavailable as e:
            logger.error("%s. Skipping this path.", e)
            self.report.skipped_reason = str(e)
            return AttemptState.DONE
        self.warnings.extend(self.capabilities.warnings)

        if self.path.is_special:
            return AttemptState.EXECUTING

        gc = self.runner.config.global_config
        self.strategy, strategy_warnings = select_strategy(
            self.runner.strategies,
            self.path.strategy_override,
            self.host.default_strategy,
            gc.default_strategy,
        )
        self.warnings.extend(strategy_warnings)
        logger.info("Using backup strategy: %s", self.strategy.name)

        if self.strategy.versioned:
            self.snapshots = SnapshotManager(
                self.destination, self.runner.config.get_effective_max_snapshots(self.host)
            )
            self.snapshot_dir = self.snapshots.create()
            try:
                self.snapshots.prune()
            except OSError as e:
                message = f"Could not prune snapshots in {self.snapshots.root}: {e}"
                logger.warning(message)
                self.warnings.append(message)
        return AttemptState.EXECUTING

    def _execute(self) -> AttemptState:
        if self.path.is_special:
            return self._execute_handler()

        assert self.strategy is not None
        result = self._attempt(self.strategy, self.snapshot_dir)
        if result.status.ok:
            self._finish(result, self.strategy, via_fallback=False)
            return AttemptState.DONE

        logger.error(
            "Backup failed with %s strategy (exit code %d).",
            self.strategy.name,
            result.returncode,
        )
        return AttemptState.FALLING_BACK

    def _fall_back(self) -> AttemptState:
        safe = safe_strategy(self.runner.strategies)
        logger.warning("Trying with %s strategy as fallback...", safe.name)
        if self.capabilities.elevation.elevated:
            logger.info("Using %s strategy with sudo as fallback...", safe.name)

        result = self._attempt(safe, None)
        if not result.status.ok:
            logger.error(
                "Backup failed with %s fallback strategy (exit code %d).",
                safe.name,
                result.returncode,
            )
        if self.snapshots is not None and self.snapshot_dir is not None:
            if self.snapshots.discard_if_empty(self.snapshot_dir):
                self.snapshot_dir = None
        self._finish(result, safe, via_fallback=True)
        return AttemptState.DONE

    def _attempt(
        self, strategy: ResolvedStrategy, snapshot_dir: Optional[Path]
    ) -> SyncResult:
        assert self.target is not None and self.shell is not None
        if self.attempts >= MAX_ATTEMPTS:
            raise __util__.AbortError(
                f"Refusing attempt {self.attempts + 1} for {self.path.remote_path}"
            )
        self.attempts += 1

        bandwidth = self.runner.bandwidth_for(self.host)
        if bandwidth > 0:
            logger.info("Applying bandwidth limit: %d KB/s", bandwidth)
        if self.host.exclude_patterns:
            logger.info("Using exclusion patterns: %s", ", ".join(self.host.exclude_patterns))

        command = build_sync_command(
            self.target,
            self.destination,
            strategy,
            exclude_patterns=self.host.exclude_patterns,
            elevation=self.capabilities.elevation,
            bandwidth_limit=bandwidth,
            snapshot_dir=snapshot_dir,
            rsh=self.shell.rsh(),
        )
        password = (
            self.credential if self.capabilities.elevation is Elevation.PASSWORD else None
        )
        self.last_result = self.runner.sync_runner(command, self.shell.env(), password)
        return self.last_result

    def _execute_handler(self) -> AttemptState:
        assert self.shell is not None and self.path.special_handler_params is not None
        params = self.path.special_handler_params
        try:
            result = run_handler(self.shell, params, self.destination)
        except HandlerError as e:
            logger.warning("%s. Skipping this path.", e)
            self.report.skipped_reason = str(e)
            return AttemptState.DONE

        self.attempts = 1
        self.report.outcome = report_outcome(
            self.host.name,
            self.path.remote_path,
            self.destination,
            result.status,
            strategy=f"handler:{params.get('type')}",
            attempts=1,
            via_fallback=False,
            error_code=None if result.status.ok else result.returncode,
            warnings=tuple(self.warnings),
            duration_seconds=result.duration_seconds,
        )
        return AttemptState.DONE

    def _finish(
        self, result: SyncResult, strategy: ResolvedStrategy, via_fallback: bool
    ) -> None:
        self.report.outcome = report_outcome(
            self.host.name,
            self.path.remote_path,
            self.destination,
            result.status,
            strategy=strategy.name,
            attempts=self.attempts,
            via_fallback=via_fallback,
            error_code=result.returncode or None,
            warnings=tuple(self.warnings),
            snapshots=self.snapshots if strategy.versioned else None,
            duration_seconds=time.monotonic() - self._started,
        )


def _default_shell_factory(connect_timeout: int):
    def factory(host: HostRecord, credential: str) -> Callable[[str], RemoteShell]:
        return functools.partial(
            RemoteShell,
            username=host.user,
            password=credential,
            connect_timeout=connect_timeout,
        )

    return factory


def _default_sync_runner(
    command: SyncCommand, env: Optional[dict], password: Optional[str]
) -> SyncResult:
    return run_sync(command, env=env, password=password)


class BackupRunner:
    """Runs the backup of every configured host.

    Args:
        config: Loaded configuration
        secrets: Secret store for credential resolution
        strategies: Strategy table
        bandwidth_limit: Run level bandwidth cap in KB/s (0 = unlimited)
        sleep_between_hosts: Delay between hosts in seconds
        shell_factory: Returns, for a host and password, a callable making a
            RemoteShell for an address
        sync_runner: Executes a SyncCommand
        sleep: Function used for the delay between hosts
    """

    def __init__(
        self,
        config: Config,
        secrets: SecretStore,
        strategies: StrategyTable,
        bandwidth_limit: Optional[int] = None,
        sleep_between_hosts: Optional[int] = None,
        shell_factory=None,
        sync_runner: Optional[SyncRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        gc = config.global_config
        self.config = config
        self.secrets = secrets
        self.strategies = strategies
        self.bandwidth_limit = (
            gc.bandwidth_limit if bandwidth_limit is None else bandwidth_limit
        )
        self.sleep_between_hosts = (
            gc.sleep_between_hosts if sleep_between_hosts is None else sleep_between_hosts
        )
        self.shell_factory = shell_factory or _default_shell_factory(gc.ssh_connect_timeout)
        self.sync_runner = sync_runner or _default_sync_runner
        self.sleep = sleep

    def bandwidth_for(self, host: HostRecord) -> int:
        """Host setting overrides the run level limit."""
        if host.bandwidth_limit is not None:
            return host.bandwidth_limit
        return self.bandwidth_limit

    def run(self) -> RunSummary:
        summary = RunSummary()
        hosts = self.config.hosts
        logger.info(__util__.log_heading(f"Backup started at {time.ctime()}"))

        for i, host in enumerate(hosts):
            self.process_host(host, summary)

            if i < len(hosts) - 1 and self.sleep_between_hosts > 0:
                logger.info(
                    "Sleeping for %d seconds before next host...", self.sleep_between_hosts
                )
                self.sleep(self.sleep_between_hosts)

        logger.info(__util__.log_heading(f"Backup completed at {time.ctime()}"))
        return summary

    def process_host(self, host: HostRecord, summary: RunSummary) -> None:
        """Back up every path of host, recording results in summary."""
        try:
            credential = resolve_credential(host, self.secrets)
        except __util__.CredentialMissing as e:
            logger.error("%s. Skipping host; check the configuration and secret store.", e)
            summary.skipped_hosts[host.name] = str(e)
            return

        logger.info(__util__.log_heading(f"Host: {host.name} ({host.numeric_address})"))
        for path in host.paths:
            try:
                report = PathBackup(self, host, path, credential).run()
            except Exception as e:
                logger.error("Backup of %s:%s failed: %s", host.name, path.remote_path, e)
                logger.debug("Path failure details", exc_info=True)
                report = PathReport(host.name, path.remote_path, skipped_reason=f"error: {e}")
            summary.add(report)
            logger.info("Backup attempt completed for %s", path.remote_path)
