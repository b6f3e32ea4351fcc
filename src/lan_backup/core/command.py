"""Structured rsync command construction.

A SyncCommand collects typed flags and is only turned into an argument
list by render(), at the point of execution. Secrets are supplied to
render() and never stored on the command itself.
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .capability import Elevation
from .connectivity import ConnectionTarget
from .strategy import DeletionPolicy, ResolvedStrategy

# Applied to every run: resume partial files, tolerate source entries that
# disappear and keep going on per-file errors.
SAFETY_FLAGS = (
    "--human-readable",
    "--partial",
    "--no-inc-recursive",
    "--ignore-errors",
    "--ignore-missing-args",
)

REDACTED = "********"


@dataclass(frozen=True)
class RsyncFlag:
    """One rsync option, rendered as --name or --name=value."""

    name: str
    value: Optional[str] = None

    def render(self) -> str:
        if self.value is None:
            return self.name
        return f"{self.name}={self.value}"


@dataclass
class SyncCommand:
    """An rsync invocation pulling a remote path into a local directory."""

    user: str
    address: str
    remote_path: str
    destination: Path
    rsh: str = "ssh"
    elevation: Elevation = Elevation.NONE
    flags: list[RsyncFlag] = field(default_factory=list)

    def add(self, name: str, value: Optional[str] = None) -> "SyncCommand":
        self.flags.append(RsyncFlag(name, value))
        return self

    def has_flag(self, name: str) -> bool:
        return any(f.name == name for f in self.flags)

    def flag_value(self, name: str) -> Optional[str]:
        for flag in self.flags:
            if flag.name == name:
                return flag.value
        return None

    @property
    def source(self) -> str:
        return f"{self.user}@{self.address}:{self.remote_path.rstrip('/')}/"

    def _rsync_path(self, password: Optional[str]) -> Optional[str]:
        if self.elevation is Elevation.PASSWORDLESS:
            return "sudo -n rsync"
        if self.elevation is Elevation.PASSWORD:
            secret = REDACTED if password is None else password
            # sudo -S reads the password from a pipe of its own; rsync keeps
            # the ssh channel as stdin and runs under the primed timestamp.
            return f"echo {shlex.quote(secret)} | sudo -S -v -p '' && sudo -n rsync"
        return None

    def render(self, password: Optional[str] = None) -> list[str]:
        """Return the argument list for subprocess.

        Args:
            password: sudo password, needed only with password elevation.
                Without it the password is redacted, for display.
        """
        args = ["rsync"] + [flag.render() for flag in self.flags]
        rsync_path = self._rsync_path(password)
        if rsync_path is not None:
            args.append(f"--rsync-path={rsync_path}")
        args.append(f"--rsh={self.rsh}")
        args.append(self.source)
        args.append(f"{self.destination}/")
        return args

    def describe(self) -> str:
        """Command line for logging, with secrets redacted."""
        return shlex.join(self.render())


def build_sync_command(
    target: ConnectionTarget,
    destination: Path,
    strategy: ResolvedStrategy,
    exclude_patterns: tuple[str, ...] = (),
    elevation: Elevation = Elevation.NONE,
    bandwidth_limit: int = 0,
    snapshot_dir: Optional[Path] = None,
    rsh: str = "ssh",
) -> SyncCommand:
    """Assemble the rsync command for one attempt."""
    cmd = SyncCommand(
        user=target.user,
        address=target.address_used,
        remote_path=target.path,
        destination=destination,
        rsh=rsh,
        elevation=elevation,
    )

    for flag in strategy.extra_flags:
        name, sep, value = flag.partition("=")
        cmd.add(name, value if sep else None)

    if strategy.deletion_policy is DeletionPolicy.DELETE_EXTRA:
        cmd.add("--delete").add("--delete-excluded")

    if strategy.block_size:
        cmd.add("--block-size", strategy.block_size)
    cmd.add("--timeout", str(strategy.timeout))

    if strategy.versioned and snapshot_dir is not None:
        cmd.add("--backup").add("--backup-dir", str(snapshot_dir))

    for flag in SAFETY_FLAGS:
        cmd.add(flag)

    if bandwidth_limit > 0:
        cmd.add("--bwlimit", str(bandwidth_limit))

    for pattern in exclude_patterns:
        cmd.add("--exclude", pattern)

    return cmd
