"""Connectivity resolution: which address reaches the remote path."""

import logging
import shlex
from dataclasses import dataclass
from typing import Callable

from ..sshutil.remote import RemoteShell

logger = logging.getLogger(__name__)

ShellFactory = Callable[[str], RemoteShell]


@dataclass(frozen=True)
class ConnectionTarget:
    """Resolved connection parameters for one remote path.

    Attributes:
        address_used: Address every later step connects to
        path: Remote path being backed up
        user: Remote login user
        credential: Password for user
        degraded: True if neither address answered the probe
    """

    address_used: str
    path: str
    user: str
    credential: str
    degraded: bool = False

    def __repr__(self) -> str:
        # Keep the credential out of logs and tracebacks.
        return (
            f"ConnectionTarget(address_used={self.address_used!r}, path={self.path!r}, "
            f"user={self.user!r}, degraded={self.degraded})"
        )


def probe_address(shell: RemoteShell, path: str) -> bool:
    """Return True if a listing of path succeeds through shell."""
    return shell.succeeds(f"ls -la {shlex.quote(path)}")


def resolve_connection(
    symbolic_address: str,
    numeric_address: str,
    user: str,
    credential: str,
    path: str,
    shell_factory: ShellFactory,
) -> ConnectionTarget:
    """Pick the address to use for path.

    The symbolic address is tried first, then the numeric one. If neither
    answers, the numeric address is used anyway: the listing may be blocked
    by permissions while rsync still works.
    """
    candidates = [symbolic_address]
    if numeric_address != symbolic_address:
        candidates.append(numeric_address)

    for kind, address in zip(("Hostname", "IP"), candidates):
        if probe_address(shell_factory(address), path):
            logger.info("%s connection successful (%s)", kind, address)
            return ConnectionTarget(address, path, user, credential)

    logger.warning(
        "Cannot access %s on %s (%s). Will try to back up anyway...",
        path,
        symbolic_address,
        numeric_address,
    )
    return ConnectionTarget(numeric_address, path, user, credential, degraded=True)
