"""Remote capability probing.

Checks that rsync is available on the remote host (installing it when
missing), whether root-owned files live under the backed-up path, and
whether sudo can be used to read them.
"""

import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum

from .. import __util__
from ..sshutil.remote import RemoteShell

logger = logging.getLogger(__name__)

SYNC_TOOL = "rsync"

# Tried in order; the first manager found on the host is used.
PACKAGE_MANAGERS: tuple[tuple[str, str], ...] = (
    ("apt-get", "apt-get update && apt-get install -y rsync"),
    ("dnf", "dnf install -y rsync"),
    ("yum", "yum install -y rsync"),
    ("zypper", "zypper --non-interactive install rsync"),
    ("pacman", "pacman -S --noconfirm rsync"),
    ("apk", "apk add rsync"),
)


class Elevation(Enum):
    """How privileged execution is obtained on the remote host."""

    NONE = "none"
    PASSWORDLESS = "passwordless"
    PASSWORD = "password"

    @property
    def elevated(self) -> bool:
        return self is not Elevation.NONE


@dataclass
class Capabilities:
    """Result of probing a remote host for one path."""

    tool_present: bool = False
    installed: bool = False
    needs_elevation: bool = False
    elevation: Elevation = Elevation.NONE
    warnings: list[str] = field(default_factory=list)


def _sudo(command: str) -> str:
    """Wrap command so sudo reads the password from stdin."""
    return f"sudo -S -p '' sh -c {shlex.quote(command)}"


def has_sync_tool(shell: RemoteShell) -> bool:
    return shell.succeeds(f"command -v {SYNC_TOOL}")


def detect_package_manager(shell: RemoteShell) -> tuple[str, str] | None:
    """Return (name, install command) of the first package manager found."""
    for name, install_cmd in PACKAGE_MANAGERS:
        if shell.succeeds(f"command -v {name}"):
            return name, install_cmd
    return None


def install_sync_tool(shell: RemoteShell) -> bool:
    """Install rsync on the remote host.

    The install runs through sudo first and is retried once without sudo
    if that fails. Returns True if rsync is present afterwards.
    """
    logger.info("Attempting to install %s on %s...", SYNC_TOOL, shell.address)

    manager = detect_package_manager(shell)
    if manager is None:
        logger.error(
            "Could not detect package manager. Unable to install %s automatically.",
            SYNC_TOOL,
        )
        return False

    name, install_cmd = manager
    logger.info("%s detected. Installing %s...", name, SYNC_TOOL)
    result = shell.run(_sudo(install_cmd), input=shell.password + "\n")
    if result.returncode != 0:
        logger.warning("Failed to install %s with sudo. Trying without sudo...", SYNC_TOOL)
        logger.debug("sudo install stderr: %s", result.stderr.strip())
        shell.run(install_cmd)

    if has_sync_tool(shell):
        logger.info("%s installed successfully on %s.", SYNC_TOOL, shell.address)
        return True

    logger.error("Failed to install %s on %s.", SYNC_TOOL, shell.address)
    return False


def has_root_owned_files(shell: RemoteShell, path: str) -> bool:
    """Return True if any file under path is owned by root."""
    result = shell.run(f"find {shlex.quote(path)} -user root -print -quit 2>/dev/null")
    return bool(result.stdout.strip())


def check_elevation(shell: RemoteShell) -> Elevation:
    """Find a working sudo mode: passwordless first, then with password."""
    if shell.succeeds("sudo -n true"):
        return Elevation.PASSWORDLESS
    if shell.succeeds("sudo -S -p '' true", input=shell.password + "\n"):
        return Elevation.PASSWORD
    return Elevation.NONE


def probe_capabilities(shell: RemoteShell, path: str) -> Capabilities:
    """Run all capability checks for path.

    Raises:
        ToolUnavailable: If rsync is missing and cannot be installed
    """
    caps = Capabilities()

    caps.tool_present = has_sync_tool(shell)
    if not caps.tool_present:
        logger.warning("%s not found on remote host.", SYNC_TOOL)
        if not install_sync_tool(shell):
            raise __util__.ToolUnavailable(
                f"Could not install {SYNC_TOOL} on {shell.address}"
            )
        caps.tool_present = caps.installed = True

    caps.needs_elevation = has_root_owned_files(shell, path)
    if not caps.needs_elevation:
        return caps

    logger.info("Root-owned files detected, attempting to use sudo...")
    caps.elevation = check_elevation(shell)
    if caps.elevation is Elevation.PASSWORDLESS:
        logger.info("Sudo access available without password, using sudo for backup")
    elif caps.elevation is Elevation.PASSWORD:
        logger.info("Sudo access available with password, using sudo for backup")
    else:
        message = (
            "Root-owned files detected but sudo access not available; "
            "some files may not be backed up"
        )
        logger.warning(message)
        caps.warnings.append(message)
    return caps
