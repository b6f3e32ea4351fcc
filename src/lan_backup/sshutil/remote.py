"""Remote command execution over ssh with password authentication.

Commands are built as argument lists and handed to subprocess. The password
is passed to sshpass through the SSHPASS environment variable so it never
shows up in the local process list.
"""

import os
import shlex
import subprocess
from typing import Optional

from lan_backup.__logger__ import logger

SSH_OPTIONS = [
    "StrictHostKeyChecking=no",
    "PreferredAuthentications=password",
    "PubkeyAuthentication=no",
    "ServerAliveInterval=15",
    "ServerAliveCountMax=4",
]


class RemoteShell:
    """Runs shell commands on one remote address as one user."""

    def __init__(
        self,
        address: str,
        username: str,
        password: str,
        connect_timeout: int = 10,
        ssh_opts: Optional[list[str]] = None,
    ):
        self.address = address
        self.username = username
        self.password = password
        self.connect_timeout = connect_timeout
        self.ssh_opts = ssh_opts or []

    def __repr__(self) -> str:
        return f"RemoteShell({self.username}@{self.address})"

    def _ssh_args(self) -> list[str]:
        cmd = ["sshpass", "-e", "ssh"]
        opts = SSH_OPTIONS + [f"ConnectTimeout={self.connect_timeout}"] + self.ssh_opts
        for opt in opts:
            cmd.extend(["-o", opt])
        return cmd

    def build_command(self, remote_command: str) -> list[str]:
        """Get the full local command running remote_command on the host."""
        return self._ssh_args() + [f"{self.username}@{self.address}", remote_command]

    def rsh(self) -> str:
        """Remote shell string suitable for rsync --rsh."""
        return shlex.join(self._ssh_args())

    def env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["SSHPASS"] = self.password
        return env

    def run(
        self, remote_command: str, input: Optional[str] = None
    ) -> subprocess.CompletedProcess:
        """Run remote_command and capture its output.

        A missing ssh or sshpass binary is reported as exit status 127, like
        a shell would, instead of raising.
        """
        cmd = self.build_command(remote_command)
        logger.debug("Executing on %s: %s", self.address, remote_command)
        try:
            return subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                env=self.env(),
                check=False,
            )
        except FileNotFoundError as e:
            logger.error("Cannot run ssh: %s", e)
            return subprocess.CompletedProcess(cmd, 127, "", str(e))

    def succeeds(self, remote_command: str, input: Optional[str] = None) -> bool:
        return self.run(remote_command, input=input).returncode == 0
