"""Pytest configuration and shared fixtures."""

import subprocess

import pytest

from lan_backup.config import Config, GlobalConfig, HostRecord, PathRecord


class FakeShell:
    """Stand-in for RemoteShell answering commands from a rule list.

    Rules are (substring, returncode, stdout) tuples; the first rule whose
    substring occurs in the command decides the result. Unmatched commands
    return `default`.
    """

    def __init__(self, address, rules=None, default=0, password="secret", log=None):
        self.address = address
        self.username = "backup"
        self.password = password
        self.rules = list(rules or [])
        self.default = default
        self.calls = log if log is not None else []

    def run(self, remote_command, input=None):
        self.calls.append((self.address, remote_command, input))
        for substring, returncode, stdout in self.rules:
            if substring in remote_command:
                return subprocess.CompletedProcess(remote_command, returncode, stdout, "")
        return subprocess.CompletedProcess(remote_command, self.default, "", "")

    def succeeds(self, remote_command, input=None):
        return self.run(remote_command, input=input).returncode == 0

    def build_command(self, remote_command):
        return ["sh", "-c", remote_command]

    def rsh(self):
        return "ssh"

    def env(self):
        return {"SSHPASS": self.password, "PATH": "/usr/bin:/bin"}


@pytest.fixture
def fake_shell():
    """Return the FakeShell class."""
    return FakeShell


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
backup_root = "data"
logs_dir = "logs"
secrets_file = ".env"
bandwidth_limit = 2048
sleep_between_hosts = 5
max_snapshots = 5

[[hosts]]
name = "nas"
hostname = "nas.lan"
ip = "192.168.1.20"
user = "backup"
password_key = "NAS_PASSWORD"
backup_strategy = "incremental"
max_snapshots = 3
bandwidth_limit = 1024
exclude = ["*.tmp", ".cache/"]
paths = [
    "/srv/share",
    { path = "/etc", backup_strategy = "mirror" },
    { path = "/var/lib/postgresql", handler = { type = "pg_dump", database = "app" } },
]

[[hosts]]
name = "desktop"
ip = "192.168.1.30"
user = "me"
password = "DESKTOP_PASSWORD"
paths = ["/home/me/documents"]

[strategies.gentle]
deletion = "none"
snapshot = "none"
timeout = 300
extra_flags = ["--archive", "--update"]
"""


@pytest.fixture
def sample_config_yaml():
    """Return the YAML form used by older installations."""
    return """
global:
  backup_root: /srv/backups
  sleep_between_hosts: 0
hosts:
  - name: pi
    ip: 192.168.1.40
    user: pi
    password: "PI_PASSWORD"
    backup_strategy: safe
    exclude:
      - "*.log"
    paths:
      - /home/pi
      - path: /opt/app
        backup_strategy: mirror
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[[hosts]]
name = "h1"
ip = "10.0.0.5"
user = "backup"
password = "plain-secret"
paths = ["/data"]
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path


@pytest.fixture
def secrets_file(tmp_config_dir):
    """Create an owner-only secret store."""
    path = tmp_config_dir / ".env"
    path.write_text('NAS_PASSWORD=nas-secret\nDESKTOP_PASSWORD="desk secret"\n')
    path.chmod(0o600)
    return path


@pytest.fixture
def make_config(tmp_path):
    """Build a Config with one host rooted in tmp_path."""

    def factory(paths=("/data",), **host_kwargs) -> Config:
        host_defaults = dict(
            name="h1",
            symbolic_address="h1",
            numeric_address="10.0.0.5",
            user="backup",
            credential_ref="plain-secret",
        )
        host_defaults.update(host_kwargs)
        records = tuple(
            p if isinstance(p, PathRecord) else PathRecord(remote_path=p) for p in paths
        )
        host = HostRecord(paths=records, **host_defaults)
        global_config = GlobalConfig(
            backup_root=tmp_path / "data",
            logs_dir=tmp_path / "logs",
            pid_file=tmp_path / "lan_backup.pid",
            secrets_file=tmp_path / ".env",
            bandwidth_limit=0,
            sleep_between_hosts=0,
        )
        return Config(global_config=global_config, hosts=[host])

    return factory


@pytest.fixture(autouse=True)
def _no_history(monkeypatch):
    """Keep outcome history disabled unless a test enables it."""
    from lan_backup import transaction

    monkeypatch.setattr(transaction, "_log_path", None)
