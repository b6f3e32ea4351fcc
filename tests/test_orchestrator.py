"""Tests for host/path orchestration and the attempt/fallback state machine."""

from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from lan_backup import __util__
from lan_backup.config import PathRecord, SecretStore
from lan_backup.core.capability import Elevation
from lan_backup.core.executor import SyncResult, SyncStatus, classify_exit_code
from lan_backup.core.orchestrator import MAX_ATTEMPTS, BackupRunner, PathBackup
from lan_backup.core.report import FAILURE_MARKER, SUCCESS_MARKER
from lan_backup.core.snapshots import SNAPSHOT_DIR_NAME
from lan_backup.core.strategy import build_strategy_table


class FakeSyncRunner:
    """Returns queued exit codes and records every command."""

    def __init__(self, codes=(0,)):
        self.codes = list(codes)
        self.calls = []

    def __call__(self, command, env, password):
        self.calls.append((command, env, password))
        code = self.codes.pop(0) if self.codes else 0
        return SyncResult(classify_exit_code(code), code)


@pytest.fixture
def shell_factory(fake_shell):
    """Build a shell factory whose shells follow the given rules."""

    def make(rules=()):
        def factory(host, credential):
            def for_address(address):
                return fake_shell(address, rules=rules, password=credential)

            return for_address

        return factory

    return make


def _runner(config, shell_factory, sync_runner, **kwargs):
    kwargs.setdefault("sleep", MagicMock())
    return BackupRunner(
        config,
        kwargs.pop("secrets", SecretStore()),
        build_strategy_table(config.strategies.values()),
        shell_factory=shell_factory,
        sync_runner=sync_runner,
        **kwargs,
    )


class TestPathBackup:
    """Tests for a single path going through the state machine."""

    def test_primary_success(self, make_config, shell_factory):
        """Test a successful primary attempt writes the success marker."""
        config = make_config(paths=[PathRecord("/data", "mirror")])
        sync = FakeSyncRunner([0])
        runner = _runner(config, shell_factory(), sync)

        summary = runner.run()

        outcome = summary.paths[0].outcome
        assert outcome.status is SyncStatus.SUCCESS
        assert outcome.attempts == 1
        assert not outcome.via_fallback
        assert outcome.strategy == "mirror"
        dest = config.destination_for(config.hosts[0], config.hosts[0].paths[0])
        assert (dest / SUCCESS_MARKER).exists()
        assert len(sync.calls) == 1

    def test_mirror_command(self, make_config, shell_factory):
        """Test a mirror run with no bandwidth limit and no snapshots."""
        config = make_config(paths=[PathRecord("/data", "mirror")])
        sync = FakeSyncRunner([0])

        _runner(config, shell_factory(), sync, bandwidth_limit=0).run()

        command = sync.calls[0][0]
        assert command.has_flag("--delete")
        assert not command.has_flag("--bwlimit")
        assert not command.has_flag("--backup-dir")
        assert command.address == "h1"
        assert not (config.global_config.backup_root / "h1" / SNAPSHOT_DIR_NAME).exists()

    def test_fallback_to_safe(self, make_config, shell_factory):
        """Test a failed primary attempt is retried once with safe."""
        config = make_config(default_strategy="incremental")
        sync = FakeSyncRunner([12, 0])

        summary = _runner(config, shell_factory(), sync).run()

        outcome = summary.paths[0].outcome
        assert outcome.status is SyncStatus.SUCCESS
        assert outcome.via_fallback
        assert outcome.attempts == 2
        assert outcome.strategy == "safe"
        assert outcome.label == "success (fallback)"

        primary, fallback = (call[0] for call in sync.calls)
        assert primary.has_flag("--backup-dir")
        assert fallback.has_flag("--update")
        assert not fallback.has_flag("--backup-dir")
        assert not fallback.has_flag("--delete")

    def test_fallback_removes_unused_snapshot(self, make_config, shell_factory):
        """Test the snapshot made for a failed primary attempt does not linger."""
        config = make_config(max_snapshots=5)
        snap_root = config.global_config.backup_root / "h1" / SNAPSHOT_DIR_NAME
        (snap_root / "2020-01-01_00-00-00").mkdir(parents=True)
        sync = FakeSyncRunner([12, 0])

        _runner(config, shell_factory(), sync).run()

        created = Path(sync.calls[0][0].flag_value("--backup-dir"))
        assert not created.exists()
        assert [p.name for p in snap_root.iterdir()] == ["2020-01-01_00-00-00"]

    def test_fallback_keeps_snapshot_with_files(self, make_config, shell_factory):
        """Test files moved aside by the failed attempt are kept."""

        class MovingSyncRunner(FakeSyncRunner):
            def __call__(self, command, env, password):
                backup_dir = command.flag_value("--backup-dir")
                if backup_dir:
                    (Path(backup_dir) / "old.txt").write_text("replaced")
                return super().__call__(command, env, password)

        config = make_config()
        sync = MovingSyncRunner([12, 0])

        _runner(config, shell_factory(), sync).run()

        created = Path(sync.calls[0][0].flag_value("--backup-dir"))
        assert (created / "old.txt").read_text() == "replaced"

    def test_both_attempts_fail(self, make_config, shell_factory):
        """Test two failures produce the failure marker with the last code."""
        config = make_config()
        sync = FakeSyncRunner([12, 23])

        summary = _runner(config, shell_factory(), sync).run()

        outcome = summary.paths[0].outcome
        assert outcome.status is SyncStatus.FAILED
        assert outcome.error_code == 23
        assert outcome.attempts == 2
        dest = config.destination_for(config.hosts[0], config.hosts[0].paths[0])
        assert "exit code: 23" in (dest / FAILURE_MARKER).read_text()
        assert not (dest / SUCCESS_MARKER).exists()

    def test_vanished_files_no_fallback(self, make_config, shell_factory):
        """Test exit code 24 counts as success without a fallback."""
        config = make_config()
        sync = FakeSyncRunner([24])

        summary = _runner(config, shell_factory(), sync).run()

        assert summary.paths[0].outcome.status is SyncStatus.SUCCESS_WITH_WARNINGS
        assert len(sync.calls) == 1

    def test_attempt_limit(self, make_config, shell_factory):
        """Test a path never gets a third attempt."""
        config = make_config()
        runner = _runner(config, shell_factory(), FakeSyncRunner([1, 1, 1]))
        backup = PathBackup(runner, config.hosts[0], config.hosts[0].paths[0], "pw")
        backup.run()

        assert backup.attempts == MAX_ATTEMPTS
        with pytest.raises(__util__.AbortError):
            backup._attempt(backup.strategy, None)

    def test_snapshots_created_and_pruned(self, make_config, shell_factory):
        """Test versioned runs create a snapshot and keep max_snapshots."""
        config = make_config(max_snapshots=3)
        snap_root = config.global_config.backup_root / "h1" / SNAPSHOT_DIR_NAME
        for second in range(6):
            (snap_root / f"2020-01-01_00-00-0{second}").mkdir(parents=True)
        sync = FakeSyncRunner([0])

        _runner(config, shell_factory(), sync).run()

        remaining = sorted(p.name for p in snap_root.iterdir())
        assert len(remaining) == 3
        assert "2020-01-01_00-00-05" in remaining
        assert "2020-01-01_00-00-03" not in remaining
        backup_dir = sync.calls[0][0].flag_value("--backup-dir")
        assert backup_dir.startswith(str(snap_root))

    def test_tool_unavailable_skips_path(self, make_config, shell_factory):
        """Test a host without rsync skips the path with no attempt."""
        config = make_config()
        sync = FakeSyncRunner()

        summary = _runner(config, shell_factory(rules=[("command -v", 1, "")]), sync).run()

        report = summary.paths[0]
        assert report.outcome is None
        assert "rsync" in report.skipped_reason
        assert sync.calls == []

    def test_degraded_connection_still_attempted(self, make_config, shell_factory):
        """Test failing probes fall through to the numeric address."""
        config = make_config()
        sync = FakeSyncRunner([0])

        summary = _runner(config, shell_factory(rules=[("ls -la", 2, "")]), sync).run()

        outcome = summary.paths[0].outcome
        assert outcome.status is SyncStatus.SUCCESS
        assert sync.calls[0][0].address == "10.0.0.5"
        assert any("degraded" in w for w in outcome.warnings)

    def test_elevation_carried_to_fallback(self, make_config, shell_factory):
        """Test the fallback keeps password elevation and its password."""
        config = make_config()
        sync = FakeSyncRunner([12, 0])
        rules = [("find", 0, "/data/root-owned\n"), ("sudo -n true", 1, "")]

        _runner(config, shell_factory(rules=rules), sync).run()

        for command, env, password in sync.calls:
            assert command.elevation is Elevation.PASSWORD
            assert password == "plain-secret"
            assert env["SSHPASS"] == "plain-secret"

    def test_no_password_without_elevation(self, make_config, shell_factory):
        config = make_config()
        sync = FakeSyncRunner([0])

        _runner(config, shell_factory(), sync).run()

        assert sync.calls[0][2] is None

    def test_host_bandwidth_overrides_run(self, make_config, shell_factory):
        config = make_config(bandwidth_limit=1024)
        sync = FakeSyncRunner([0])

        _runner(config, shell_factory(), sync, bandwidth_limit=5120).run()

        assert sync.calls[0][0].flag_value("--bwlimit") == "1024"

    def test_excludes_applied(self, make_config, shell_factory):
        config = make_config(exclude_patterns=("*.tmp",))
        sync = FakeSyncRunner([0])

        _runner(config, shell_factory(), sync).run()

        assert "--exclude=*.tmp" in sync.calls[0][0].render()

    def test_unknown_strategy_uses_safe(self, make_config, shell_factory):
        config = make_config(default_strategy="turbo")
        sync = FakeSyncRunner([0])

        summary = _runner(config, shell_factory(), sync).run()

        outcome = summary.paths[0].outcome
        assert outcome.strategy == "safe"
        assert any("turbo" in w for w in outcome.warnings)

    def test_special_handler_bypasses_sync(self, make_config, shell_factory):
        """Test handler paths store command output and skip rsync."""
        params = {"type": "command", "command": "echo dump", "output": "out.txt"}
        config = make_config(paths=[PathRecord("/var/lib/db", special_handler_params=params)])
        sync = FakeSyncRunner()

        summary = _runner(config, shell_factory(), sync).run()

        outcome = summary.paths[0].outcome
        dest = config.destination_for(config.hosts[0], config.hosts[0].paths[0])
        assert outcome.status is SyncStatus.SUCCESS
        assert outcome.strategy == "handler:command"
        assert (dest / "out.txt").read_text() == "dump\n"
        assert (dest / SUCCESS_MARKER).exists()
        assert sync.calls == []
        assert not (dest.parent / SNAPSHOT_DIR_NAME).exists()

    def test_invalid_handler_skips_path(self, make_config, shell_factory):
        config = make_config(paths=[PathRecord("/x", special_handler_params={"type": "nope"})])

        summary = _runner(config, shell_factory(), FakeSyncRunner()).run()

        assert summary.paths[0].outcome is None
        assert "nope" in summary.paths[0].skipped_reason


class TestBackupRunner:
    """Tests for host sequencing."""

    def test_paths_processed_in_order(self, make_config, shell_factory):
        config = make_config(paths=("/a", "/b", "/c"))
        sync = FakeSyncRunner([0, 0, 0])

        summary = _runner(config, shell_factory(), sync).run()

        assert [p.path for p in summary.paths] == ["/a", "/b", "/c"]
        assert [c[0].remote_path for c in sync.calls] == ["/a", "/b", "/c"]

    def test_credential_missing_skips_host(self, make_config, shell_factory):
        """Test a missing credential skips the host and the run continues."""
        config = make_config(credential_ref="H1_PASSWORD")
        config.hosts.append(replace(config.hosts[0], name="h2", credential_ref="H2_PASSWORD"))
        secrets = SecretStore({"H2_PASSWORD": "pw2"})
        sync = FakeSyncRunner([0])

        summary = _runner(config, shell_factory(), sync, secrets=secrets).run()

        assert "h1" in summary.skipped_hosts
        assert [p.host for p in summary.paths] == ["h2"]
        assert sync.calls[0][1]["SSHPASS"] == "pw2"

    def test_sleep_between_hosts(self, make_config, shell_factory):
        """Test the delay runs between hosts but not after the last one."""
        config = make_config()
        config.hosts.append(replace(config.hosts[0], name="h2"))
        config.hosts.append(replace(config.hosts[0], name="h3"))
        sleep = MagicMock()

        _runner(
            config, shell_factory(), FakeSyncRunner(), sleep=sleep, sleep_between_hosts=5
        ).run()

        assert sleep.call_count == 2
        sleep.assert_called_with(5)

    def test_no_sleep(self, make_config, shell_factory):
        config = make_config()
        config.hosts.append(replace(config.hosts[0], name="h2"))
        sleep = MagicMock()

        _runner(
            config, shell_factory(), FakeSyncRunner(), sleep=sleep, sleep_between_hosts=0
        ).run()

        sleep.assert_not_called()

    def test_path_error_does_not_stop_run(self, make_config, shell_factory):
        """Test an unexpected error is recorded and later paths still run."""
        config = make_config(paths=("/a", "/b"))
        sync = FakeSyncRunner([0])
        calls = []

        def flaky(command, env, password):
            calls.append(command.remote_path)
            if command.remote_path == "/a":
                raise RuntimeError("boom")
            return sync(command, env, password)

        summary = _runner(config, shell_factory(), flaky).run()

        assert summary.paths[0].skipped_reason == "error: boom"
        assert summary.paths[1].outcome.status is SyncStatus.SUCCESS
        assert calls == ["/a", "/b"]

    def test_settings_override_config(self, make_config, shell_factory):
        config = make_config()
        runner = _runner(config, shell_factory(), FakeSyncRunner(), bandwidth_limit=0)

        assert runner.bandwidth_limit == 0
        assert runner.sleep_between_hosts == config.global_config.sleep_between_hosts
