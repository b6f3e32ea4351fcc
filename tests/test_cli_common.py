"""Tests for CLI common utilities."""

import argparse
import logging

import pytest

from lan_backup.__logger__ import create_logger
from lan_backup.cli.common import (
    LogLevels,
    add_verbosity_args,
    get_log_levels,
    load_cli_config,
    non_negative_int,
)


class TestNonNegativeInt:
    """Tests for non_negative_int argument type."""

    def test_accepts_zero(self):
        assert non_negative_int("0") == 0

    def test_accepts_positive(self):
        assert non_negative_int("5120") == 5120

    def test_rejects_negative(self):
        with pytest.raises(argparse.ArgumentTypeError, match="negative"):
            non_negative_int("-1")

    def test_rejects_text(self):
        with pytest.raises(argparse.ArgumentTypeError, match="whole number"):
            non_negative_int("fast")

    def test_parser_error_exits(self):
        """Test that argparse reports the error."""
        parser = argparse.ArgumentParser()
        parser.add_argument("--bwlimit", type=non_negative_int)
        with pytest.raises(SystemExit):
            parser.parse_args(["--bwlimit", "-5"])


@pytest.fixture
def parser():
    parser = argparse.ArgumentParser()
    add_verbosity_args(parser)
    return parser


class TestGetLogLevels:
    """Tests for the -v/-q/--debug switches."""

    def test_default(self, parser):
        assert get_log_levels(parser.parse_args([])) == LogLevels("INFO", "INFO")

    def test_verbose_only_affects_lan_backup(self, parser):
        """Test -v shows lan-backup debug output but leaves libraries at INFO."""
        for argv in (["-v"], ["--verbose"]):
            assert get_log_levels(parser.parse_args(argv)) == LogLevels("INFO", "DEBUG")

    def test_debug_affects_everything(self, parser):
        assert get_log_levels(parser.parse_args(["--debug"])) == LogLevels(
            "DEBUG", "DEBUG"
        )

    def test_quiet(self, parser):
        assert get_log_levels(parser.parse_args(["-q"])) == LogLevels(
            "WARNING", "WARNING"
        )

    def test_precedence(self, parser):
        """Test --debug beats --quiet, which beats --verbose."""
        assert get_log_levels(parser.parse_args(["-v", "-q", "--debug"])).root == "DEBUG"
        assert get_log_levels(parser.parse_args(["-v", "-q"])).package == "WARNING"

    def test_namespace_without_switches(self):
        assert get_log_levels(argparse.Namespace()) == LogLevels("INFO", "INFO")


class TestCreateLoggerLevels:
    """Tests for applying LogLevels through create_logger."""

    def test_verbose_levels(self):
        create_logger("INFO", package_level="DEBUG")

        assert logging.getLogger("lan_backup.core.executor").isEnabledFor(logging.DEBUG)
        assert not logging.getLogger("thirdparty").isEnabledFor(logging.DEBUG)

    def test_debug_levels(self):
        create_logger("DEBUG", package_level="DEBUG")

        assert logging.getLogger("thirdparty").isEnabledFor(logging.DEBUG)

    def test_package_follows_root_by_default(self):
        create_logger("WARNING")

        assert not logging.getLogger("lan_backup.cli").isEnabledFor(logging.INFO)

        create_logger("INFO")


class TestLoadCliConfig:
    """Tests for load_cli_config function."""

    def test_loads(self, minimal_config_file):
        config = load_cli_config(argparse.Namespace(config=str(minimal_config_file)))

        assert config is not None
        assert config.hosts[0].name == "h1"

    def test_config_error_returns_none(self, tmp_path, caplog):
        bad = tmp_path / "bad.toml"
        bad.write_text('[global]\nbandwidth_limit = "fast"\n')

        with caplog.at_level(logging.ERROR):
            assert load_cli_config(argparse.Namespace(config=str(bad))) is None

        assert "Configuration error" in caplog.text
