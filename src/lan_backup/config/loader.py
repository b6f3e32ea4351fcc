"""Configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error
messages. Parsing of the raw file is delegated to a ConfigProvider, one per
supported file format, so the rest of the code only sees plain dicts.
"""

import abc
import tomllib
from pathlib import Path
from typing import Any

import yaml

from .schema import (
    DEFAULT_BANDWIDTH_LIMIT,
    DEFAULT_MAX_SNAPSHOTS,
    DEFAULT_SLEEP_BETWEEN_HOSTS,
    DEFAULT_STRATEGY,
    Config,
    GlobalConfig,
    HostRecord,
    PathRecord,
    StrategyConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


class ConfigProvider(abc.ABC):
    """Reads a configuration file into a plain dict."""

    suffixes: tuple[str, ...] = ()

    @abc.abstractmethod
    def read(self, path: Path) -> dict[str, Any]:
        """Parse the file at path.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """

    def handles(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes


class TomlConfigProvider(ConfigProvider):
    suffixes = (".toml",)

    def read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, "rb") as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML syntax: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read config file: {e}")


class YamlConfigProvider(ConfigProvider):
    suffixes = (".yaml", ".yml")

    def read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read config file: {e}")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Top level of the YAML config must be a mapping")
        return data


PROVIDERS: tuple[ConfigProvider, ...] = (TomlConfigProvider(), YamlConfigProvider())


def select_provider(path: Path) -> ConfigProvider:
    """Pick the provider for a config file based on its suffix."""
    for provider in PROVIDERS:
        if provider.handles(path):
            return provider
    raise ConfigError(f"Unsupported config file type: {path.name}")


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "lan-backup" / "config.toml",
    Path.home() / ".config" / "lan-backup" / "config.yaml",
    Path("/etc/lan-backup/config.toml"),
    Path("/etc/lan-backup/config.yaml"),
]


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _optional_int(data: dict[str, Any], key: str, where: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where}: '{key}' must be an integer, got {value!r}")


def _int_setting(
    data: dict[str, Any], key: str, default: int, where: str, minimum: int = 0
) -> int:
    value = _optional_int(data, key, where)
    if value is None:
        return default
    if value < minimum:
        raise ConfigError(f"{where}: '{key}' must be at least {minimum}, got {value}")
    return value


def _table(data: Any, what: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{what} must be a table, got {type(data).__name__}")
    return data


def _resolve(base: Path, value: str | None) -> Path | None:
    if value is None:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def _parse_path(data: Any, host_name: str) -> PathRecord:
    """Parse a path entry, either a bare string or a table."""
    if isinstance(data, str):
        return PathRecord(remote_path=data)

    if not isinstance(data, dict) or "path" not in data:
        raise ConfigError(f"Host '{host_name}': path entry missing 'path' field")

    handler = data.get("handler")
    if handler is not None and not isinstance(handler, dict):
        raise ConfigError(
            f"Host '{host_name}': 'handler' for {data['path']} must be a table"
        )

    return PathRecord(
        remote_path=str(data["path"]),
        strategy_override=data.get("backup_strategy"),
        special_handler_params=dict(handler) if handler is not None else None,
    )


def _parse_host(data: Any) -> HostRecord:
    """Parse host configuration from dict."""
    if not isinstance(data, dict):
        raise ConfigError(f"Host entry must be a table, got {data!r}")
    name = data.get("name")
    if not name:
        raise ConfigError("Host missing required 'name' field")
    for key in ("ip", "user"):
        if not data.get(key):
            raise ConfigError(f"Host '{name}' missing required '{key}' field")

    where = f"Host '{name}'"
    if data.get("password_key"):
        credential_ref, credential_lookup = str(data["password_key"]), True
    else:
        credential_ref, credential_lookup = str(data.get("password") or ""), False

    exclude = data.get("exclude") or []
    if isinstance(exclude, str):
        exclude = [exclude]

    paths = data.get("paths") or []
    if not isinstance(paths, list):
        raise ConfigError(f"{where}: 'paths' must be a list")

    return HostRecord(
        name=str(name),
        symbolic_address=str(data.get("hostname") or name),
        numeric_address=str(data["ip"]),
        user=str(data["user"]),
        credential_ref=credential_ref,
        credential_lookup=credential_lookup,
        default_strategy=data.get("backup_strategy"),
        bandwidth_limit=_optional_int(data, "bandwidth_limit", where),
        max_snapshots=_optional_int(data, "max_snapshots", where),
        exclude_patterns=tuple(str(p) for p in exclude),
        paths=tuple(_parse_path(p, str(name)) for p in paths),
    )


def _parse_strategy(name: str, data: Any) -> StrategyConfig:
    """Parse a user-defined strategy table."""
    where = f"Strategy '{name}'"
    data = _table(data, where)
    extra_flags = data.get("extra_flags", ())
    if isinstance(extra_flags, str):
        extra_flags = extra_flags.split()
    deletion = data.get("deletion", "none")
    snapshot = data.get("snapshot", "none")
    if deletion not in ("none", "delete-extra"):
        raise ConfigError(f"Strategy '{name}': unknown deletion policy {deletion!r}")
    if snapshot not in ("none", "versioned"):
        raise ConfigError(f"Strategy '{name}': unknown snapshot policy {snapshot!r}")

    return StrategyConfig(
        name=name,
        deletion=deletion,
        snapshot=snapshot,
        block_size=data.get("block_size"),
        timeout=_int_setting(data, "timeout", 120, where),
        extra_flags=tuple(str(f) for f in extra_flags),
    )


def _parse_global(data: dict[str, Any], base: Path) -> GlobalConfig:
    """Parse global configuration from dict, resolving paths against base."""
    defaults = GlobalConfig()
    logs_dir = _resolve(base, data.get("logs_dir")) or base / "logs"
    raw_history = data.get("history_file")
    history_file = None
    if raw_history is not False:
        history_file = _resolve(base, raw_history) or logs_dir / "outcomes.jsonl"

    return GlobalConfig(
        backup_root=_resolve(base, data.get("backup_root")) or base / "data",
        logs_dir=logs_dir,
        pid_file=_resolve(base, data.get("pid_file")) or base / "lan_backup.pid",
        secrets_file=_resolve(base, data.get("secrets_file")) or base / ".env",
        history_file=history_file,
        bandwidth_limit=_int_setting(
            data, "bandwidth_limit", DEFAULT_BANDWIDTH_LIMIT, "[global]"
        ),
        sleep_between_hosts=_int_setting(
            data, "sleep_between_hosts", DEFAULT_SLEEP_BETWEEN_HOSTS, "[global]"
        ),
        default_strategy=data.get("default_strategy", DEFAULT_STRATEGY),
        max_snapshots=_int_setting(
            data, "max_snapshots", DEFAULT_MAX_SNAPSHOTS, "[global]"
        ),
        ssh_connect_timeout=_int_setting(
            data, "ssh_connect_timeout", defaults.ssh_connect_timeout, "[global]", 1
        ),
    )


def _validate_config(config: Config, known_strategies: set[str] | None) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.hosts:
        warnings.append("No hosts configured")

    global_default = config.global_config.default_strategy
    if known_strategies is not None and global_default not in known_strategies:
        warnings.append(
            f"Global default_strategy '{global_default}' is unknown (safe will be used)"
        )

    for host in config.hosts:
        if not host.paths:
            warnings.append(f"Host '{host.name}' has no paths configured")

        remote_paths = [p.remote_path for p in host.paths]
        if len(remote_paths) != len(set(remote_paths)):
            warnings.append(f"Host '{host.name}' has duplicate paths")

        if not host.credential_ref:
            warnings.append(f"Host '{host.name}' has no password configured")

        if host.max_snapshots is not None and host.max_snapshots < 1:
            warnings.append(
                f"Host '{host.name}' max_snapshots={host.max_snapshots} keeps no snapshots"
            )

        names = [host.default_strategy] + [p.strategy_override for p in host.paths]
        for name in names:
            if (
                name is not None
                and known_strategies is not None
                and name not in known_strategies
            ):
                warnings.append(
                    f"Host '{host.name}' uses unknown strategy '{name}' (safe will be used)"
                )

        for path in host.paths:
            if not path.remote_path.startswith("/"):
                warnings.append(
                    f"Host '{host.name}' path '{path.remote_path}' is not absolute"
                )

    host_names = [h.name for h in config.hosts]
    if len(host_names) != len(set(host_names)):
        warnings.append("Duplicate host names detected")

    return warnings


def load_config(
    path: Path | str, builtin_strategies: set[str] | None = None
) -> tuple[Config, list[str]]:
    """Load and validate configuration from a TOML or YAML file.

    Args:
        path: Path to configuration file
        builtin_strategies: Strategy names known without configuration, used
            to warn about typos

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)
    data = select_provider(path).read(path)
    base = path.resolve().parent

    global_config = _parse_global(_table(data.get("global"), "[global]"), base)

    hosts_data = data.get("hosts") or []
    if not isinstance(hosts_data, list):
        raise ConfigError("'hosts' must be a list of host records")
    hosts = [_parse_host(h) for h in hosts_data]

    strategies = {
        name: _parse_strategy(name, table)
        for name, table in _table(data.get("strategies"), "[strategies]").items()
    }

    config = Config(global_config=global_config, hosts=hosts, strategies=strategies)

    known = None
    if builtin_strategies is not None:
        known = set(builtin_strategies) | set(strategies)
    warnings = _validate_config(config, known)

    return config, warnings

