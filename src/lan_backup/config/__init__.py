"""Configuration system for lan-backup.

This module provides TOML and YAML configuration loading, validation,
schema definitions, and the secret store used to resolve host passwords.
"""

from .loader import (
    ConfigError,
    ConfigProvider,
    TomlConfigProvider,
    YamlConfigProvider,
    find_config_file,
    load_config,
    select_provider,
)
from .schema import (
    Config,
    GlobalConfig,
    HostRecord,
    PathRecord,
    StrategyConfig,
)
from .secrets import SecretStore, is_secret_key, resolve_credential

__all__ = [
    "Config",
    "GlobalConfig",
    "HostRecord",
    "PathRecord",
    "StrategyConfig",
    "ConfigProvider",
    "TomlConfigProvider",
    "YamlConfigProvider",
    "select_provider",
    "load_config",
    "find_config_file",
    "ConfigError",
    "SecretStore",
    "is_secret_key",
    "resolve_credential",
]
