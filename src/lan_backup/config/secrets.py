"""Secret store and credential resolution.

The secret store is a dotenv style file of KEY=value lines, loaded once per
run and read-only afterwards. Host records reference a password either by
naming a key in the store or by embedding it literally.
"""

import logging
import re
import stat
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from dotenv import dotenv_values

from ..__util__ import CredentialMissing
from .loader import ConfigError
from .schema import HostRecord

logger = logging.getLogger(__name__)

# References looking like an environment variable name ending in _PASSWORD
# are keys into the store, anything else is the password itself.
SECRET_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*_PASSWORD$")


class SecretStore:
    """Read-only mapping of credential names to secret values."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values = MappingProxyType(dict(values or {}))

    @classmethod
    def from_file(cls, path: Path) -> "SecretStore":
        """Load the store from a dotenv file restricted to its owner.

        Raises:
            ConfigError: If the file is missing, unreadable or accessible by
                group or others
        """
        try:
            mode = path.stat().st_mode
        except OSError as e:
            raise ConfigError(f"Cannot read secret store: {e}")

        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            raise ConfigError(
                f"Secret store {path} must only be accessible by its owner "
                f"(mode is {stat.filemode(mode)}, run: chmod 600 {path})"
            )

        try:
            raw = dotenv_values(path)
        except OSError as e:
            raise ConfigError(f"Cannot read secret store: {e}")

        values = {k: v for k, v in raw.items() if v is not None}
        logger.debug("Loaded %d secret(s) from %s", len(values), path)
        return cls(values)

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


def is_secret_key(reference: str) -> bool:
    """Return True if the reference names a secret store entry."""
    return bool(SECRET_KEY_PATTERN.match(reference))


def resolve_credential(host: HostRecord, store: SecretStore) -> str:
    """Return the password for host.

    Raises:
        CredentialMissing: If a named key has no value in the store, or no
            password is configured at all
    """
    reference = host.credential_ref.strip().strip("\"'")

    if host.credential_lookup or is_secret_key(reference):
        secret = store.get(reference)
        if not secret:
            raise CredentialMissing(host.name, reference)
        logger.debug("Using password %s from secret store for %s", reference, host.name)
        return secret

    if not reference:
        raise CredentialMissing(host.name, "password")
    return reference
