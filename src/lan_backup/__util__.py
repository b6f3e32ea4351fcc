"""lan-backup: lan_backup/__util__.py
Common exceptions and small helpers shared across modules.
"""


class AbortError(Exception):
    """Exception where the current unit of work should be aborted."""


class CredentialMissing(AbortError):
    """A named credential has no entry in the secret store. Host-fatal."""

    def __init__(self, host: str, key: str) -> None:
        super().__init__(f"Password for {host} not found (secret key {key!r})")
        self.host = host
        self.key = key


class ToolUnavailable(AbortError):
    """rsync is missing on the remote host and could not be installed. Path-fatal."""


class RunLockError(Exception):
    """Another backup run already holds the run lock."""


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"{'-' * 10} {caption} {'-' * 10}"


def human_size(num_bytes: int | float) -> str:
    """Return a du -h style size string."""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            if unit == "B":
                return f"{int(size)}{unit}"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}P"
