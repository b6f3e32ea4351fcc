"""lan-backup: lan_backup/__init__.py."""

from pathlib import Path


__version__ = "0.4.0"


def encode_path_for_dir(path: Path | str) -> str:
    """Strip the leading slash so a remote path can be joined below a host dir."""
    return str(path).strip("/")
