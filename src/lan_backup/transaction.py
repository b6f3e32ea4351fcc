"""Outcome history log.

Every backup outcome is appended as one JSON object per line. The success
and failure markers in each destination only hold the latest result; this
log keeps the history.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_log_path: Optional[Path] = None


def set_transaction_log(path: Path | str | None) -> None:
    """Set (or with None, disable) the history log file."""
    global _log_path
    if path is None:
        _log_path = None
        return
    _log_path = Path(path)
    _log_path.parent.mkdir(parents=True, exist_ok=True)


def get_transaction_log() -> Optional[Path]:
    return _log_path


def log_transaction(
    action: str,
    status: str,
    host: Optional[str] = None,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    strategy: Optional[str] = None,
    snapshot: Optional[str] = None,
    size_bytes: Optional[int] = None,
    duration_seconds: Optional[float] = None,
    error: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append one record to the history log. None values are omitted."""
    if _log_path is None:
        return

    record: dict[str, Any] = {
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "pid": os.getpid(),
        "action": action,
        "status": status,
    }
    optional = {
        "host": host,
        "source": source,
        "destination": destination,
        "strategy": strategy,
        "snapshot": snapshot,
        "size_bytes": size_bytes,
        "duration_seconds": (
            round(duration_seconds, 3) if duration_seconds is not None else None
        ),
        "error": error,
        "details": details,
    }
    record.update({k: v for k, v in optional.items() if v is not None})

    try:
        with open(_log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
    except OSError as e:
        logger.warning("Could not write outcome history %s: %s", _log_path, e)


def read_transaction_log(
    path: Path | str | None = None,
    limit: Optional[int] = None,
    action_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Read history records, most recent first.

    Invalid lines are skipped. With limit, only the `limit` most recent
    matching records are returned.
    """
    log_path = Path(path) if path is not None else _log_path
    if log_path is None or not log_path.exists():
        return []

    records = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if action_filter and record.get("action") != action_filter:
                continue
            if status_filter and record.get("status") != status_filter:
                continue
            records.append(record)

    records.reverse()
    if limit is not None:
        records = records[:limit]
    return records


def get_transaction_stats(path: Path | str | None = None) -> dict[str, Any]:
    """Count history records by status."""
    records = read_transaction_log(path)
    by_status: dict[str, int] = {}
    for record in records:
        status = record.get("status", "unknown")
        by_status[status] = by_status.get(status, 0) + 1
    return {
        "total": len(records),
        "by_status": by_status,
        "last": records[0] if records else None,
    }
