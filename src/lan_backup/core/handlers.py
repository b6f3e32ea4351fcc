"""Special backup handlers used instead of rsync for some paths.

A path configured with a handler table, e.g.
``{ path = "/var/lib/postgresql", handler = { type = "pg_dump", database = "app" } }``
runs a remote command and stores its standard output in the destination
directory. The output is written to a temporary file first and only
renamed into place when the command succeeds.
"""

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from ..sshutil.remote import RemoteShell
from .executor import EXIT_NOT_FOUND, SyncStatus

logger = logging.getLogger(__name__)


class HandlerError(Exception):
    """Handler parameters are invalid."""


@dataclass(frozen=True)
class HandlerResult:
    status: SyncStatus
    returncode: int
    output_file: Path | None = None
    duration_seconds: float = 0.0


def _require(params: dict[str, Any], key: str, handler: str) -> str:
    value = params.get(key)
    if not value:
        raise HandlerError(f"{handler} handler requires '{key}'")
    return str(value)


def _as_user(command: str, params: dict[str, Any]) -> str:
    run_as = params.get("run_as")
    if run_as:
        return f"sudo -n -u {shlex.quote(str(run_as))} {command}"
    return command


def command_for_command(params: dict[str, Any]) -> str:
    return _as_user(_require(params, "command", "command"), params)


def command_for_pg_dump(params: dict[str, Any]) -> str:
    database = _require(params, "database", "pg_dump")
    args = ["pg_dump", "--no-password"]
    if params.get("db_user"):
        args += ["-U", str(params["db_user"])]
    if params.get("format"):
        args += [f"--format={params['format']}"]
    args.append(database)
    return _as_user(shlex.join(args), params)


def command_for_mysqldump(params: dict[str, Any]) -> str:
    database = _require(params, "database", "mysqldump")
    args = ["mysqldump", "--single-transaction", "--routines"]
    if params.get("db_user"):
        args += ["-u", str(params["db_user"])]
    args.append(database)
    return _as_user(shlex.join(args), params)


HANDLERS: dict[str, Callable[[dict[str, Any]], str]] = {
    "command": command_for_command,
    "pg_dump": command_for_pg_dump,
    "mysqldump": command_for_mysqldump,
}


def build_handler_command(params: dict[str, Any]) -> str:
    """Return the remote command for handler params.

    Raises:
        HandlerError: If the handler type is unknown or parameters are missing
    """
    handler_type = params.get("type")
    builder = HANDLERS.get(str(handler_type))
    if builder is None:
        raise HandlerError(f"Unknown handler type: {handler_type!r}")
    return builder(params)


def output_name(params: dict[str, Any]) -> str:
    name = params.get("output") or f"{params.get('type', 'handler')}.dump"
    # Keep the dump inside the destination directory.
    return Path(str(name)).name


def run_handler(
    shell: RemoteShell, params: dict[str, Any], destination: Path
) -> HandlerResult:
    """Run the handler described by params and save its output below destination.

    Raises:
        HandlerError: If params do not describe a valid handler
    """
    remote_command = build_handler_command(params)
    destination.mkdir(parents=True, exist_ok=True)
    output_file = destination / output_name(params)
    partial = output_file.with_name(output_file.name + ".partial")

    logger.info("Running %s handler on %s", params.get("type"), shell.address)
    logger.debug("Handler command: %s", remote_command)
    start = time.monotonic()
    try:
        with open(partial, "wb") as out:
            proc = subprocess.run(
                shell.build_command(remote_command),
                stdout=out,
                stderr=subprocess.PIPE,
                env=shell.env(),
                check=False,
            )
        returncode = proc.returncode
        stderr = proc.stderr.decode(errors="replace").strip()
    except FileNotFoundError as e:
        returncode, stderr = EXIT_NOT_FOUND, str(e)

    duration = round(time.monotonic() - start, 3)
    if returncode != 0:
        logger.error("Handler failed with exit code %d", returncode)
        if stderr:
            logger.error("  %s", stderr.splitlines()[-1])
        partial.unlink(missing_ok=True)
        return HandlerResult(SyncStatus.FAILED, returncode, None, duration)

    partial.replace(output_file)
    logger.info("Handler output saved to %s", output_file)
    return HandlerResult(SyncStatus.SUCCESS, 0, output_file, duration)
