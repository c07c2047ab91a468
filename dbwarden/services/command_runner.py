"""
Command Runner

Runs DBMS client tools (psql, mariadb-dump, mongosh, ...) as asyncio
subprocesses. Every run is bounded by a timeout and can be stopped early by a
shared cancel event; in both cases the child process is killed before the
error is raised so no orphaned dump keeps writing.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional

from .. import LOGGER_NAME
from ..credential_manager import CredentialManager
from ..errors import BackendTimeout, OperationCancelled, UnknownBackendError

logger = logging.getLogger(LOGGER_NAME)

# Upper bound on reaping a killed child; a timed-out or cancelled run can
# overrun its timeout by at most this much.
KILL_WAIT_SECONDS = 0.5


@dataclass(frozen=True)
class CommandResult:
    """Completed subprocess run."""
    returncode: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def success(self) -> bool:
        return self.returncode == 0


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill a child process and reap it."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=KILL_WAIT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Process {proc.pid} did not exit {KILL_WAIT_SECONDS}s after SIGKILL")


async def run_command(
    cmd: list[str],
    timeout: float,
    env: Optional[Mapping[str, str]] = None,
    stdin_path: Optional[Path] = None,
    cancel_event: Optional[asyncio.Event] = None,
    secrets: Iterable[str] = (),
) -> CommandResult:
    """
    Run a command with asyncio subprocess.

    Args:
        cmd: Argument vector; never passed through a shell.
        timeout: Seconds before the process is killed.
        env: Extra environment variables for the child (e.g. PGPASSWORD).
        stdin_path: File streamed to the child's stdin through an open handle.
        cancel_event: When set, the child is killed and OperationCancelled raised.
        secrets: Values masked when the command line is logged.

    Returns:
        CommandResult for a process that ran to completion (any exit code).

    Raises:
        OperationCancelled: cancel_event was set before or during the run.
        BackendTimeout: The process did not finish within timeout. The error is
            raised at most KILL_WAIT_SECONDS after the deadline.
        UnknownBackendError: The tool could not be started.
    """
    printable = CredentialManager.redact(cmd, secrets)

    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled(f"Cancelled before start: {cmd[0]}")

    child_env = dict(os.environ)
    if env:
        child_env.update(env)

    logger.debug(f"Running: {printable}")
    start_time = time.monotonic()

    stdin_file = open(stdin_path, "rb") if stdin_path is not None else None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=stdin_file if stdin_file is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=child_env,
        )
    except FileNotFoundError as e:
        raise UnknownBackendError(f"Client tool not found: {cmd[0]}", detail=str(e)) from e
    except OSError as e:
        raise UnknownBackendError(f"Cannot start {cmd[0]}: {e}", detail=str(e)) from e
    finally:
        # The child holds its own descriptor once started.
        if stdin_file is not None:
            stdin_file.close()

    communicate = asyncio.ensure_future(proc.communicate())
    waiters = {communicate}
    cancel_wait = None
    if cancel_event is not None:
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_wait)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        communicate.cancel()
        await _kill(proc)
        raise
    finally:
        if cancel_wait is not None:
            cancel_wait.cancel()

    duration_ms = int((time.monotonic() - start_time) * 1000)

    if communicate not in done:
        communicate.cancel()
        await _kill(proc)
        if cancel_wait is not None and cancel_wait in done:
            logger.info(f"Cancelled after {duration_ms}ms: {printable}")
            raise OperationCancelled(f"Cancelled while running {cmd[0]}")
        logger.error(f"Command timeout after {timeout}s: {printable}")
        raise BackendTimeout(f"{cmd[0]} did not finish within {timeout}s")

    stdout_bytes, stderr_bytes = communicate.result()
    stdout = stdout_bytes.decode(errors="replace").strip()
    stderr = stderr_bytes.decode(errors="replace").strip()

    if proc.returncode != 0:
        logger.debug(f"Command exited {proc.returncode}: {printable}\nstderr: {stderr}")

    return CommandResult(
        returncode=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        duration_ms=duration_ms,
    )
