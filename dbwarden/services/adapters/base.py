"""
Base Backend Adapter — Abstract interface for all DBMS backend adapters.

Every adapter subclasses BaseAdapter and supplies the client-tool commands for
its engine. BaseAdapter turns those commands into the three operations the
rest of dbwarden relies on:

    ping(timeout)                        -> PingResult (ok, error)
    backup(destination_dir, timeout)     -> artifact Path
    restore(artifact_path, timeout, ...) -> None

Adapters hold only their frozen BackendConfig; they keep no shared mutable
state, so one adapter may serve a health poll and a backup at the same time.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ... import LOGGER_NAME
from ...config import BackendConfig
from ...errors import (
    AlreadyExists,
    BackendError,
    BackendTimeout,
    ErrorKind,
    RestoreRefused,
    UnknownBackendError,
    error_for_kind,
)
from ...models import PingResult
from ..command_runner import CommandResult, run_command

logger = logging.getLogger(LOGGER_NAME)

RFC3339_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_timestamp(at: datetime) -> str:
    """RFC 3339 UTC timestamp with second precision."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc).strftime(RFC3339_FORMAT)


# =============================================================================
# Abstract Base Adapter
# =============================================================================

class BaseAdapter(ABC):
    """
    Abstract base class for backend adapters.

    Attributes:
        kind: Machine-readable backend kind (e.g. "postgres").
        display_name: Human-readable name (e.g. "PostgreSQL").
        default_port: Default listening port.
        artifact_extension: Suffix appended to backup artifact names.
        max_artifact_suffix: Highest collision counter tried before AlreadyExists.
        auth_patterns: Lower-case stderr fragments meaning bad credentials.
        connection_patterns: Lower-case stderr fragments meaning the server is unreachable.
        timeout_patterns: Lower-case stderr fragments meaning a tool-side timeout.
    """

    kind: str = ""
    display_name: str = ""
    default_port: int = 0
    artifact_extension: str = ".dump"
    max_artifact_suffix: int = 999

    auth_patterns: tuple[str, ...] = ()
    connection_patterns: tuple[str, ...] = ()
    timeout_patterns: tuple[str, ...] = ("timed out", "timeout expired")

    def __init__(self, config: BackendConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    # ---- Commands --------------------------------------------------------------

    @abstractmethod
    def get_ping_command(self) -> list[str]:
        """Return the minimal administrative query (list databases)."""
        ...

    @abstractmethod
    def get_has_data_command(self) -> list[str]:
        """Return a command whose output tells whether user data exists."""
        ...

    @abstractmethod
    def parse_has_data_output(self, stdout: str) -> bool:
        """Parse the has-data command output."""
        ...

    @abstractmethod
    def get_backup_command(self, artifact_path: Path) -> list[str]:
        """Return the dump command writing to artifact_path."""
        ...

    @abstractmethod
    def get_restore_command(self, artifact_path: Path) -> list[str]:
        """Return the command restoring from artifact_path."""
        ...

    def get_restore_stdin(self, artifact_path: Path) -> Optional[Path]:
        """File to feed to the restore command's stdin, if the tool reads one."""
        return None

    def get_env(self) -> dict[str, str]:
        """Environment variables handed to every client tool (credentials)."""
        return {}

    def parse_ping_output(self, stdout: str) -> bool:
        """Decide whether a zero-exit ping produced a healthy answer."""
        return True

    # ---- Failure classification ------------------------------------------------

    def classify_failure(self, returncode: int, stderr: str) -> ErrorKind:
        """Map a failed tool run to an ErrorKind from its stderr."""
        text = stderr.lower()
        if any(pattern in text for pattern in self.auth_patterns):
            return ErrorKind.AUTH_FAILED
        if any(pattern in text for pattern in self.connection_patterns):
            return ErrorKind.CONNECTION_REFUSED
        if any(pattern in text for pattern in self.timeout_patterns):
            return ErrorKind.TIMEOUT
        return ErrorKind.UNKNOWN

    def _failure(self, action: str, result: CommandResult) -> BackendError:
        kind = self.classify_failure(result.returncode, result.stderr)
        summary = result.stderr.splitlines()[-1] if result.stderr else f"exit code {result.returncode}"
        return error_for_kind(
            kind,
            f"{action} failed: {summary[:200]}",
            backend=self.name,
            returncode=result.returncode,
            detail=result.stderr,
        )

    async def _run(
        self,
        cmd: list[str],
        timeout: float,
        cancel_event: Optional[asyncio.Event] = None,
        stdin_path: Optional[Path] = None,
    ) -> CommandResult:
        try:
            return await run_command(
                cmd,
                timeout=timeout,
                env=self.get_env(),
                stdin_path=stdin_path,
                cancel_event=cancel_event,
                secrets=[self.config.secret()],
            )
        except BackendError as e:
            raise e.for_backend(self.name)

    # ---- Ping ------------------------------------------------------------------

    async def ping(self, timeout: float, cancel_event: Optional[asyncio.Event] = None) -> PingResult:
        """
        Run the backend's list-databases query.

        Never raises for backend failures; the error is returned in the
        PingResult so the caller can branch on its kind.
        """
        start_time = time.monotonic()
        try:
            result = await self._run(self.get_ping_command(), timeout, cancel_event)
        except BackendError as e:
            elapsed = int((time.monotonic() - start_time) * 1000)
            return PingResult(ok=False, response_time_ms=elapsed, error=e)

        if result.success and self.parse_ping_output(result.stdout):
            return PingResult(ok=True, response_time_ms=result.duration_ms)

        if result.success:
            error = UnknownBackendError(
                f"ping returned an unexpected answer: {result.stdout[:200]}",
                backend=self.name,
                returncode=result.returncode,
            )
        else:
            error = self._failure("ping", result)
        return PingResult(ok=False, response_time_ms=result.duration_ms, error=error)

    # ---- Backup ----------------------------------------------------------------

    def artifact_basename(self, at: datetime) -> str:
        """Deterministic artifact name: <backend>_<RFC3339 timestamp>."""
        return f"{self.name}_{format_timestamp(at)}"

    def reserve_artifact(self, destination_dir: Union[str, Path], at: Optional[datetime] = None) -> Path:
        """
        Atomically create an empty, uniquely named artifact file.

        The first candidate is <backend>_<timestamp><ext>; when it already
        exists (two backups in the same second) a counter is appended:
        <backend>_<timestamp>-1<ext>, -2, ... Existing files are never opened
        for writing.

        Raises:
            AlreadyExists: If every candidate name up to max_artifact_suffix is taken.
        """
        directory = Path(destination_dir)
        directory.mkdir(parents=True, exist_ok=True)
        base = self.artifact_basename(at or datetime.now(timezone.utc))

        for counter in range(self.max_artifact_suffix + 1):
            suffix = f"-{counter}" if counter else ""
            candidate = directory / f"{base}{suffix}{self.artifact_extension}"
            try:
                fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                continue
            os.close(fd)
            return candidate

        raise AlreadyExists(
            f"artifact names for {base} exhausted after {self.max_artifact_suffix} collisions",
            backend=self.name,
        )

    async def backup(
        self,
        destination_dir: Union[str, Path],
        timeout: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        """
        Dump the backend into a new artifact under destination_dir.

        Returns:
            Path of the written artifact.

        Raises:
            BackendError: Classified failure; the partial artifact is removed.
        """
        artifact = self.reserve_artifact(destination_dir)
        logger.info(f"Backing up {self.name} ({self.display_name}) to {artifact}")

        try:
            result = await self._run(self.get_backup_command(artifact), timeout, cancel_event)
            if not result.success:
                raise self._failure("backup", result)
            if not artifact.exists():
                raise UnknownBackendError(f"backup tool produced no artifact at {artifact}", backend=self.name)
        except BaseException:
            self._discard(artifact)
            raise

        return artifact

    def _discard(self, artifact: Path) -> None:
        """Remove an artifact this adapter reserved but did not complete."""
        try:
            artifact.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial artifact {artifact}: {e}")

    # ---- Restore ---------------------------------------------------------------

    async def has_data(self, timeout: float, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """True if the backend is reachable and holds user data."""
        result = await self._run(self.get_has_data_command(), timeout, cancel_event)
        if not result.success:
            raise self._failure("data check", result)
        return self.parse_has_data_output(result.stdout)

    async def restore(
        self,
        artifact_path: Union[str, Path],
        timeout: float,
        force: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Restore the backend from an artifact. Destructive.

        Unless force is set, the backend is asked first whether it holds user
        data and the restore is refused if it does. The data check and the
        restore share one deadline.

        Raises:
            FileNotFoundError: If the artifact does not exist.
            RestoreRefused: If the target holds data and force is False.
            BackendError: Classified failure of the check or the restore.
        """
        artifact = Path(artifact_path)
        if not artifact.is_file():
            raise FileNotFoundError(f"Backup artifact not found: {artifact}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        if not force and await self.has_data(timeout, cancel_event):
            raise RestoreRefused(
                "target holds data; pass force=True to overwrite it",
                backend=self.name,
            )

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise BackendTimeout(f"restore did not start within {timeout}s", backend=self.name)

        logger.warning(f"Restoring {self.name} from {artifact} (force={force})")
        result = await self._run(
            self.get_restore_command(artifact),
            remaining,
            cancel_event,
            stdin_path=self.get_restore_stdin(artifact),
        )
        if not result.success:
            raise self._failure("restore", result)
        logger.info(f"Restored {self.name} from {artifact}")

    # ---- Utilities -------------------------------------------------------------

    def describe(self) -> dict:
        """Credential-free summary for logs and status pages."""
        return {
            "name": self.name,
            "kind": self.kind,
            "display_name": self.display_name,
            "host": self.config.host,
            "port": self.config.port,
            "database": self.config.database,
        }
