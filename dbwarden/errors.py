"""
Error taxonomy for dbwarden.

Backend failures are classified into a small set of kinds. Callers branch on
the kind: transient kinds (connection refused, timeout) are retried by the
backup coordinator, every other kind is reported immediately.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a backend operation failure."""
    CONNECTION_REFUSED = "connection_refused"
    AUTH_FAILED = "auth_failed"
    TIMEOUT = "timeout"
    ALREADY_EXISTS = "already_exists"
    CANCELLED = "cancelled"
    REFUSED = "refused"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = frozenset({ErrorKind.CONNECTION_REFUSED, ErrorKind.TIMEOUT})


class DbWardenError(Exception):
    """Base class for all dbwarden errors."""


class ConfigError(DbWardenError):
    """Raised when the configuration is malformed. Fatal at startup."""


class BackupRunInProgress(DbWardenError):
    """Raised when a backup run is requested while another one is active."""


class BackendError(DbWardenError):
    """
    A failed Ping, Backup or Restore against a single backend.

    Attributes:
        kind: ErrorKind classification.
        backend: Name of the backend the operation ran against.
        message: Human-readable summary.
        returncode: Exit code of the client tool, if one ran to completion.
        detail: Raw tool output (stderr) kept for diagnostics.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        backend: str = "",
        returncode: Optional[int] = None,
        detail: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.returncode = returncode
        self.detail = detail

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    def for_backend(self, backend: str) -> "BackendError":
        """Attach the backend name if the raiser did not know it."""
        if not self.backend:
            self.backend = backend
        return self

    def __str__(self) -> str:
        prefix = f"[{self.backend}] " if self.backend else ""
        return f"{prefix}{self.kind.value}: {self.message}"


class ConnectionRefused(BackendError):
    kind = ErrorKind.CONNECTION_REFUSED


class AuthFailed(BackendError):
    kind = ErrorKind.AUTH_FAILED


class BackendTimeout(BackendError):
    kind = ErrorKind.TIMEOUT


class AlreadyExists(BackendError):
    kind = ErrorKind.ALREADY_EXISTS


class OperationCancelled(BackendError):
    kind = ErrorKind.CANCELLED


class RestoreRefused(BackendError):
    """Restore target is reachable and holds data, and force was not given."""
    kind = ErrorKind.REFUSED


class UnknownBackendError(BackendError):
    kind = ErrorKind.UNKNOWN


_ERRORS_BY_KIND = {
    ErrorKind.CONNECTION_REFUSED: ConnectionRefused,
    ErrorKind.AUTH_FAILED: AuthFailed,
    ErrorKind.TIMEOUT: BackendTimeout,
    ErrorKind.ALREADY_EXISTS: AlreadyExists,
    ErrorKind.CANCELLED: OperationCancelled,
    ErrorKind.REFUSED: RestoreRefused,
    ErrorKind.UNKNOWN: UnknownBackendError,
}


def error_for_kind(
    kind: ErrorKind,
    message: str,
    backend: str = "",
    returncode: Optional[int] = None,
    detail: str = "",
) -> BackendError:
    """Build the BackendError subclass matching a kind."""
    cls = _ERRORS_BY_KIND[ErrorKind(kind)]
    return cls(message, backend=backend, returncode=returncode, detail=detail)


def is_transient(error: BaseException) -> bool:
    """True if the error is eligible for automatic retry."""
    return isinstance(error, BackendError) and error.transient
