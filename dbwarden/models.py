"""
Data model shared by the health monitor, the backup coordinator and the runner.

Records are frozen dataclasses: a HealthStatus is replaced, never mutated, and
a BackupJob is immutable once its attempt completes.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import BackendError, ErrorKind


# =============================================================================
# Health
# =============================================================================

class HealthState(str, Enum):
    """Per-backend health state."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass(frozen=True)
class PingResult:
    """Outcome of a single Ping: the (ok, error) pair plus timing."""
    ok: bool
    response_time_ms: int = 0
    error: Optional[BackendError] = None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None


@dataclass(frozen=True)
class HealthStatus:
    """Current health record for one backend."""
    backend: str
    state: HealthState = HealthState.UNKNOWN
    checked_at: Optional[datetime] = None
    success: bool = False
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    response_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "state": self.state.value,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "success": self.success,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "response_time_ms": self.response_time_ms,
        }


# =============================================================================
# Backups
# =============================================================================

class BackupOutcome(str, Enum):
    """Result of one backup attempt."""
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class BackupJob:
    """One backup attempt against one backend."""
    backend: str
    attempt: int
    started_at: datetime
    finished_at: datetime
    outcome: BackupOutcome
    artifact_path: Optional[str] = None
    size_bytes: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    will_retry: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome == BackupOutcome.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "attempt": self.attempt,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "outcome": self.outcome.value,
            "artifact_path": self.artifact_path,
            "size_bytes": self.size_bytes,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "will_retry": self.will_retry,
        }


@dataclass(frozen=True)
class BackupReport:
    """Aggregate of every BackupJob produced by one coordinator run."""
    run_id: str
    started_at: datetime
    finished_at: datetime
    jobs: tuple[BackupJob, ...] = field(default_factory=tuple)

    @property
    def final(self) -> dict[str, BackupJob]:
        """Last attempt per backend."""
        result: dict[str, BackupJob] = {}
        for job in self.jobs:
            current = result.get(job.backend)
            if current is None or job.attempt >= current.attempt:
                result[job.backend] = job
        return result

    @property
    def succeeded(self) -> list[str]:
        return sorted(name for name, job in self.final.items() if job.succeeded)

    @property
    def failed(self) -> list[str]:
        return sorted(name for name, job in self.final.items() if not job.succeeded)

    @property
    def ok(self) -> bool:
        return bool(self.jobs) and not self.failed

    def attempts(self, backend: str) -> list[BackupJob]:
        return sorted(
            (job for job in self.jobs if job.backend == backend),
            key=lambda job: job.attempt,
        )

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "ok": self.ok,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "jobs": [job.to_dict() for job in self.jobs],
        }


class BackupHistory:
    """
    Bounded, append-only record of backup attempts.

    Appends are serialized by a lock so concurrent backend tasks (or threads
    reading a snapshot for alerting) never observe a torn deque. Once the
    retention count is reached the oldest record is evicted.
    """

    def __init__(self, retention: int = 100):
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self._retention = retention
        self._jobs: deque[BackupJob] = deque(maxlen=retention)
        self._lock = threading.Lock()

    @property
    def retention(self) -> int:
        return self._retention

    def append(self, job: BackupJob) -> None:
        with self._lock:
            self._jobs.append(job)

    def snapshot(self, backend: Optional[str] = None) -> tuple[BackupJob, ...]:
        with self._lock:
            jobs = tuple(self._jobs)
        if backend is not None:
            jobs = tuple(job for job in jobs if job.backend == backend)
        return jobs

    def last_success(self, backend: str) -> Optional[BackupJob]:
        for job in reversed(self.snapshot(backend)):
            if job.succeeded:
                return job
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
