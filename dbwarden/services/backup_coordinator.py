"""
Backup Coordinator

Runs Backup against every configured backend in parallel and returns one
BackupReport once every backend has either succeeded or exhausted its
attempts.

Each backend's attempts are strictly sequential and guarded by a per-backend
lock, so at most one backup is in flight per backend. Transient failures
(timeout, connection refused) are retried with exponential back-off; every
other failure is reported immediately. Every attempt is appended to the
BackupHistory before the report is returned. Prior artifacts are never
deleted: retention belongs to whatever sweeps the backup directory.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Union

from .. import DEFAULT_BACKUP_RETRIES, DEFAULT_RETRY_BASE_DELAY, DEFAULT_RETRY_MAX_DELAY, LOGGER_NAME
from ..errors import BackendError, BackupRunInProgress, ErrorKind, OperationCancelled
from ..models import BackupHistory, BackupJob, BackupOutcome, BackupReport
from .adapters import BaseAdapter

logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with capped exponential back-off."""
    retries: int = DEFAULT_BACKUP_RETRIES
    base_delay: float = DEFAULT_RETRY_BASE_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def delay(self, retry_number: int) -> float:
        """Back-off before the retry_number-th retry (1-based)."""
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)


def _outcome_for(error: BaseException) -> BackupOutcome:
    if isinstance(error, BackendError):
        if error.kind == ErrorKind.TIMEOUT:
            return BackupOutcome.TIMEOUT
        if error.kind == ErrorKind.CANCELLED:
            return BackupOutcome.CANCELLED
    return BackupOutcome.FAILURE


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BackupCoordinator:
    """Coordinates one backup run across all backends."""

    def __init__(
        self,
        adapters: Mapping[str, BaseAdapter],
        destination_dir: Union[str, Path],
        history: Optional[BackupHistory] = None,
        retry_policy: Optional[RetryPolicy] = None,
        attempt_timeout: float = 600.0,
    ):
        self.adapters = dict(adapters)
        self.destination_dir = Path(destination_dir)
        self.history = history if history is not None else BackupHistory()
        self.retry_policy = retry_policy or RetryPolicy()
        self.attempt_timeout = attempt_timeout
        self._run_lock = asyncio.Lock()
        self._backend_locks = {name: asyncio.Lock() for name in self.adapters}
        self._in_flight: set[str] = set()

    @property
    def running(self) -> bool:
        """True while a run is active."""
        return self._run_lock.locked()

    @property
    def in_flight(self) -> frozenset[str]:
        """Backends with a backup attempt currently executing."""
        return frozenset(self._in_flight)

    def backend_lock(self, name: str) -> asyncio.Lock:
        """Mutual-exclusion token for one backend; held for every backup attempt."""
        return self._backend_locks[name]

    async def run(self, cancel_event: Optional[asyncio.Event] = None) -> BackupReport:
        """
        Back up every backend concurrently.

        Args:
            cancel_event: Shared stop signal; in-flight attempts resolve to
                CANCELLED and no new attempt starts once it is set.

        Returns:
            BackupReport with every attempt of this run.

        Raises:
            BackupRunInProgress: If another run is active.
        """
        if self._run_lock.locked():
            raise BackupRunInProgress("a backup run is already in progress")

        async with self._run_lock:
            run_id = uuid.uuid4().hex[:12]
            started_at = _now()
            logger.info(f"Backup run {run_id} started for {len(self.adapters)} backend(s)")

            per_backend = await asyncio.gather(
                *(self._backup_backend(name, cancel_event) for name in self.adapters)
            )

            jobs = tuple(job for backend_jobs in per_backend for job in backend_jobs)
            report = BackupReport(
                run_id=run_id,
                started_at=started_at,
                finished_at=_now(),
                jobs=jobs,
            )

            if report.ok:
                logger.info(f"Backup run {run_id} finished: all {len(report.succeeded)} backend(s) succeeded")
            else:
                logger.error(
                    f"Backup run {run_id} finished: failed={', '.join(report.failed)} "
                    f"succeeded={', '.join(report.succeeded) or '-'}"
                )
            return report

    async def _backup_backend(self, name: str, cancel_event: Optional[asyncio.Event]) -> list[BackupJob]:
        """All attempts for one backend, sequential, under its lock."""
        adapter = self.adapters[name]
        policy = self.retry_policy
        jobs: list[BackupJob] = []

        async with self._backend_locks[name]:
            for attempt in range(1, policy.max_attempts + 1):
                if cancel_event is not None and cancel_event.is_set():
                    jobs.append(self._record_not_started(name, attempt))
                    break

                job = await self._attempt(adapter, attempt, cancel_event)
                jobs.append(job)

                if not job.will_retry:
                    break

                delay = policy.delay(attempt)
                logger.warning(
                    f"Backup of {name} attempt {attempt}/{policy.max_attempts} failed "
                    f"({job.error_kind.value}); retrying in {delay:.1f}s"
                )
                if await self._backoff(delay, cancel_event):
                    jobs.append(self._record_not_started(name, attempt + 1))
                    break

        return jobs

    async def _attempt(
        self,
        adapter: BaseAdapter,
        attempt: int,
        cancel_event: Optional[asyncio.Event],
    ) -> BackupJob:
        name = adapter.name
        started_at = _now()
        self._in_flight.add(name)
        try:
            artifact = await adapter.backup(self.destination_dir, self.attempt_timeout, cancel_event)
        except asyncio.CancelledError:
            self._record(BackupJob(
                backend=name,
                attempt=attempt,
                started_at=started_at,
                finished_at=_now(),
                outcome=BackupOutcome.INTERRUPTED,
                error="backup task abandoned during shutdown",
                error_kind=ErrorKind.CANCELLED,
            ))
            raise
        except Exception as e:
            error_kind = e.kind if isinstance(e, BackendError) else ErrorKind.UNKNOWN
            will_retry = (
                isinstance(e, BackendError)
                and e.transient
                and attempt < self.retry_policy.max_attempts
            )
            if not isinstance(e, BackendError):
                logger.exception(f"Unexpected error backing up {name}")
            job = self._record(BackupJob(
                backend=name,
                attempt=attempt,
                started_at=started_at,
                finished_at=_now(),
                outcome=_outcome_for(e),
                error=str(e),
                error_kind=error_kind,
                will_retry=will_retry,
            ))
            if not will_retry:
                logger.error(f"Backup of {name} failed on attempt {attempt}: {e}")
            return job
        finally:
            self._in_flight.discard(name)

        size = _artifact_size(artifact)
        job = self._record(BackupJob(
            backend=name,
            attempt=attempt,
            started_at=started_at,
            finished_at=_now(),
            outcome=BackupOutcome.SUCCESS,
            artifact_path=str(artifact),
            size_bytes=size,
        ))
        logger.info(f"Backup of {name} written to {artifact} ({_format_size(size)}) on attempt {attempt}")
        return job

    def _record_not_started(self, name: str, attempt: int) -> BackupJob:
        now = _now()
        logger.info(f"Backup of {name} attempt {attempt} not started: cancelled")
        return self._record(BackupJob(
            backend=name,
            attempt=attempt,
            started_at=now,
            finished_at=now,
            outcome=BackupOutcome.CANCELLED,
            error=str(OperationCancelled("cancelled before the attempt started", backend=name)),
            error_kind=ErrorKind.CANCELLED,
        ))

    def _record(self, job: BackupJob) -> BackupJob:
        self.history.append(job)
        return job

    @staticmethod
    async def _backoff(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep for delay; return True if cancel_event fired first."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


def _artifact_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError as e:
        logger.warning(f"Failed to get size of backup {path}: {e}")
        return 0


def _format_size(size_bytes: float) -> str:
    """Human-readable size (e.g. "1.5 GB")."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"
