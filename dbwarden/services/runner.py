"""
Runner

Owns the lifecycle of the health polling loops and the periodic backup runs.

- One polling task per backend, each on that backend's interval.
- One backup ticker on the backup interval. A tick that fires while a run is
  still active is skipped and logged, never queued.
- ``stop()`` sets a shared cancel signal that every in-flight Ping/Backup
  observes, waits up to the grace period, then cancels whatever is left and
  reports it as interrupted.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from .. import LOGGER_NAME
from ..config import RunnerConfig
from ..errors import BackupRunInProgress, DbWardenError
from ..models import BackupHistory, BackupJob, BackupReport, HealthStatus
from .adapters import BaseAdapter, build_adapter
from .backup_coordinator import BackupCoordinator, RetryPolicy
from .health_monitor import HealthMonitor

logger = logging.getLogger(LOGGER_NAME)

HEALTH_TASK_PREFIX = "health:"
BACKUP_TICKER_TASK = "backup-ticker"
BACKUP_RUN_TASK = "backup-run"


@dataclass(frozen=True)
class ShutdownReport:
    """What stop() had to do."""
    completed: list[str] = field(default_factory=list)
    interrupted: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.interrupted


class Runner:
    """Drives the HealthMonitor and BackupCoordinator for a validated configuration."""

    def __init__(
        self,
        config: RunnerConfig,
        adapters: Optional[Mapping[str, BaseAdapter]] = None,
    ):
        self.config = config
        if adapters is None:
            adapters = {backend.name: build_adapter(backend) for backend in config.backends}
        missing = {backend.name for backend in config.backends} - set(adapters)
        if missing:
            raise DbWardenError(f"no adapter for backend(s): {', '.join(sorted(missing))}")
        self.adapters = dict(adapters)

        self.history = BackupHistory(retention=config.history_retention)
        self.monitor = HealthMonitor(
            self.adapters,
            down_threshold=config.down_threshold,
            history_retention=config.health_history_retention,
        )
        self.coordinator = BackupCoordinator(
            self.adapters,
            destination_dir=config.backup_dir,
            history=self.history,
            retry_policy=RetryPolicy(
                retries=config.backup_retries,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            ),
            attempt_timeout=config.backup_timeout,
        )

        self._stop_event = asyncio.Event()
        self._cancel_event = asyncio.Event()
        self._tasks: dict[str, asyncio.Task] = {}
        self._backup_task: Optional[asyncio.Task] = None
        self._last_report: Optional[BackupReport] = None
        self._started = False

    # ---- Queries ---------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._started and not self._stop_event.is_set()

    @property
    def last_report(self) -> Optional[BackupReport]:
        return self._last_report

    def health_snapshot(self) -> Mapping[str, HealthStatus]:
        return self.monitor.snapshot()

    def backup_history(self, backend: Optional[str] = None) -> tuple[BackupJob, ...]:
        return self.history.snapshot(backend)

    def status(self) -> dict:
        """Combined pull-based view for an alerting or status front end."""
        return {
            "running": self.running,
            "backup_in_progress": self.coordinator.running,
            "health": {name: status.to_dict() for name, status in self.health_snapshot().items()},
            "last_backup": self._last_report.to_dict() if self._last_report else None,
        }

    # ---- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the polling loops and the backup ticker."""
        if self._started:
            raise DbWardenError("runner already started")
        self._started = True

        Path(self.config.backup_dir).mkdir(parents=True, exist_ok=True)

        for name in self.adapters:
            self._spawn(
                f"{HEALTH_TASK_PREFIX}{name}",
                self.monitor.watch(name, self._stop_event, self._cancel_event),
            )
        self._spawn(BACKUP_TICKER_TASK, self._backup_ticker())

        logger.info(
            f"Runner started: {len(self.adapters)} backend(s), "
            f"backup every {self.config.backup_interval}s into {self.config.backup_dir}"
        )

    async def stop(self, grace_period: Optional[float] = None) -> ShutdownReport:
        """
        Cancel in-flight operations and stop all tasks.

        Args:
            grace_period: Seconds to wait for operations to finish after the
                cancel signal (defaults to config.shutdown_grace).

        Returns:
            ShutdownReport naming tasks that finished and tasks abandoned.
        """
        grace = self.config.shutdown_grace if grace_period is None else grace_period
        logger.info(f"Runner stopping (grace period {grace}s)")

        self._stop_event.set()
        self._cancel_event.set()

        tasks = {name: task for name, task in self._tasks.items() if not task.done()}
        if tasks:
            _, pending = await asyncio.wait(tasks.values(), timeout=grace)
        else:
            pending = set()

        interrupted = sorted(name for name, task in tasks.items() if task in pending)
        for name in interrupted:
            tasks[name].cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Runner abandoned {len(interrupted)} task(s) after grace period: {', '.join(interrupted)}")

        completed = sorted(name for name in tasks if name not in interrupted)
        self._tasks.clear()
        logger.info("Runner stopped")
        return ShutdownReport(completed=completed, interrupted=interrupted)

    async def __aenter__(self) -> "Runner":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ---- Backups ---------------------------------------------------------------

    async def trigger_backup(self) -> BackupReport:
        """
        Run a backup now and wait for the report.

        Raises:
            BackupRunInProgress: If a run is already active.
            DbWardenError: If the runner is shutting down.
        """
        if self._cancel_event.is_set():
            raise DbWardenError("runner is stopping; no new backups")
        if self._backup_in_progress():
            raise BackupRunInProgress("a backup run is already in progress")
        task = self._start_backup_run()
        return await asyncio.shield(task)

    def _backup_in_progress(self) -> bool:
        """True from the moment a run task is spawned until it finishes."""
        return self.coordinator.running or (self._backup_task is not None and not self._backup_task.done())

    def _start_backup_run(self) -> asyncio.Task:
        task = self._spawn(BACKUP_RUN_TASK, self._run_backup())
        self._backup_task = task
        return task

    async def _run_backup(self) -> BackupReport:
        report = await self.coordinator.run(self._cancel_event)
        self._last_report = report
        return report

    async def _backup_ticker(self) -> None:
        if self.config.run_backup_on_start:
            self._tick()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.backup_interval)
            except asyncio.TimeoutError:
                self._tick()

    def _tick(self) -> None:
        if self._backup_in_progress():
            logger.warning("Backup tick skipped: previous backup run still in progress")
            return
        self._start_backup_run()

    # ---- Tasks -----------------------------------------------------------------

    def _spawn(self, name: str, coro) -> asyncio.Task:
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            coro.close()
            raise DbWardenError(f"task {name} is already running")
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Task {task.get_name()} failed: {error!r}")

    # ---- Restore ---------------------------------------------------------------

    async def restore(
        self,
        backend: str,
        artifact_path: Union[str, Path],
        force: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Restore one backend from an artifact. Destructive; see BaseAdapter.restore.

        Waits for the backend's backup lock so a restore never overlaps a
        backup of the same backend.
        """
        adapter = self.adapters[backend]
        async with self.coordinator.backend_lock(backend):
            await adapter.restore(
                artifact_path,
                timeout=timeout if timeout is not None else self.config.backup_timeout,
                force=force,
                cancel_event=self._cancel_event,
            )
