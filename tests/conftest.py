import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional

import pytest

from dbwarden.config import BackendConfig
from dbwarden.errors import OperationCancelled
from dbwarden.models import PingResult
from dbwarden.services.adapters.base import BaseAdapter


def make_backend(name: str = "pg-main", kind: str = "postgres", **overrides) -> BackendConfig:
    data = {
        "name": name,
        "kind": kind,
        "host": "db.internal",
        "username": "warden",
        "password": "s3cret",
    }
    data.update(overrides)
    return BackendConfig.model_validate(data)


class FakeAdapter(BaseAdapter):
    """
    Scripted adapter for coordinator, monitor and runner tests.

    ping_script items: True for success, or a BackendError to return.
    backup_script items: None for success, or an exception to raise.
    """

    kind = "postgres"
    display_name = "Fake"
    artifact_extension = ".dump"

    def __init__(
        self,
        config: BackendConfig,
        ping_script=None,
        backup_script=None,
        backup_delay: float = 0.0,
        honor_cancel: bool = True,
        before_backup: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        super().__init__(config)
        self.ping_script = list(ping_script or [])
        self.backup_script = list(backup_script or [])
        self.backup_delay = backup_delay
        self.honor_cancel = honor_cancel
        self.before_backup = before_backup
        self.ping_calls = 0
        self.backup_calls = 0
        self.active = 0
        self.max_active = 0
        self.intervals: list[tuple[float, float]] = []

    def get_ping_command(self):
        return ["true"]

    def get_has_data_command(self):
        return ["true"]

    def parse_has_data_output(self, stdout):
        return False

    def get_backup_command(self, artifact_path):
        return ["true"]

    def get_restore_command(self, artifact_path):
        return ["true"]

    async def ping(self, timeout, cancel_event=None):
        self.ping_calls += 1
        if cancel_event is not None and cancel_event.is_set():
            return PingResult(ok=False, error=OperationCancelled("cancelled", backend=self.name))
        outcome = self.ping_script.pop(0) if self.ping_script else True
        if outcome is True:
            return PingResult(ok=True, response_time_ms=3)
        return PingResult(ok=False, response_time_ms=7, error=outcome)

    async def backup(self, destination_dir, timeout, cancel_event=None):
        loop = asyncio.get_running_loop()
        self.backup_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = loop.time()
        try:
            if self.before_backup is not None:
                await self.before_backup()
            if self.backup_delay:
                await self._wait(self.backup_delay, cancel_event)
            outcome = self.backup_script.pop(0) if self.backup_script else None
            if outcome is not None:
                raise outcome
            return self.reserve_artifact(destination_dir)
        finally:
            self.active -= 1
            self.intervals.append((start, loop.time()))

    async def _wait(self, delay, cancel_event):
        if cancel_event is None or not self.honor_cancel:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled("cancelled during dump", backend=self.name)


@pytest.fixture
def backend_config():
    return make_backend()


@pytest.fixture
def backup_dir(tmp_path) -> Path:
    path = tmp_path / "backups"
    path.mkdir()
    return path


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
