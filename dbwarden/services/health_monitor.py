"""
Health Monitor

Polls every backend with Ping and maintains one HealthStatus per backend.

State machine per backend (threshold N, default 3):

    unknown  --ok-->                 healthy
    healthy  --fail-->               degraded
    degraded --N consecutive fails-> down
    any      --auth failure-->       down
    degraded|down --ok-->            healthy (consecutive failures reset to 0)

The monitor is the only writer. Readers get ``snapshot()``, an immutable
mapping that is swapped in whole after each update, so a reader never sees a
half-applied poll.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional

from .. import DEFAULT_DOWN_THRESHOLD, DEFAULT_HEALTH_HISTORY_RETENTION, DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT, LOGGER_NAME
from ..errors import ErrorKind
from ..models import HealthState, HealthStatus, PingResult
from .adapters import BaseAdapter

logger = logging.getLogger(LOGGER_NAME)


def next_status(
    previous: HealthStatus,
    result: PingResult,
    threshold: int = DEFAULT_DOWN_THRESHOLD,
    now: Optional[datetime] = None,
) -> HealthStatus:
    """
    Apply one ping result to the previous status.

    A cancelled ping is an operator stop, not a backend fault, and leaves the
    status untouched.
    """
    now = now or datetime.now(timezone.utc)

    if result.ok:
        return HealthStatus(
            backend=previous.backend,
            state=HealthState.HEALTHY,
            checked_at=now,
            success=True,
            consecutive_failures=0,
            last_error=previous.last_error,
            error_kind=None,
            response_time_ms=result.response_time_ms,
        )

    if result.error_kind == ErrorKind.CANCELLED:
        return previous

    failures = previous.consecutive_failures + 1
    if result.error_kind == ErrorKind.AUTH_FAILED or failures >= threshold:
        state = HealthState.DOWN
    else:
        state = HealthState.DEGRADED

    return HealthStatus(
        backend=previous.backend,
        state=state,
        checked_at=now,
        success=False,
        consecutive_failures=failures,
        last_error=str(result.error) if result.error is not None else "ping failed",
        error_kind=result.error_kind or ErrorKind.UNKNOWN,
        response_time_ms=result.response_time_ms,
    )


class HealthMonitor:
    """Tracks HealthStatus for every configured backend."""

    def __init__(
        self,
        adapters: Mapping[str, BaseAdapter],
        down_threshold: int = DEFAULT_DOWN_THRESHOLD,
        history_retention: int = DEFAULT_HEALTH_HISTORY_RETENTION,
    ):
        if down_threshold < 1:
            raise ValueError("down_threshold must be at least 1")
        self.adapters = dict(adapters)
        self.down_threshold = down_threshold
        self._statuses = MappingProxyType({name: HealthStatus(backend=name) for name in self.adapters})
        self._history = {name: deque(maxlen=history_retention) for name in self.adapters}

    def snapshot(self) -> Mapping[str, HealthStatus]:
        """Point-in-time, read-only view of every backend's status."""
        return self._statuses

    def status(self, name: str) -> HealthStatus:
        return self._statuses[name]

    def _publish(self, status: HealthStatus) -> None:
        updated = dict(self._statuses)
        updated[status.backend] = status
        self._statuses = MappingProxyType(updated)

    async def poll(self, name: str, cancel_event: Optional[asyncio.Event] = None) -> HealthStatus:
        """
        Ping one backend once and record the result.

        Never retries; the next scheduled poll is the retry.
        """
        adapter = self.adapters[name]
        timeout = getattr(adapter.config, "poll_timeout", DEFAULT_POLL_TIMEOUT)
        result = await adapter.ping(timeout, cancel_event)

        previous = self._statuses[name]
        status = next_status(previous, result, self.down_threshold)
        if status is previous:
            logger.debug(f"Health poll of {name} cancelled; status unchanged")
            return status

        self._publish(status)
        self._history[name].append(status)

        if status.state != previous.state:
            log = logger.info if status.state == HealthState.HEALTHY else logger.warning
            log(f"Backend {name} status changed: {previous.state.value} -> {status.state.value}"
                + (f" ({status.last_error})" if not status.success else ""))
        elif not status.success:
            logger.debug(f"Backend {name} still {status.state.value}: {status.consecutive_failures} consecutive failure(s)")

        return status

    async def poll_all(self, cancel_event: Optional[asyncio.Event] = None) -> Mapping[str, HealthStatus]:
        """Poll every backend concurrently once."""
        await asyncio.gather(*(self.poll(name, cancel_event) for name in self.adapters))
        return self.snapshot()

    async def watch(
        self,
        name: str,
        stop_event: asyncio.Event,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Poll one backend at its configured interval until stop_event is set."""
        adapter = self.adapters[name]
        interval = getattr(adapter.config, "poll_interval", DEFAULT_POLL_INTERVAL)
        logger.info(f"Health polling of {name} started (every {interval}s)")

        while not stop_event.is_set():
            try:
                await self.poll(name, cancel_event)
            except Exception as e:
                logger.error(f"Health poll of {name} failed unexpectedly: {e!r}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        logger.info(f"Health polling of {name} stopped")

    def history(self, name: str, limit: Optional[int] = None) -> list[HealthStatus]:
        """Recent check results for a backend, newest first."""
        records = list(reversed(self._history[name]))
        return records[:limit] if limit is not None else records

    def uptime_stats(self, name: str) -> dict:
        """
        Availability statistics over the retained check history.

        Returns:
            dict with:
                uptime_percent: float (0-100)
                total_checks: int
                healthy_checks: int
                unhealthy_checks: int
                avg_response_time_ms: float
                max_response_time_ms: int
                min_response_time_ms: int
        """
        records = list(self._history[name])
        if not records:
            return {
                "uptime_percent": 0.0,
                "total_checks": 0,
                "healthy_checks": 0,
                "unhealthy_checks": 0,
                "avg_response_time_ms": 0.0,
                "max_response_time_ms": 0,
                "min_response_time_ms": 0,
            }

        healthy = sum(1 for record in records if record.success)
        times = [record.response_time_ms for record in records]
        return {
            "uptime_percent": round(healthy / len(records) * 100, 2),
            "total_checks": len(records),
            "healthy_checks": healthy,
            "unhealthy_checks": len(records) - healthy,
            "avg_response_time_ms": round(sum(times) / len(times), 2),
            "max_response_time_ms": max(times),
            "min_response_time_ms": min(times),
        }
