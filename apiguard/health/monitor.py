"""Background health monitor for the remote API.

Runs an asyncio task that probes the status endpoint at a fixed interval,
re-probes quickly a bounded number of times after a failure, and keeps a
HEALTHY/UNHEALTHY state that the request pipeline reads before every call.

State machine::

    HEALTHY ──(probe fails)──► UNHEALTHY ──(retry_delay, ≤ max_retries times)──► probe
       ▲                           │
       └──────(probe succeeds)─────┘     budget spent → next regular interval
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, Set

from apiguard.api.health import ProbeResult
from apiguard.constants import (
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_RETRY_DELAY,
)
from apiguard.envelope import HealthReport
from apiguard.events import ConnectivityNotice, EventBus, HealthStateChanged

logger = logging.getLogger(__name__)


class HealthState(Enum):
    """Observed health of the API."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthStatus:
    """Immutable snapshot handed to readers."""

    is_healthy: bool
    last_checked_at: Optional[datetime]
    consecutive_failures: int
    last_error: Optional[str] = None
    details: Optional[HealthReport] = None

    def to_dict(self) -> dict:
        return {
            "is_healthy": self.is_healthy,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "source": self.details.source if self.details else None,
            "uptime": format_uptime(self.details.uptime) if self.details and self.details.uptime else None,
        }


class Prober(Protocol):
    async def check_health_with_fallback(self) -> ProbeResult: ...


class HealthMonitor:
    """Periodic prober with accelerated retries after failures.

    Parameters
    ----------
    prober:
        Object performing one probe round (normally :class:`~apiguard.api.health.HealthAPI`).
    interval:
        Seconds between regular probes (default 30).
    max_retries:
        Accelerated re-probes scheduled after consecutive failures (default 3).
    retry_delay:
        Seconds before an accelerated re-probe (default 5).
    probe_timeout:
        Upper bound on a single probe round (default 10).
    events:
        Optional bus receiving :class:`HealthStateChanged` on every transition.
    """

    def __init__(
        self,
        prober: Prober,
        *,
        interval: float = DEFAULT_CHECK_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        events: Optional[EventBus] = None,
    ) -> None:
        self._prober = prober
        self._interval = interval
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._probe_timeout = probe_timeout
        self._events = events

        # Optimistic until the first probe completes.
        self._state = HealthState.HEALTHY
        self._consecutive_failures = 0
        self._last_checked_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._details: Optional[HealthReport] = None

        self._task: Optional[asyncio.Task[None]] = None
        self._inflight: Optional[asyncio.Task[HealthStatus]] = None
        self._background_tasks: Set[asyncio.Task[Any]] = set()
        self._stopped = asyncio.Event()
        self._wake = asyncio.Event()
        self._next_probe_at = 0.0
        # Set by notify_online; the next round must start after the signal.
        self._probe_requested = False

    # ── Readers (never perform I/O) ──────────────────────────────────────

    def is_healthy(self) -> bool:
        return self._state is HealthState.HEALTHY

    @property
    def state(self) -> HealthState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> HealthStatus:
        return HealthStatus(
            is_healthy=self.is_healthy(),
            last_checked_at=self._last_checked_at,
            consecutive_failures=self._consecutive_failures,
            last_error=self._last_error,
            details=self._details,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        """Launch the background probe loop (first probe runs immediately)."""
        if self.running:
            logger.warning("Health monitor already running.")
            return
        self._stopped.clear()
        self._next_probe_at = asyncio.get_running_loop().time()
        self._task = asyncio.create_task(self._run(), name="apiguard-health-monitor")
        logger.info(
            "Health monitor started (interval=%.0fs, max_retries=%d, retry_delay=%.1fs)",
            self._interval,
            self._max_retries,
            self._retry_delay,
        )

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it."""
        self._stopped.set()
        self._wake.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._background_tasks):
            task.cancel()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            try:
                await self._inflight
            except asyncio.CancelledError:
                pass
        self._inflight = None
        logger.info("Health monitor stopped.")

    # ── Probing ──────────────────────────────────────────────────────────

    async def check_now(self) -> HealthStatus:
        """Probe immediately; concurrent callers share one probe."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._probe(), name="apiguard-health-probe")
        return await asyncio.shield(self._inflight)

    def notify_online(self) -> None:
        """Connectivity restored: probe out of cycle instead of waiting.

        The probe always starts after this call; a round already in flight
        is not reused.  Without a running event loop the request is kept and
        honoured by the next :meth:`start`.
        """
        logger.info("Network online, checking health...")
        self._probe_requested = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; health check deferred until start()")
            return
        if self.running:
            self._wake.set()
            return
        task = loop.create_task(self._requested_check())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def notify_offline(self) -> None:
        """Connectivity lost: count a failure without touching the network."""
        logger.info("Network offline")
        self._record_failure("Network offline")
        self._wake.set()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stopped.is_set():
            if self._probe_requested:
                await self._requested_check()
                continue
            delay = self._next_probe_at - loop.time()
            if delay > 0:
                self._wake.clear()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                continue  # re-evaluate stop flag and deadline
            await self.check_now()

    async def _requested_check(self) -> HealthStatus:
        self._probe_requested = False
        if self._inflight is not None and not self._inflight.done():
            # Started before the request; its answer may predate the signal.
            await asyncio.shield(self._inflight)
        return await self.check_now()

    async def _probe(self) -> HealthStatus:
        logger.debug("Checking server health...")
        try:
            result = await asyncio.wait_for(
                self._prober.check_health_with_fallback(),
                timeout=self._probe_timeout,
            )
        except asyncio.TimeoutError:
            result = ProbeResult(success=False, error=f"Probe timed out after {self._probe_timeout:.0f}s")
        except Exception as exc:
            logger.debug("Health probe raised", exc_info=True)
            result = ProbeResult(success=False, error=f"{type(exc).__name__}: {exc}")

        if result.success:
            self._record_success(result.report)
        else:
            self._record_failure(result.error or "Health check failed")
        return self.status()

    # ── Transitions ──────────────────────────────────────────────────────

    def _record_success(self, report: Optional[HealthReport]) -> None:
        old = self._state
        self._state = HealthState.HEALTHY
        self._consecutive_failures = 0
        self._last_error = None
        self._details = report
        self._last_checked_at = datetime.now(timezone.utc)
        self._schedule_next(self._interval)
        if old is not HealthState.HEALTHY:
            logger.info("Server is healthy again (source=%s)", report.source if report else "health")
        self._notify(old)

    def _record_failure(self, reason: str) -> None:
        old = self._state
        self._state = HealthState.UNHEALTHY
        self._consecutive_failures += 1
        self._last_error = reason
        self._last_checked_at = datetime.now(timezone.utc)

        if self._consecutive_failures <= self._max_retries:
            self._schedule_next(self._retry_delay)
            logger.warning(
                "Server is unhealthy: %s (retry %d/%d in %.1fs)",
                reason,
                self._consecutive_failures,
                self._max_retries,
                self._retry_delay,
            )
        else:
            self._schedule_next(self._interval)
            logger.warning(
                "Server is unhealthy: %s (%d consecutive failures, retry budget spent)",
                reason,
                self._consecutive_failures,
            )
        self._notify(old)

    def _schedule_next(self, delay: float) -> None:
        try:
            now = asyncio.get_running_loop().time()
        except RuntimeError:
            return
        self._next_probe_at = now + delay

    def _notify(self, old: HealthState) -> None:
        if old is self._state or self._events is None:
            return
        self._events.publish(HealthStateChanged(old=old, new=self._state, status=self.status()))
        if self._state is HealthState.UNHEALTHY:
            self._events.publish(
                ConnectivityNotice(
                    message=f"Server connection failed: {self._last_error}",
                    cause="health",
                )
            )


def format_uptime(seconds: float) -> str:
    """Render an uptime in seconds as ``2d 3h`` / ``4h 5m`` / ``6m``."""
    seconds = int(seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
