"""Collaborator-facing events and a small publish/subscribe bus.

UI and query layers subscribe to these to surface connectivity banners,
react to login/logout and drive the user back to an unauthenticated state
when a session expires.  The bus never blocks the publisher: callbacks are
scheduled on the running event loop (coroutine callbacks become tasks).
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, DefaultDict, List, Optional, Set, Type

if TYPE_CHECKING:
    from apiguard.health.monitor import HealthState, HealthStatus

logger = logging.getLogger(__name__)


# ── Event types ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Event:
    """Base class for every event published on the bus."""


@dataclass(frozen=True)
class HealthStateChanged(Event):
    """The health monitor moved between HEALTHY and UNHEALTHY."""

    old: "HealthState"
    new: "HealthState"
    status: "HealthStatus"


@dataclass(frozen=True)
class AuthenticationChanged(Event):
    """Credentials were stored (login/refresh) or removed (logout)."""

    authenticated: bool
    reason: str = ""


@dataclass(frozen=True)
class SessionExpired(Event):
    """The refresh protocol failed and the session was ended."""

    reason: str = ""


@dataclass(frozen=True)
class ConnectivityNotice(Event):
    """A generic user-facing connectivity message."""

    message: str
    cause: str = ""


# ── Bus ──────────────────────────────────────────────────────────────────

Callback = Callable[[Any], Any]


class EventBus:
    """Type-keyed subscribe/notify mechanism.

    Subscribing to :class:`Event` receives every event.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[Type[Event], List[Callback]] = defaultdict(list)
        self._background_tasks: Set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: Type[Event], callback: Callback) -> Callable[[], None]:
        """Register *callback* for *event_type*; returns an unsubscribe function."""
        self._subscribers[event_type].append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers[event_type].remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event: Event) -> None:
        """Deliver *event* to matching subscribers without waiting on them."""
        callbacks = self._callbacks_for(event)
        if not callbacks:
            return
        loop = _running_loop()
        for cb in callbacks:
            if loop is None:
                self._invoke(cb, event)
            else:
                loop.call_soon(self._invoke, cb, event)

    @property
    def pending(self) -> int:
        """Number of coroutine callbacks still running."""
        return len(self._background_tasks)

    def _callbacks_for(self, event: Event) -> List[Callback]:
        matched: List[Callback] = []
        for event_type, callbacks in self._subscribers.items():
            if isinstance(event, event_type):
                matched.extend(callbacks)
        return matched

    def _invoke(self, cb: Callback, event: Event) -> None:
        try:
            result = cb(event)
        except Exception:
            logger.debug("Event callback error for %s", type(event).__name__, exc_info=True)
            return
        if asyncio.iscoroutine(result):
            loop = _running_loop()
            if loop is None:
                result.close()
                logger.debug("Dropped async callback for %s: no running loop", type(event).__name__)
                return
            task = loop.create_task(result)
            self._background_tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Async event callback error", exc_info=exc)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
