"""Shared builders for pipeline tests.

Everything talks to an ``httpx.MockTransport``; no test opens a socket.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional
from unittest.mock import Mock

import httpx

from apiguard.auth.refresh import RefreshProtocol
from apiguard.auth.storage import MemoryStorage
from apiguard.auth.store import Credential, CredentialStore
from apiguard.events import Event, EventBus
from apiguard.pipeline import RequestPipeline

BASE_URL = "https://api.test/api"
HEALTH_URL = "https://api.test/health"


@dataclass
class Stack:
    http: httpx.AsyncClient
    store: CredentialStore
    monitor: Mock
    refresh: RefreshProtocol
    pipeline: RequestPipeline
    events: EventBus
    received: List[Event]
    requests: List[httpx.Request]

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def build_stack(
    handler: Callable[[httpx.Request], Any],
    *,
    healthy: bool = True,
    credential: Optional[Credential] = None,
) -> Stack:
    """Wire a pipeline against *handler*; every request is recorded."""
    requests: List[httpx.Request] = []

    async def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        result = handler(request)
        if not isinstance(result, httpx.Response):
            result = await result
        return result

    events = EventBus()
    received: List[Event] = []
    events.subscribe(Event, received.append)

    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(recording))
    store = CredentialStore(MemoryStorage(), events=events)
    if credential is not None:
        store.set(credential)
    received.clear()

    monitor = Mock()
    monitor.is_healthy.return_value = healthy

    refresh = RefreshProtocol(http, store, events=events)
    pipeline = RequestPipeline(http, store, monitor, refresh, events=events)
    return Stack(http, store, monitor, refresh, pipeline, events, received, requests)
