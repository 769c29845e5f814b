"""Client facade: owns and wires every collaborator of the request pipeline.

Typical use::

    async with ApiClient(resolve_config()) as api:
        await api.auth.login({"email": "...", "password": "..."})
        me = await api.get("/users/me")
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from apiguard.api import AuthAPI, HealthAPI, UploadAPI
from apiguard.auth import CredentialStorage, CredentialStore, RefreshProtocol, create_storage
from apiguard.config import ClientConfig
from apiguard.constants import CLIENT_NAME, CLIENT_VERSION
from apiguard.events import EventBus
from apiguard.health import HealthMonitor, HealthStatus
from apiguard.pipeline import MultipartUpload, RequestOptions, RequestPipeline

logger = logging.getLogger(__name__)


class ApiClient:
    """Async facade over the resilient request pipeline.

    Parameters
    ----------
    config:
        Validated configuration; built-in defaults when omitted.
    storage:
        Credential backend overriding ``config.storage``.
    transport:
        httpx transport override (tests pass an ``httpx.MockTransport``).
    events:
        Bus shared with the caller; a private one is created otherwise.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        storage: Optional[CredentialStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.events = events or EventBus()

        if storage is None:
            storage = create_storage(self.config.storage.backend, self.config.storage.path)
        self.store = CredentialStore(storage, events=self.events)

        self._http = httpx.AsyncClient(
            base_url=self.config.api.base_url,
            headers={"User-Agent": f"{CLIENT_NAME}/{CLIENT_VERSION}"},
            timeout=self.config.api.timeout,
            transport=transport,
        )

        health = self.config.health
        self.health = HealthAPI(
            self._http,
            health_url=health.url,
            fallback_path=health.fallback_path,
            timeout=health.probe_timeout,
        )
        self.monitor = HealthMonitor(
            self.health,
            interval=health.interval,
            max_retries=health.max_retries,
            retry_delay=health.retry_delay,
            probe_timeout=health.probe_timeout,
            events=self.events,
        )
        self.refresher = RefreshProtocol(
            self._http,
            self.store,
            refresh_path=self.config.auth.refresh_path,
            events=self.events,
        )
        self.pipeline = RequestPipeline(
            self._http,
            self.store,
            self.monitor,
            self.refresher,
            events=self.events,
        )
        self.auth = AuthAPI(self.pipeline, self.store)
        self.uploads = UploadAPI(self.pipeline)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start background health monitoring (when enabled)."""
        if self.config.health.enabled:
            self.monitor.start()
        logger.info("ApiClient ready for %s", self.config.api.base_url)

    async def close(self) -> None:
        """Stop monitoring and release the connection pool."""
        await self.monitor.stop()
        if not self._http.is_closed:
            await self._http.aclose()
        logger.info("ApiClient closed")

    async def __aenter__(self) -> "ApiClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Requests ─────────────────────────────────────────────────────────

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        options: Optional[RequestOptions] = None,
    ) -> Any:
        return await self.pipeline.execute(path, method, body, options)

    async def get(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.get(path, options)

    async def post(self, path: str, data: Any = None, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.post(path, data, options)

    async def put(self, path: str, data: Any = None, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.put(path, data, options)

    async def patch(self, path: str, data: Any = None, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.patch(path, data, options)

    async def delete(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.delete(path, options)

    async def post_form(self, path: str, upload: MultipartUpload, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.post_form(path, upload, options)

    # ── Health & session ─────────────────────────────────────────────────

    def get_server_status(self) -> HealthStatus:
        return self.monitor.status()

    async def refresh_health_check(self) -> HealthStatus:
        """Probe now instead of waiting for the next scheduled check."""
        return await self.monitor.check_now()

    def is_authenticated(self) -> bool:
        return self.store.is_authenticated()

    def clear_auth(self) -> None:
        self.store.clear(reason="logout")
