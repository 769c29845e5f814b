"""Resilient authenticated request pipeline.

Every call made through :class:`RequestPipeline` goes through the same
fixed sequence:

1. health gate: refuse immediately while the monitor reports UNHEALTHY
2. attach ``Authorization: Bearer <access token>`` from the credential store
3. serialize the body (JSON, or multipart for uploads)
4. send; no response at all becomes :class:`NetworkUnreachable`
5. a first 401 on an authenticated call runs the refresh protocol and the
   request is re-sent exactly once with the new token
6. any other non-2xx becomes :class:`HttpStatusError` carrying the payload as received
7. 2xx returns the decoded body unchanged
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

import httpx

from apiguard.constants import SERVER_UNAVAILABLE_NOTICE
from apiguard.errors import HttpStatusError, NetworkUnreachable, ServerUnhealthy
from apiguard.events import ConnectivityNotice, EventBus

if TYPE_CHECKING:
    from apiguard.auth.refresh import RefreshProtocol
    from apiguard.auth.store import CredentialStore
    from apiguard.health.monitor import HealthMonitor

logger = logging.getLogger(__name__)


@dataclass
class RequestOptions:
    """Per-call knobs.

    ``timeout`` overrides the client default for this call only;
    setting ``cancel_event`` aborts the in-flight call.  Both surface as
    :class:`NetworkUnreachable`.
    """

    requires_health_check: bool = True
    skip_auth: bool = False
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Mapping[str, Any]] = None
    timeout: Optional[float] = None
    cancel_event: Optional[asyncio.Event] = None
    base_url: Optional[str] = None


@dataclass
class MultipartUpload:
    """A multipart/form-data body.

    ``files`` uses the httpx shape: ``{"file": (filename, bytes_or_fileobj, content_type)}``.
    The bytes are handed to the transport untouched.
    """

    files: Mapping[str, Any]
    data: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestContext:
    """One logical call. ``is_retry_after_refresh`` is set only on the single re-send."""

    path: str
    method: str
    body: Any = None
    requires_auth: bool = True
    is_retry_after_refresh: bool = False


class RequestPipeline:
    """Request executor wired to the health monitor, credential store and refresh protocol.

    Parameters
    ----------
    http:
        Transport. Its ``base_url`` is the API root; it must not carry a
        default ``Authorization`` header.
    store:
        Source of the bearer token.
    monitor:
        Health gate consulted before every call.
    refresh:
        Refresh protocol invoked on an eligible 401.
    events:
        Optional bus receiving :class:`ConnectivityNotice`.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: CredentialStore,
        monitor: HealthMonitor,
        refresh: RefreshProtocol,
        *,
        events: Optional[EventBus] = None,
    ) -> None:
        self._http = http
        self._store = store
        self._monitor = monitor
        self._refresh = refresh
        self._events = events

    # ── Public API ───────────────────────────────────────────────────────

    async def execute(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        options: Optional[RequestOptions] = None,
    ) -> Any:
        """Run one call through the pipeline and return the decoded 2xx body.

        Raises:
            ServerUnhealthy: the health gate is closed; nothing was sent.
            NetworkUnreachable: no response (transport error, timeout, cancel).
            RefreshFailed: a 401 could not be recovered; the session is gone.
            HttpStatusError: any other failure status, including a 401 on the re-send.
        """
        options = options or RequestOptions()
        ctx = RequestContext(
            path=path,
            method=method.upper(),
            body=body,
            requires_auth=not options.skip_auth,
        )

        if options.requires_health_check and not self._monitor.is_healthy():
            logger.warning("%s %s refused: server is unhealthy", ctx.method, ctx.path)
            self._publish(ConnectivityNotice(message=SERVER_UNAVAILABLE_NOTICE, cause="server_unhealthy"))
            raise ServerUnhealthy()

        response, sent_token = await self._send(ctx, options)

        if self._should_refresh(ctx, response, sent_token):
            logger.info("%s %s got 401; refreshing credentials", ctx.method, ctx.path)
            await self._refresh.refresh(stale_access_token=sent_token)
            ctx = replace(ctx, is_retry_after_refresh=True)
            response, sent_token = await self._send(ctx, options)

        return self._interpret(ctx, response)

    async def get(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        return await self.execute(path, "GET", None, options)

    async def post(self, path: str, data: Any = None, options: Optional[RequestOptions] = None) -> Any:
        return await self.execute(path, "POST", data, options)

    async def put(self, path: str, data: Any = None, options: Optional[RequestOptions] = None) -> Any:
        return await self.execute(path, "PUT", data, options)

    async def patch(self, path: str, data: Any = None, options: Optional[RequestOptions] = None) -> Any:
        return await self.execute(path, "PATCH", data, options)

    async def delete(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        return await self.execute(path, "DELETE", None, options)

    async def post_form(
        self,
        path: str,
        upload: MultipartUpload,
        options: Optional[RequestOptions] = None,
    ) -> Any:
        """POST a multipart body (file uploads)."""
        return await self.execute(path, "POST", upload, options)

    # ── Steps ────────────────────────────────────────────────────────────

    def _should_refresh(
        self,
        ctx: RequestContext,
        response: httpx.Response,
        sent_token: Optional[str],
    ) -> bool:
        return (
            response.status_code == 401
            and ctx.requires_auth
            and sent_token is not None
            and not ctx.is_retry_after_refresh
        )

    def _build_request(
        self,
        ctx: RequestContext,
        options: RequestOptions,
    ) -> Tuple[httpx.Request, Optional[str]]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        headers.update(options.headers)

        token: Optional[str] = None
        if ctx.requires_auth:
            token = self._store.get().access_token or None
            if token:
                headers["Authorization"] = f"Bearer {token}"

        body_kwargs: Dict[str, Any] = {}
        if isinstance(ctx.body, MultipartUpload):
            # httpx writes the boundary into Content-Type; a caller-supplied
            # value would break it.
            headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
            body_kwargs["files"] = ctx.body.files
            if ctx.body.data:
                body_kwargs["data"] = ctx.body.data
        elif isinstance(ctx.body, (bytes, bytearray)):
            body_kwargs["content"] = bytes(ctx.body)
        elif ctx.body is not None:
            body_kwargs["json"] = ctx.body

        url = ctx.path
        if options.base_url:
            url = options.base_url.rstrip("/") + ctx.path

        request = self._http.build_request(
            ctx.method,
            url,
            headers=headers,
            params=options.params,
            timeout=options.timeout if options.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            **body_kwargs,
        )
        return request, token

    async def _send(
        self,
        ctx: RequestContext,
        options: RequestOptions,
    ) -> Tuple[httpx.Response, Optional[str]]:
        request, token = self._build_request(ctx, options)
        logger.debug(
            "→ %s %s (auth=%s, retry=%s)",
            ctx.method,
            ctx.path,
            token is not None,
            ctx.is_retry_after_refresh,
        )
        try:
            if options.cancel_event is None:
                response = await self._http.send(request)
            else:
                response = await self._send_cancellable(request, options.cancel_event)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", ctx.method, ctx.path, type(exc).__name__)
            self._publish(ConnectivityNotice(message=SERVER_UNAVAILABLE_NOTICE, cause="network"))
            raise NetworkUnreachable(f"No response from {ctx.method} {ctx.path}", orig_exc=exc) from exc
        logger.debug("← %s %s %d", ctx.method, ctx.path, response.status_code)
        return response, token

    async def _send_cancellable(self, request: httpx.Request, cancel_event: asyncio.Event) -> httpx.Response:
        send_task = asyncio.ensure_future(self._http.send(request))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({send_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (send_task, cancel_task):
                if not task.done():
                    task.cancel()
        if send_task in done:
            return send_task.result()
        try:
            await send_task
        except (asyncio.CancelledError, httpx.HTTPError):
            pass
        logger.info("%s %s cancelled by caller", request.method, request.url.path)
        raise NetworkUnreachable(f"Request cancelled: {request.method} {request.url.path}")

    def _interpret(self, ctx: RequestContext, response: httpx.Response) -> Any:
        payload = _decode_body(response)
        if response.is_success:
            return payload
        logger.info("%s %s → HTTP %d", ctx.method, ctx.path, response.status_code)
        raise HttpStatusError(response.status_code, payload)

    def _publish(self, event: ConnectivityNotice) -> None:
        if self._events is not None:
            self._events.publish(event)


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
