"""Tests for the request pipeline: health gate, auth, refresh-and-retry."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from apiguard.auth.store import Credential
from apiguard.envelope import ErrorEnvelope
from apiguard.errors import (
    HttpStatusError,
    NetworkUnreachable,
    RefreshFailed,
    ServerUnhealthy,
)
from apiguard.events import AuthenticationChanged, ConnectivityNotice, SessionExpired
from apiguard.pipeline import MultipartUpload, RequestOptions

from conftest import build_stack

ME = "/api/me"
REFRESH = "/api/auth/refresh"


def _ok(payload=None, status=200) -> httpx.Response:
    if payload is None:
        return httpx.Response(status)
    return httpx.Response(status, json=payload)


# ── Health gate ──────────────────────────────────────────────────────────


class TestHealthGate:
    def test_unhealthy_refuses_without_transport_call(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}), healthy=False)

        async def scenario() -> None:
            with pytest.raises(ServerUnhealthy) as exc_info:
                await stack.pipeline.get("/me")
            assert exc_info.value.kind == "server_unhealthy"
            await asyncio.sleep(0)

        asyncio.run(scenario())
        assert stack.requests == []
        notices = [e for e in stack.received if isinstance(e, ConnectivityNotice)]
        assert notices and notices[0].cause == "server_unhealthy"

    def test_gate_can_be_bypassed(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}), healthy=False)
        result = asyncio.run(
            stack.pipeline.get("/me", RequestOptions(requires_health_check=False))
        )
        assert result == {"ok": True}
        assert len(stack.requests) == 1


# ── Authorization header ─────────────────────────────────────────────────


class TestAuthorization:
    def test_bearer_header_attached(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}), credential=Credential("T1", "R1"))
        asyncio.run(stack.pipeline.get("/me"))
        assert stack.requests[0].headers["Authorization"] == "Bearer T1"

    def test_no_header_without_token(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}))
        asyncio.run(stack.pipeline.get("/me"))
        assert "Authorization" not in stack.requests[0].headers

    def test_skip_auth_omits_header(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}), credential=Credential("T1", "R1"))
        asyncio.run(stack.pipeline.get("/me", RequestOptions(skip_auth=True)))
        assert "Authorization" not in stack.requests[0].headers

    def test_path_resolves_against_base_url(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}))
        asyncio.run(stack.pipeline.get("/users/me"))
        assert str(stack.requests[0].url) == "https://api.test/api/users/me"

    def test_base_url_override(self) -> None:
        stack = build_stack(lambda r: _ok({"ok": True}))
        asyncio.run(stack.pipeline.get("/ping", RequestOptions(base_url="https://other.test/v2/")))
        assert str(stack.requests[0].url) == "https://other.test/v2/ping"


# ── Bodies and responses ─────────────────────────────────────────────────


class TestBodies:
    def test_json_body_serialized(self) -> None:
        stack = build_stack(lambda r: _ok({"id": 1}, status=201))
        result = asyncio.run(stack.pipeline.post("/items", {"name": "x"}))
        request = stack.requests[0]
        assert result == {"id": 1}
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"name": "x"}

    def test_empty_success_body_returns_none(self) -> None:
        stack = build_stack(lambda r: _ok(status=204))
        assert asyncio.run(stack.pipeline.delete("/items/1")) is None

    def test_plain_text_success_body(self) -> None:
        stack = build_stack(lambda r: httpx.Response(200, text="pong"))
        assert asyncio.run(stack.pipeline.get("/ping")) == "pong"

    def test_multipart_passes_through_untouched(self) -> None:
        stack = build_stack(lambda r: _ok({"url": "/img/a.png"}))
        image = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
        upload = MultipartUpload(files={"file": ("a.png", image, "image/png")})
        options = RequestOptions(headers={"Content-Type": "application/json"})

        result = asyncio.run(stack.pipeline.post_form("/upload/images", upload, options))

        request = stack.requests[0]
        assert result == {"url": "/img/a.png"}
        assert request.headers["Content-Type"].startswith("multipart/form-data; boundary=")
        assert image in request.content
        assert b'filename="a.png"' in request.content

    def test_verbs(self) -> None:
        stack = build_stack(lambda r: _ok({"m": r.method}))

        async def scenario() -> None:
            assert await stack.pipeline.put("/x", {"a": 1}) == {"m": "PUT"}
            assert await stack.pipeline.patch("/x", {"a": 1}) == {"m": "PATCH"}
            assert await stack.pipeline.execute("/x", "get") == {"m": "GET"}

        asyncio.run(scenario())


class TestErrors:
    def test_structured_error_envelope(self) -> None:
        payload = {
            "code": "VALIDATION_ERROR",
            "message": "Invalid input",
            "details": [{"field": "email", "message": "already taken"}],
        }
        stack = build_stack(lambda r: _ok(payload, status=422))
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(stack.pipeline.post("/auth/register", {"email": "a@b.c"}))
        err = exc_info.value
        assert err.status_code == 422
        assert str(err) == "HTTP ERROR: 422"
        assert err.body == payload
        assert isinstance(err.envelope, ErrorEnvelope)
        assert err.error_code == "VALIDATION_ERROR"
        assert err.envelope.field_errors == {"email": "already taken"}

    def test_nested_error_envelope(self) -> None:
        payload = {"success": False, "error": {"code": 404, "message": "Not found"}}
        stack = build_stack(lambda r: _ok(payload, status=404))
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(stack.pipeline.get("/missing"))
        assert exc_info.value.body == payload
        assert exc_info.value.error_code == 404
        assert exc_info.value.envelope.message == "Not found"

    def test_error_body_delivered_verbatim(self) -> None:
        payload = {"success": False, "request_id": "abc", "error": {"code": 1001, "message": "x"}}
        stack = build_stack(lambda r: _ok(payload, status=400))
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(stack.pipeline.get("/x"))
        err = exc_info.value
        assert err.body == payload
        assert err.body["request_id"] == "abc"
        assert err.error_code == 1001
        assert isinstance(err.error_code, int)

    def test_unstructured_error_body_kept(self) -> None:
        stack = build_stack(lambda r: httpx.Response(502, text="Bad Gateway"))
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(stack.pipeline.get("/x"))
        assert exc_info.value.body == "Bad Gateway"
        assert exc_info.value.envelope is None
        assert exc_info.value.error_code is None

    def test_transport_error_is_network_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        stack = build_stack(handler)

        async def scenario() -> None:
            with pytest.raises(NetworkUnreachable) as exc_info:
                await stack.pipeline.get("/me")
            assert isinstance(exc_info.value.orig_exc, httpx.ConnectError)
            await asyncio.sleep(0)

        asyncio.run(scenario())
        assert any(isinstance(e, ConnectivityNotice) for e in stack.received)

    def test_timeout_is_network_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        stack = build_stack(handler)
        with pytest.raises(NetworkUnreachable):
            asyncio.run(stack.pipeline.get("/slow", RequestOptions(timeout=0.5)))

    def test_cancel_event_aborts_call(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return _ok({"late": True})

        stack = build_stack(handler)

        async def scenario() -> None:
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.01, cancel.set)
            with pytest.raises(NetworkUnreachable, match="cancelled"):
                await asyncio.wait_for(
                    stack.pipeline.get("/slow", RequestOptions(cancel_event=cancel)),
                    timeout=2,
                )

        asyncio.run(scenario())


# ── 401 → refresh → retry ────────────────────────────────────────────────


class TestRefreshAndRetry:
    def test_refresh_then_retry_succeeds(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == REFRESH:
                return _ok({"access_token": "T2"})
            if request.headers.get("Authorization") == "Bearer T2":
                return _ok({"ok": True})
            return _ok({"message": "expired"}, status=401)

        stack = build_stack(handler, credential=Credential("T1", "R1"))
        result = asyncio.run(stack.pipeline.get("/me"))

        assert result == {"ok": True}
        assert stack.store.get() == Credential("T2", "R1")
        assert [r.headers["Authorization"] for r in stack.calls_to(ME)] == ["Bearer T1", "Bearer T2"]
        assert stack.refresh.exchanges == 1

    def test_retry_happens_exactly_once(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == REFRESH:
                return _ok({"access_token": "T2", "refresh_token": "R2"})
            return _ok({"message": "nope"}, status=401)

        stack = build_stack(handler, credential=Credential("T1", "R1"))
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(stack.pipeline.get("/me"))

        assert exc_info.value.status_code == 401
        assert len(stack.calls_to(ME)) == 2
        assert len(stack.calls_to(REFRESH)) == 1
        # The refreshed pair is kept; only the retried call failed.
        assert stack.store.get() == Credential("T2", "R2")

    def test_refresh_rejected_clears_session(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == REFRESH:
                return _ok({"message": "invalid refresh token"}, status=400)
            return _ok({"message": "expired"}, status=401)

        stack = build_stack(handler, credential=Credential("T1", "R1"))

        async def scenario() -> None:
            with pytest.raises(RefreshFailed) as exc_info:
                await stack.pipeline.get("/me")
            assert exc_info.value.kind == "refresh_failed"
            await asyncio.sleep(0)

        asyncio.run(scenario())
        assert stack.store.get().is_empty
        assert not stack.store.is_authenticated()
        assert len(stack.calls_to(ME)) == 1
        assert any(isinstance(e, SessionExpired) for e in stack.received)
        assert any(isinstance(e, AuthenticationChanged) and not e.authenticated for e in stack.received)

    def test_missing_refresh_token_fails_without_network(self) -> None:
        stack = build_stack(lambda r: _ok(status=401), credential=Credential("T1"))
        with pytest.raises(RefreshFailed):
            asyncio.run(stack.pipeline.get("/me"))
        assert stack.calls_to(REFRESH) == []
        assert stack.store.get().is_empty

    def test_401_without_auth_is_not_refreshed(self) -> None:
        stack = build_stack(lambda r: _ok({"message": "bad credentials"}, status=401),
                            credential=Credential("T1", "R1"))
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(stack.pipeline.post("/auth/login", {"email": "a"}, RequestOptions(skip_auth=True)))
        assert exc_info.value.status_code == 401
        assert stack.calls_to(REFRESH) == []
        assert stack.store.is_authenticated()

    def test_401_when_logged_out_is_not_refreshed(self) -> None:
        stack = build_stack(lambda r: _ok(status=401))
        with pytest.raises(HttpStatusError):
            asyncio.run(stack.pipeline.get("/me"))
        assert stack.calls_to(REFRESH) == []

    def test_concurrent_401s_share_one_refresh(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == REFRESH:
                await asyncio.sleep(0.02)
                return _ok({"access_token": "T2"})
            if request.headers.get("Authorization") == "Bearer T2":
                return _ok({"ok": True})
            return _ok(status=401)

        stack = build_stack(handler, credential=Credential("T1", "R1"))

        async def scenario():
            return await asyncio.gather(*(stack.pipeline.get("/me") for _ in range(5)))

        results = asyncio.run(scenario())
        assert results == [{"ok": True}] * 5
        assert len(stack.calls_to(REFRESH)) == 1
        assert stack.refresh.exchanges == 1
