"""Refresh protocol — exchanges the refresh token for a new credential pair.

This is the privileged path that handles 401s for everyone else, so it talks
to the transport directly and never goes back through the pipeline.

Concurrent callers share one in-flight refresh: the first caller to need it
performs the exchange and every other caller awaits that same outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from apiguard.auth.store import Credential, CredentialStore
from apiguard.constants import DEFAULT_REFRESH_PATH
from apiguard.envelope import TokenPair, unwrap
from apiguard.errors import RefreshFailed
from apiguard.events import EventBus, SessionExpired

logger = logging.getLogger(__name__)


class RefreshProtocol:
    """Single-flight token refresh.

    Parameters
    ----------
    http:
        Transport shared with the pipeline. Must not carry a default
        ``Authorization`` header.
    store:
        Credential store read for the refresh token and updated on success.
    refresh_path:
        Endpoint path relative to the client's base URL.
    events:
        Optional bus that receives :class:`SessionExpired` on failure.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: CredentialStore,
        *,
        refresh_path: str = DEFAULT_REFRESH_PATH,
        events: Optional[EventBus] = None,
    ) -> None:
        self._http = http
        self._store = store
        self._refresh_path = refresh_path
        self._events = events
        self._inflight: Optional[asyncio.Future[Credential]] = None
        self._exchanges = 0

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def exchanges(self) -> int:
        """Refresh requests actually sent since construction."""
        return self._exchanges

    async def refresh(self, stale_access_token: Optional[str] = None) -> Credential:
        """Obtain a fresh credential or raise :class:`RefreshFailed`.

        *stale_access_token* is the token the caller's rejected request
        carried.  If the store already holds a different access token, a
        concurrent refresh has completed and that credential is returned
        without another exchange.
        """
        current = self._store.get()
        if (
            stale_access_token is not None
            and current.access_token is not None
            and current.access_token != stale_access_token
            and not self.in_progress
        ):
            logger.debug("Access token already rotated; skipping refresh")
            return current

        if not self.in_progress:
            # No await between the check and the assignment: other tasks on
            # this loop cannot interleave here.
            self._inflight = asyncio.ensure_future(self._perform())
            self._inflight.add_done_callback(_consume_exception)
        else:
            logger.debug("Joining in-flight token refresh")
        return await asyncio.shield(self._inflight)  # type: ignore[arg-type]

    async def _perform(self) -> Credential:
        refresh_token = self._store.get().refresh_token
        if not refresh_token:
            logger.info("No refresh token available")
            self._fail("missing refresh token")
            raise RefreshFailed("No refresh token available")

        self._exchanges += 1
        logger.info("Attempting to refresh access token (exchange #%d)...", self._exchanges)
        try:
            resp = await self._http.post(
                self._refresh_path,
                json={"refresh_token": refresh_token},
            )
        except httpx.HTTPError as exc:
            logger.warning("Error refreshing token: %s", type(exc).__name__)
            self._fail("refresh request failed")
            raise RefreshFailed("Token refresh request failed", orig_exc=exc) from exc

        if not resp.is_success:
            logger.info("Token refresh failed (HTTP %d)", resp.status_code)
            self._fail(f"refresh rejected ({resp.status_code})")
            raise RefreshFailed(f"Token refresh rejected with HTTP {resp.status_code}")

        try:
            tokens = TokenPair.model_validate(unwrap(resp.json()))
        except (ValueError, ValidationError) as exc:
            self._fail("malformed refresh response")
            raise RefreshFailed("Token refresh returned a malformed body", orig_exc=exc) from exc

        self._store.set(
            Credential(access_token=tokens.access_token, refresh_token=tokens.refresh_token),
            reason="refreshed",
        )
        logger.info("Token refreshed successfully")
        return self._store.get()

    def _fail(self, reason: str) -> None:
        self._store.clear(reason=reason)
        if self._events is not None:
            self._events.publish(SessionExpired(reason=reason))


def _consume_exception(fut: "asyncio.Future[Credential]") -> None:
    # Every waiter may have been cancelled; mark the outcome as retrieved.
    if not fut.cancelled():
        fut.exception()
