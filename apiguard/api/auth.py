"""Authentication endpoints: register, login, current user, logout."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from apiguard.auth.store import Credential, CredentialStore
from apiguard.envelope import TokenPair, UserProfile, unwrap
from apiguard.errors import HttpStatusError
from apiguard.pipeline import RequestOptions, RequestPipeline

logger = logging.getLogger(__name__)

# Credential exchanges must not carry a possibly stale bearer token: a 401
# there means bad credentials, not an expired session.
def _anonymous() -> RequestOptions:
    return RequestOptions(skip_auth=True)


class AuthAPI:
    """Account endpoints on top of the request pipeline.

    Parameters
    ----------
    pipeline:
        Executor for every call.
    store:
        Credential store updated on login and cleared on logout.
    prefix:
        Path prefix of the authentication routes.
    """

    def __init__(self, pipeline: RequestPipeline, store: CredentialStore, *, prefix: str = "/auth") -> None:
        self._pipeline = pipeline
        self._store = store
        self._prefix = prefix.rstrip("/")

    async def register(self, user_data: Mapping[str, Any]) -> Any:
        """Create an account. Does not log in; call :meth:`login` afterwards."""
        logger.info("Registering account for %s", user_data.get("email", "<no email>"))
        payload = await self._pipeline.post(f"{self._prefix}/register", dict(user_data), _anonymous())
        return unwrap(payload)

    async def login(self, credentials: Mapping[str, Any]) -> TokenPair:
        """Exchange email/password for a token pair and store it."""
        payload = await self._pipeline.post(f"{self._prefix}/login", dict(credentials), _anonymous())
        try:
            tokens = TokenPair.model_validate(unwrap(payload))
        except ValidationError as exc:
            raise HttpStatusError(200, payload) from exc
        if not tokens.access_token:
            raise HttpStatusError(200, payload)

        self._store.set(
            Credential(access_token=tokens.access_token, refresh_token=tokens.refresh_token),
            reason="login",
        )
        if tokens.user:
            self._store.set_user(tokens.user)
        logger.info("Logged in as %s", credentials.get("email", "<unknown>"))
        return tokens

    async def get_current_user(self) -> Optional[UserProfile]:
        """``GET /users/me``; ``None`` without a network call when logged out."""
        if not self._store.is_authenticated():
            logger.debug("No access token found; skipping /users/me")
            return None
        payload = unwrap(await self._pipeline.get("/users/me"))
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            payload = payload["user"]
        profile = UserProfile.model_validate(payload if isinstance(payload, dict) else {})
        self._store.set_user(profile.model_dump(exclude_none=True))
        return profile

    def cached_user(self) -> Optional[Dict[str, Any]]:
        return self._store.get_user()

    def logout(self) -> None:
        """Forget the session locally. The server is not contacted."""
        self._store.clear(reason="logout")

    def is_logged_in(self) -> bool:
        return self._store.is_authenticated()
