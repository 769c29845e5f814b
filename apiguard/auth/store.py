"""Credential store — the process-wide access/refresh token pair.

The store is an explicit object owned by :class:`~apiguard.client.ApiClient`
and injected into the pipeline and refresh protocol; nothing here is global.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from apiguard.auth.storage import CredentialStorage, MemoryStorage
from apiguard.constants import ACCESS_TOKEN_KEY, CREDENTIAL_KEYS, REFRESH_TOKEN_KEY, USER_KEY
from apiguard.display.logging_config import secret_redaction_filter
from apiguard.events import AuthenticationChanged, EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Snapshot of the stored token pair; either field may be absent."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @classmethod
    def empty(cls) -> "Credential":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None

    def __repr__(self) -> str:
        return (
            f"Credential(access_token={_mask(self.access_token)}, "
            f"refresh_token={_mask(self.refresh_token)})"
        )


class CredentialStore:
    """Persists and exposes the current credential pair.

    Parameters
    ----------
    storage:
        Durable backend; defaults to :class:`MemoryStorage`.
    events:
        Optional bus that receives :class:`AuthenticationChanged`.
    """

    def __init__(
        self,
        storage: Optional[CredentialStorage] = None,
        *,
        events: Optional[EventBus] = None,
    ) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._events = events
        self._lock = threading.RLock()
        self._cached = self._read()

    @property
    def storage(self) -> CredentialStorage:
        return self._storage

    # ── Token pair ───────────────────────────────────────────────────────

    def set(self, credential: Credential, *, reason: str = "stored") -> None:
        """Replace the stored pair; fields that are ``None`` keep their old value."""
        with self._lock:
            merged = Credential(
                access_token=credential.access_token or self._cached.access_token,
                refresh_token=credential.refresh_token or self._cached.refresh_token,
            )
            self._storage.update(
                {
                    ACCESS_TOKEN_KEY: merged.access_token,
                    REFRESH_TOKEN_KEY: merged.refresh_token,
                }
            )
            self._cached = merged
        for token in (merged.access_token, merged.refresh_token):
            if token:
                secret_redaction_filter.register(token)
        logger.debug(
            "Credentials updated (access=%s, refresh=%s)",
            credential.access_token is not None,
            credential.refresh_token is not None,
        )
        self._publish(AuthenticationChanged(authenticated=merged.access_token is not None, reason=reason))

    def get(self) -> Credential:
        """Return the current snapshot (``Credential.empty()`` when nothing is stored)."""
        return self._cached

    def clear(self, *, reason: str = "logout") -> None:
        """Remove every stored key. Calling it on an empty store is a no-op."""
        with self._lock:
            was_authenticated = self._cached.access_token is not None
            self._storage.update({key: None for key in CREDENTIAL_KEYS})
            self._cached = Credential.empty()
        if was_authenticated:
            logger.info("Credentials cleared (%s)", reason)
            self._publish(AuthenticationChanged(authenticated=False, reason=reason))

    def is_authenticated(self) -> bool:
        """True iff an access token is present. Never touches the backend."""
        return self._cached.access_token is not None

    def reload(self) -> Credential:
        """Re-read the backend (e.g. after another process logged in)."""
        with self._lock:
            self._cached = self._read()
            return self._cached

    # ── Cached user profile ──────────────────────────────────────────────

    def set_user(self, profile: Dict[str, Any]) -> None:
        with self._lock:
            self._storage.set(USER_KEY, json.dumps(profile))

    def get_user(self) -> Optional[Dict[str, Any]]:
        raw = self._storage.get(USER_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored user profile is not valid JSON; ignoring it")
            return None

    # ── Internals ────────────────────────────────────────────────────────

    def _read(self) -> Credential:
        credential = Credential(
            access_token=self._storage.get(ACCESS_TOKEN_KEY) or None,
            refresh_token=self._storage.get(REFRESH_TOKEN_KEY) or None,
        )
        for token in (credential.access_token, credential.refresh_token):
            if token:
                secret_redaction_filter.register(token)
        return credential

    def _publish(self, event: AuthenticationChanged) -> None:
        if self._events is not None:
            self._events.publish(event)


def _mask(value: Optional[str], visible: int = 4) -> str:
    """Mask all but the last *visible* characters."""
    if value is None:
        return "None"
    if len(value) <= visible:
        return "****"
    return "*" * (len(value) - visible) + value[-visible:]
