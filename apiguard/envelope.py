"""Response envelope models and the single unwrapping step.

Every endpoint client decodes its payload through :func:`unwrap` and one of
the models below instead of guessing at response shapes at each call site.

Success payloads may arrive bare (``{"access_token": ...}``) or wrapped
(``{"success": true, "data": {...}}``); :func:`unwrap` returns the inner
object in both cases.  Error payloads follow ``{code, message, details?}``,
either at the top level or under an ``"error"`` key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Keys a wrapping envelope may carry besides "data".
_WRAPPER_KEYS = frozenset({"data", "success", "message", "status", "meta", "pagination"})


class TokenPair(BaseModel):
    """Body of a login/register/refresh response."""

    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None


class HealthReport(BaseModel):
    """Body of ``GET /health`` (or the record synthesized from a fallback probe)."""

    model_config = ConfigDict(extra="allow")

    status: str = "OK"
    timestamp: Optional[str] = None
    uptime: float = 0
    source: str = "health"

    @classmethod
    def synthesized(cls, source: str = "api-fallback") -> "HealthReport":
        return cls(
            status="OK",
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime=0,
            source=source,
        )


class UserProfile(BaseModel):
    """Body of ``GET /users/me``."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Any] = None
    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.email or "unknown"


class ErrorEnvelope(BaseModel):
    """Typed view of a ``{code, message, details?}`` error payload.

    The payload itself stays untouched in ``HttpStatusError.body``; this
    model only reads it.
    """

    model_config = ConfigDict(extra="allow")

    code: Any = None
    message: Optional[str] = None
    details: Any = Field(default=None)

    @property
    def field_errors(self) -> Dict[str, str]:
        """Field-level validation messages keyed by field name, when present."""
        errors: Dict[str, str] = {}
        if isinstance(self.details, list):
            for item in self.details:
                if isinstance(item, dict) and "field" in item:
                    errors[str(item["field"])] = str(item.get("message", ""))
        elif isinstance(self.details, dict):
            errors = {str(k): str(v) for k, v in self.details.items()}
        return errors


def unwrap(payload: Any) -> Any:
    """Strip an optional ``{"data": ...}`` wrapper."""
    if isinstance(payload, dict) and "data" in payload and set(payload) <= _WRAPPER_KEYS:
        return payload["data"]
    return payload


def parse_error_body(payload: Any) -> Optional[ErrorEnvelope]:
    """Read *payload* as an :class:`ErrorEnvelope`, or ``None`` for any other shape.

    The envelope may sit at the top level or under an ``"error"`` key.
    *payload* is never modified.
    """
    candidate = payload
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        candidate = payload["error"]
    if not (isinstance(candidate, dict) and ("message" in candidate or "code" in candidate)):
        return None
    try:
        return ErrorEnvelope.model_validate(candidate)
    except ValidationError:
        return None
