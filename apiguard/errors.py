"""
Defines project-specific exception classes.

Every failure the request pipeline reports is a :class:`PipelineError`
subclass carrying a stable ``kind`` tag so callers can branch on it.
"""
from typing import Any, Optional

from apiguard.envelope import ErrorEnvelope, parse_error_body


class ApiGuardError(Exception):
    """Base class for all custom exceptions in apiguard."""
    pass


class ConfigurationError(ApiGuardError):
    """Raised when loading or validating the configuration file fails."""
    pass


class StorageError(ApiGuardError):
    """Raised when the credential storage backend cannot be read or written."""
    pass


class PipelineError(ApiGuardError):
    """Base class for failures surfaced by the request pipeline."""

    kind: str = "pipeline_error"


class NetworkUnreachable(PipelineError):
    """No response was obtained (connect error, timeout or cancellation)."""

    kind = "network_unreachable"

    def __init__(self,
                 message: str = "Network unreachable",
                 orig_exc: Optional[BaseException] = None):
        self.orig_exc = orig_exc
        full_msg = message
        if orig_exc is not None:
            full_msg += f" (original error: {type(orig_exc).__name__})"
        super().__init__(full_msg)


class ServerUnhealthy(PipelineError):
    """The health monitor reports the backend down; no call was attempted."""

    kind = "server_unhealthy"

    def __init__(self, message: str = "SERVER_UNHEALTHY: Server is unavailable"):
        super().__init__(message)


class HttpStatusError(PipelineError):
    """The server answered with a non-2xx status.

    ``body`` is the decoded response payload exactly as the server sent it
    (JSON value, text, or ``None`` for an empty body).  :attr:`envelope`
    reads it as a structured ``{code, message, details}`` error when it has
    that shape.
    """

    kind = "http_status"

    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP ERROR: {status_code}")

    @property
    def envelope(self) -> Optional[ErrorEnvelope]:
        return parse_error_body(self.body)

    @property
    def error_code(self) -> Any:
        envelope = self.envelope
        return envelope.code if envelope is not None else None

    @property
    def details(self) -> Any:
        envelope = self.envelope
        return envelope.details if envelope is not None else None


class RefreshFailed(PipelineError):
    """The refresh token was missing or rejected, or the refresh call failed.

    The credential store has been cleared by the time this is raised.
    """

    kind = "refresh_failed"

    def __init__(self,
                 message: str = "Token refresh failed",
                 orig_exc: Optional[BaseException] = None):
        self.orig_exc = orig_exc
        super().__init__(message)
