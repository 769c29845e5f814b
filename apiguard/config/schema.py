"""Pydantic configuration models for apiguard.

Defines the validated config structure using the versioned v1 format::

    version: "1"
    api:
      base_url: https://spotify.f8team.dev/api
      timeout: 30
    health:
      url: https://spotify.f8team.dev/health
      interval: 30
    auth:
      refresh_path: /auth/refresh
    storage:
      backend: file
      path: ~/.config/apiguard/credentials.json
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from apiguard.constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_FALLBACK_PROBE_PATH,
    DEFAULT_HEALTH_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_REFRESH_PATH,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    DEFAULT_STORAGE_PATH,
)


def _check_http_url(v: str) -> str:
    v = v.strip().rstrip("/")
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"URL '{v}' must start with http:// or https://")
    return v


def _check_path(v: str) -> str:
    v = v.strip()
    if not v.startswith("/"):
        raise ValueError(f"Path '{v}' must start with '/'")
    return v


class ApiSettings(BaseModel):
    """Where the API lives and how long a call may take."""

    base_url: str = Field(default=DEFAULT_API_BASE_URL, description="API root URL.")
    timeout: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT,
        gt=0,
        description="Per-request timeout in seconds.",
    )

    @field_validator("base_url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _check_http_url(v)


class HealthSettings(BaseModel):
    """Health monitor probing schedule."""

    enabled: bool = Field(default=True, description="Run the background probe loop.")
    url: str = Field(default=DEFAULT_HEALTH_URL, description="Primary status endpoint URL.")
    fallback_path: Optional[str] = Field(
        default=DEFAULT_FALLBACK_PROBE_PATH,
        description="Secondary endpoint (resolved against the health URL origin) probed when the "
        "status endpoint fails. Set to null to disable.",
    )
    interval: float = Field(default=DEFAULT_CHECK_INTERVAL, gt=0)
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Accelerated re-probes scheduled after a failure.",
    )
    retry_delay: float = Field(default=DEFAULT_RETRY_DELAY, ge=0)
    probe_timeout: float = Field(default=DEFAULT_PROBE_TIMEOUT, gt=0)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _check_http_url(v)

    @field_validator("fallback_path")
    @classmethod
    def _validate_fallback(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _check_path(v)

    @model_validator(mode="after")
    def _retry_fits_interval(self) -> "HealthSettings":
        if self.max_retries and self.retry_delay >= self.interval:
            raise ValueError("retry_delay must be shorter than interval")
        return self


class AuthSettings(BaseModel):
    """Token refresh endpoint."""

    refresh_path: str = Field(default=DEFAULT_REFRESH_PATH)

    @field_validator("refresh_path")
    @classmethod
    def _validate_path(cls, v: str) -> str:
        return _check_path(v)


class StorageSettings(BaseModel):
    """Durable credential storage backend."""

    backend: Literal["memory", "file", "encrypted", "keyring"] = "file"
    path: str = Field(
        default=DEFAULT_STORAGE_PATH,
        description="Credential file (file / encrypted backends).",
    )


class ClientConfig(BaseModel):
    """Root configuration model."""

    version: str = Field(default="1", description="Config format version.")
    api: ApiSettings = Field(default_factory=ApiSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("version", mode="before")
    @classmethod
    def _validate_version(cls, v: object) -> str:
        v = str(v)
        if v != "1":
            raise ValueError(f"Unsupported config version '{v}' (expected '1')")
        return v
