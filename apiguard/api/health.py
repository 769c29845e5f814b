"""Health-check endpoint client.

Probes go straight to the transport: they must work while the health gate
is closed and never carry credentials.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import ValidationError

from apiguard.constants import DEFAULT_FALLBACK_PROBE_PATH, DEFAULT_HEALTH_URL, DEFAULT_PROBE_TIMEOUT
from apiguard.envelope import HealthReport, unwrap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe round."""

    success: bool
    report: Optional[HealthReport] = None
    error: Optional[str] = None


class HealthAPI:
    """Status endpoint probes with a lightweight fallback.

    Parameters
    ----------
    http:
        Transport used for probes.
    health_url:
        Absolute URL of the status endpoint.
    fallback_path:
        Secondary endpoint, resolved against the origin of *health_url*.
        ``None`` disables the fallback.
    timeout:
        Seconds to wait for each probe.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        health_url: str = DEFAULT_HEALTH_URL,
        fallback_path: Optional[str] = DEFAULT_FALLBACK_PROBE_PATH,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self._http = http
        self._health_url = health_url
        self._fallback_path = fallback_path
        self._timeout = timeout

    async def check_health(self) -> ProbeResult:
        """``GET <health_url>``"""
        try:
            resp = await self._http.get(self._health_url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            return ProbeResult(success=False, error=f"{type(exc).__name__}: {exc}")
        if not resp.is_success:
            return ProbeResult(success=False, error=f"HTTP {resp.status_code}")
        try:
            body = unwrap(resp.json())
            report = HealthReport.model_validate(body) if isinstance(body, dict) else HealthReport()
        except (ValueError, ValidationError):
            report = HealthReport()
        return ProbeResult(success=True, report=report)

    async def test_endpoint(self, endpoint: Optional[str] = None) -> ProbeResult:
        """Probe a secondary endpoint; a 2xx answer counts as reachable."""
        endpoint = endpoint or self._fallback_path or DEFAULT_FALLBACK_PROBE_PATH
        url = httpx.URL(self._health_url).join(endpoint)
        try:
            resp = await self._http.get(url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            return ProbeResult(success=False, error=f"{type(exc).__name__}: {exc}")
        if not resp.is_success:
            return ProbeResult(success=False, error=f"HTTP {resp.status_code}")
        return ProbeResult(success=True, report=HealthReport.synthesized())

    async def check_health_with_fallback(self) -> ProbeResult:
        """Try the status endpoint, then the fallback endpoint.

        When only the fallback answers, the result carries a synthesized
        minimal report with ``source="api-fallback"``.
        """
        primary = await self.check_health()
        if primary.success or self._fallback_path is None:
            return primary

        logger.debug("Status endpoint failed (%s); probing %s", primary.error, self._fallback_path)
        fallback = await self.test_endpoint(self._fallback_path)
        if fallback.success:
            return fallback
        return ProbeResult(
            success=False,
            error=f"All endpoints failed ({primary.error}; fallback: {fallback.error})",
        )
