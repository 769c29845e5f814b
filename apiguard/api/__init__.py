"""Endpoint clients built on the request pipeline.

Public API
----------
- :class:`AuthAPI` — register, login, current user, logout
- :class:`HealthAPI` — status endpoint probes (bypass the pipeline)
- :class:`UploadAPI` — multipart uploads
"""

from apiguard.api.health import HealthAPI, ProbeResult
from apiguard.api.auth import AuthAPI
from apiguard.api.upload import UploadAPI

__all__ = ["AuthAPI", "HealthAPI", "ProbeResult", "UploadAPI"]
