"""Health monitoring for the remote API.

Public API
----------
- :class:`HealthMonitor` — Background probe scheduler and health gate
- :class:`HealthStatus` — Immutable status snapshot
- :class:`HealthState` — Observed health enum
"""

from apiguard.health.monitor import HealthMonitor, HealthState, HealthStatus, format_uptime

__all__ = [
    "HealthMonitor",
    "HealthState",
    "HealthStatus",
    "format_uptime",
]
