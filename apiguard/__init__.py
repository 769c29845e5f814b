"""
apiguard - A resilient authenticated HTTP client.

apiguard routes every API call through one pipeline that refuses calls
while the server is known to be down, attaches the stored bearer token,
and transparently refreshes an expired session exactly once per call.
"""

from apiguard.constants import CLIENT_NAME, CLIENT_VERSION

__version__ = CLIENT_VERSION
__app_name__ = CLIENT_NAME

__all__ = [
    "CLIENT_NAME",
    "CLIENT_VERSION",
    "__version__",
    "__app_name__",
]
