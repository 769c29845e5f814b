"""Environment variable expansion for configuration values.

Handles ``${VAR}`` and ``${VAR:-default}`` references in string values.
"""

from __future__ import annotations

import os
import re
from typing import Any

# ${NAME} or ${NAME:-fallback}
_ENV_VAR_RE = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _substitute(match: "re.Match[str]") -> str:
    name, default = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value is not None:
        return value
    if default is not None:
        return default
    return match.group(0)


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment references in string values.

    - Unset variables without a default are left as the literal placeholder.
    - Non-string leaves are returned as-is.
    - Dicts and lists are walked recursively.
    """
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(_substitute, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value
