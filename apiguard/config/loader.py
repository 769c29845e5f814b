"""Configuration file loading and validation.

Loads a YAML configuration file, expands ``${ENV_VAR}`` placeholders,
and validates against the Pydantic models defined in :mod:`schema`.

The public API is :func:`load_client_config`, plus :func:`find_config_file`
for callers (the CLI) that need to locate the file first.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from apiguard.config.envvars import expand_env_vars
from apiguard.config.schema import ClientConfig
from apiguard.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})

# Config file search order (first match wins)
_CONFIG_SEARCH_ORDER = ("apiguard.yaml", "apiguard.yml")

CONFIG_ENV_VAR = "APIGUARD_CONFIG"


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    An empty file is treated as an empty mapping (all defaults).
    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except Exception as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


# ── Public API ───────────────────────────────────────────────────────────


def validate_config_data(raw_data: Dict[str, Any]) -> ClientConfig:
    """Expand env references in *raw_data* and validate it.

    Raises:
        ConfigurationError: with every validation failure listed at once.
    """
    raw_data = expand_env_vars(raw_data)
    try:
        return ClientConfig.model_validate(raw_data)
    except ValidationError as exc:
        error_summary = _format_validation_errors(exc)
        raise ConfigurationError(
            f"Configuration validation failed ({len(exc.errors())} error(s)):\n" f"{error_summary}"
        ) from exc


def load_client_config(cfg_fpath: str) -> ClientConfig:
    """Load, expand, validate, and return the client configuration.

    Steps:
        1. Read YAML file
        2. Expand ``${VAR}`` environment variable references
        3. Validate against :class:`ClientConfig` (Pydantic)

    Raises:
        ConfigurationError: On file I/O errors, parse errors, or
            validation failures (all errors reported at once).
    """
    logger.debug("Loading configuration file: %s", cfg_fpath)

    if not os.path.exists(cfg_fpath):
        raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")

    config = validate_config_data(_read_config_file(cfg_fpath))
    logger.info(
        "Configuration '%s' loaded (v%s). API base URL: %s",
        cfg_fpath,
        config.version,
        config.api.base_url,
    )
    return config


def find_config_file(explicit: Optional[str] = None) -> Optional[str]:
    """Resolve the config path: explicit → ``APIGUARD_CONFIG`` → CWD search.

    Returns ``None`` when nothing is found; callers then use built-in defaults.
    An explicit or env-provided path is returned even if it does not exist so
    the loader can report a clear error.
    """
    if explicit:
        return explicit
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return from_env
    for name in _CONFIG_SEARCH_ORDER:
        candidate = os.path.join(os.getcwd(), name)
        if os.path.isfile(candidate):
            return candidate
    return None


def resolve_config(explicit: Optional[str] = None) -> ClientConfig:
    """Locate and load the config file, falling back to defaults."""
    path = find_config_file(explicit)
    if path is None:
        logger.debug("No configuration file found; using built-in defaults.")
        return ClientConfig()
    return load_client_config(path)
