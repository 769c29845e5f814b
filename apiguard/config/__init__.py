"""Configuration loading and validation for apiguard."""

from apiguard.config.envvars import expand_env_vars
from apiguard.config.loader import (
    find_config_file,
    load_client_config,
    resolve_config,
    validate_config_data,
)
from apiguard.config.schema import (
    ApiSettings,
    AuthSettings,
    ClientConfig,
    HealthSettings,
    StorageSettings,
)

__all__ = [
    "ApiSettings",
    "AuthSettings",
    "ClientConfig",
    "HealthSettings",
    "StorageSettings",
    "expand_env_vars",
    "find_config_file",
    "load_client_config",
    "resolve_config",
    "validate_config_data",
]
