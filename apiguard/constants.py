"""Shared constants for apiguard."""

CLIENT_NAME = "apiguard"
CLIENT_VERSION = "0.1.0"

# Upstream defaults
DEFAULT_API_BASE_URL = "https://spotify.f8team.dev/api"
DEFAULT_HEALTH_URL = "https://spotify.f8team.dev/health"
DEFAULT_FALLBACK_PROBE_PATH = "/api"
DEFAULT_REFRESH_PATH = "/auth/refresh"
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds

# Health monitor defaults
DEFAULT_CHECK_INTERVAL = 30.0  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 5.0  # seconds
DEFAULT_PROBE_TIMEOUT = 10.0  # seconds

# Persisted credential keys
ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
USER_KEY = "user"
CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)

# Local storage defaults
DEFAULT_STORAGE_PATH = "~/.config/apiguard/credentials.json"
SECRET_KEY_ENV = "APIGUARD_SECRET_KEY"
KEYRING_SERVICE_NAME = "apiguard"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = "INFO"

# User-facing notices
SERVER_UNAVAILABLE_NOTICE = "Server is unavailable. Please try again later."
