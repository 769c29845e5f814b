"""Logging configuration setup."""

import copy
import logging
import logging.config
import os
import re
import sys
from datetime import datetime
from typing import Set, Tuple  # noqa: UP035

from apiguard.constants import LOG_DIR

# ── Secret redaction filter ──────────────────────────────────────────────

_REDACTED = "***REDACTED***"


class SecretRedactionFilter(logging.Filter):
    """Logging filter that replaces registered token values with a placeholder.

    The credential store calls :meth:`register` with every access and
    refresh token it holds.  Thread-safe because CPython's GIL protects set
    reads against concurrent adds.
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: re.Pattern[str] | None = None

    def register(self, value: str) -> None:
        """Register a secret value for redaction."""
        if value and len(value) >= 4:  # skip trivially short values
            self._secrets.add(value)
            escaped = sorted((re.escape(s) for s in self._secrets), key=len, reverse=True)
            self._pattern = re.compile("|".join(escaped))

    def redact(self, text: str) -> str:
        """Return *text* with every registered secret replaced."""
        if self._pattern is None:
            return text
        return self._pattern.sub(_REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is None:
            return True
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: self.redact(v) if isinstance(v, str) else v for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self.redact(a) if isinstance(a, str) else a for a in record.args)
        return True


# Module-level singleton so the credential store can register tokens as they arrive.
secret_redaction_filter = SecretRedactionFilter()

BASE_LOG_CFG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple_file": {
            "format": ("%(asctime)s - %(name)25s:%(lineno)-4d - " "%(levelname)-7s - %(message)s"),
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "console": {
            "format": "%(levelname)-7s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "file_handler": {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "simple_file",
            "filename": "temp_log_name.log",
            "encoding": "utf-8",
        },
    },
    "loggers": {
        "apiguard": {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": "INFO",
        },
        "httpx": {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": "WARNING",
        },
        "httpcore": {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": "WARNING",
        },
    },
    "root": {
        "handlers": ["file_handler"],
        "level": "WARNING",
    },
}


def setup_logging(log_lvl_str: str, *, console: bool = False) -> Tuple[str, str]:
    """
    Set up the logging system.

    Uses a timestamped dynamic filename under ``LOG_DIR`` and, when
    *console* is set, mirrors ``apiguard`` records to stderr.

    Args:
        log_lvl_str: The desired log level string (e.g., 'debug', 'info').
        console: Also log to stderr (CLI ``--verbose``).

    Returns:
        A tuple of (log_file_path, validated_log_level).
    """
    log_lvl_valid = log_lvl_str.upper()
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if log_lvl_valid not in valid_levels:
        print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.", file=sys.stderr)
        log_lvl_valid = "INFO"

    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    os.makedirs(LOG_DIR, exist_ok=True)
    log_fpath = os.path.join(LOG_DIR, f"apiguard_{ts}_{log_lvl_valid}.log")

    log_cfg: dict = copy.deepcopy(BASE_LOG_CFG)
    log_cfg["handlers"]["file_handler"]["filename"] = log_fpath
    log_cfg["loggers"]["apiguard"]["level"] = log_lvl_valid

    if console:
        log_cfg["handlers"]["console_handler"] = {
            "class": "logging.StreamHandler",
            "level": log_lvl_valid,
            "formatter": "console",
            "stream": "ext://sys.stderr",
        }
        log_cfg["loggers"]["apiguard"]["handlers"].append("console_handler")

    # httpx logs every request at INFO; only surface it when debugging.
    if log_lvl_valid == "DEBUG":
        log_cfg["loggers"]["httpx"]["level"] = "DEBUG"
    log_cfg["root"]["level"] = log_lvl_valid if log_lvl_valid == "DEBUG" else "WARNING"

    try:
        logging.config.dictConfig(log_cfg)
        # Attach secret redaction filter to every configured handler
        handlers = set(logging.root.handlers) | set(logging.getLogger("apiguard").handlers)
        for handler in handlers:
            handler.addFilter(secret_redaction_filter)
    except Exception as e_log_cfg:
        print(
            f"Error applying logging configuration: {e_log_cfg}",
            file=sys.stderr,
        )

    return log_fpath, log_lvl_valid
