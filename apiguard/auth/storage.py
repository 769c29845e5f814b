"""Durable storage backends for the credential pair.

Backends implement a small key/value interface::

    class CredentialStorage:
        def get(self, key: str) -> Optional[str]: ...
        def set(self, key: str, value: str) -> None: ...
        def delete(self, key: str) -> None: ...
        def keys(self) -> List[str]: ...

Built-in backends:

* ``MemoryStorage`` — process-local dict (tests, ephemeral sessions)
* ``JsonFileStorage`` — JSON file, written atomically with 0600 permissions
* ``EncryptedFileStorage`` — Fernet-encrypted JSON file
* ``KeyringStorage`` — OS keyring (via ``keyring`` package)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from apiguard.constants import KEYRING_SERVICE_NAME, SECRET_KEY_ENV
from apiguard.errors import StorageError

logger = logging.getLogger(__name__)


class CredentialStorage(ABC):
    """Abstract base class for credential storage backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Retrieve a value by key, or ``None`` if not stored."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a value; missing keys are ignored."""

    @abstractmethod
    def keys(self) -> List[str]:
        """Return all stored keys."""

    def update(self, values: Dict[str, Optional[str]]) -> None:
        """Apply several writes; ``None`` values delete the key."""
        for key, value in values.items():
            if value is None:
                self.delete(key)
            else:
                self.set(key, value)


# ── In-memory ───────────────────────────────────────────────────────────


class MemoryStorage(CredentialStorage):
    """Keeps values in a dict for the lifetime of the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


# ── JSON file ───────────────────────────────────────────────────────────


class JsonFileStorage(CredentialStorage):
    """Stores values in a JSON object on disk.

    Every write rewrites the whole file through a temp file and
    :func:`os.replace`, so readers never observe a half-written file.

    Parameters
    ----------
    path:
        Location of the credential file (``~`` is expanded).
    """

    def __init__(self, path: str) -> None:
        self._path = os.path.expanduser(path)

    @property
    def path(self) -> str:
        return self._path

    def _encode(self, data: Dict[str, str]) -> bytes:
        return json.dumps(data, indent=2).encode("utf-8")

    def _decode(self, raw: bytes) -> Dict[str, str]:
        return json.loads(raw.decode("utf-8"))

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self._path):
            return {}
        try:
            with open(self._path, "rb") as f:
                raw = f.read()
            if not raw.strip():
                return {}
            data = self._decode(raw)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to load credential file {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Credential file {self._path} does not contain a JSON object")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        payload = self._encode(data)
        dir_name = os.path.dirname(os.path.abspath(self._path)) or "."
        os.makedirs(dir_name, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=dir_name, prefix=".credentials_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, self._path)
            # Restrict permissions to owner only
            os.chmod(self._path, 0o600)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def keys(self) -> List[str]:
        return list(self._load())

    def update(self, values: Dict[str, Optional[str]]) -> None:
        data = self._load()
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._save(data)


# ── Fernet-encrypted file ───────────────────────────────────────────────


class EncryptedFileStorage(JsonFileStorage):
    """JSON file storage encrypted with Fernet.

    The key is read from the ``APIGUARD_SECRET_KEY`` environment variable.
    If ``cryptography`` is not installed, raises on first use.
    """

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self._fernet: Optional[object] = None  # lazy

    def _ensure_fernet(self) -> object:
        if self._fernet is not None:
            return self._fernet

        try:
            from cryptography.fernet import Fernet
        except ImportError as exc:
            raise StorageError(
                "cryptography package required for encrypted credential storage. "
                "Install with: pip install 'apiguard[encrypted]'"
            ) from exc

        key = os.environ.get(SECRET_KEY_ENV)
        if not key:
            raise StorageError(
                f"{SECRET_KEY_ENV} environment variable must be set for encrypted storage."
            )

        self._fernet = Fernet(key.encode())
        return self._fernet

    def _encode(self, data: Dict[str, str]) -> bytes:
        fernet = self._ensure_fernet()
        return fernet.encrypt(json.dumps(data).encode())  # type: ignore[attr-defined]

    def _decode(self, raw: bytes) -> Dict[str, str]:
        fernet = self._ensure_fernet()
        try:
            decrypted = fernet.decrypt(raw)  # type: ignore[attr-defined]
        except Exception as exc:
            raise StorageError(
                f"Failed to decrypt credential file {self._path}. "
                f"Check that {SECRET_KEY_ENV} is correct and the file is not corrupted."
            ) from exc
        return json.loads(decrypted)


# ── OS keyring ──────────────────────────────────────────────────────────


class KeyringStorage(CredentialStorage):
    """Uses the OS keyring (macOS Keychain, GNOME Keyring, etc.).

    Requires the ``keyring`` package.
    """

    def __init__(self, service_name: str = KEYRING_SERVICE_NAME) -> None:
        self._service = service_name
        self._keyring: Optional[object] = None
        self._names_key = "__apiguard_keys__"

    def _ensure_keyring(self) -> object:
        if self._keyring is not None:
            return self._keyring
        try:
            import keyring  # type: ignore[import-untyped]
        except ImportError as exc:
            raise StorageError(
                "keyring package required. Install with: pip install 'apiguard[keyring]'"
            ) from exc
        self._keyring = keyring
        return keyring

    def get(self, key: str) -> Optional[str]:
        kr = self._ensure_keyring()
        return kr.get_password(self._service, key)  # type: ignore[attr-defined]

    def set(self, key: str, value: str) -> None:
        kr = self._ensure_keyring()
        kr.set_password(self._service, key, value)  # type: ignore[attr-defined]
        names = set(self.keys())
        names.add(key)
        kr.set_password(self._service, self._names_key, json.dumps(sorted(names)))  # type: ignore[attr-defined]

    def delete(self, key: str) -> None:
        kr = self._ensure_keyring()
        from keyring.errors import PasswordDeleteError  # type: ignore[import-untyped]

        try:
            kr.delete_password(self._service, key)  # type: ignore[attr-defined]
        except PasswordDeleteError:
            logger.debug("Keyring entry '%s' already absent", key)
        names = set(self.keys())
        names.discard(key)
        kr.set_password(self._service, self._names_key, json.dumps(sorted(names)))  # type: ignore[attr-defined]

    def keys(self) -> List[str]:
        kr = self._ensure_keyring()
        raw = kr.get_password(self._service, self._names_key)  # type: ignore[attr-defined]
        if raw:
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Keyring key index is corrupt; treating as empty")
        return []


def create_storage(backend: str = "file", path: Optional[str] = None) -> CredentialStorage:
    """Factory for credential storage backends."""
    if backend == "memory":
        return MemoryStorage()
    if backend in ("file", "encrypted"):
        if not path:
            raise ValueError(f"Storage backend {backend!r} requires a path")
        if backend == "file":
            return JsonFileStorage(path)
        return EncryptedFileStorage(path)
    if backend == "keyring":
        return KeyringStorage()
    raise ValueError(f"Unknown storage backend: {backend!r}")
