"""Credential storage and the token refresh protocol."""

from apiguard.auth.refresh import RefreshProtocol
from apiguard.auth.storage import (
    CredentialStorage,
    EncryptedFileStorage,
    JsonFileStorage,
    KeyringStorage,
    MemoryStorage,
    create_storage,
)
from apiguard.auth.store import Credential, CredentialStore

__all__ = [
    "Credential",
    "CredentialStorage",
    "CredentialStore",
    "EncryptedFileStorage",
    "JsonFileStorage",
    "KeyringStorage",
    "MemoryStorage",
    "RefreshProtocol",
    "create_storage",
]
