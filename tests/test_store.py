"""Tests for the credential store."""

from __future__ import annotations

import logging
from typing import List

from apiguard.auth.storage import JsonFileStorage, MemoryStorage
from apiguard.auth.store import Credential, CredentialStore
from apiguard.display.logging_config import secret_redaction_filter
from apiguard.events import AuthenticationChanged, EventBus


def _store_with_events():
    bus = EventBus()
    seen: List[AuthenticationChanged] = []
    bus.subscribe(AuthenticationChanged, seen.append)
    return CredentialStore(MemoryStorage(), events=bus), seen


class TestCredential:
    def test_empty(self) -> None:
        assert Credential.empty().is_empty
        assert not Credential("a").is_empty

    def test_repr_masks_tokens(self) -> None:
        r = repr(Credential("access-secret-1234", "refresh-secret-5678"))
        assert "access-secret" not in r
        assert "refresh-secret" not in r
        assert r.endswith("5678)")


class TestCredentialStore:
    def test_starts_empty(self) -> None:
        store = CredentialStore()
        assert store.get() == Credential.empty()
        assert not store.is_authenticated()

    def test_set_and_get(self) -> None:
        store, seen = _store_with_events()
        store.set(Credential("T1", "R1"))
        assert store.get() == Credential("T1", "R1")
        assert store.is_authenticated()
        assert seen == [AuthenticationChanged(authenticated=True, reason="stored")]

    def test_partial_set_merges(self) -> None:
        store = CredentialStore()
        store.set(Credential("T1", "R1"))
        store.set(Credential(access_token="T2"))
        assert store.get() == Credential("T2", "R1")

    def test_refresh_token_alone_is_not_authenticated(self) -> None:
        store = CredentialStore(MemoryStorage({"refresh_token": "R1"}))
        assert store.get() == Credential(None, "R1")
        assert not store.is_authenticated()

    def test_clear_removes_every_key(self) -> None:
        storage = MemoryStorage()
        store = CredentialStore(storage)
        store.set(Credential("T1", "R1"))
        store.set_user({"id": 1, "email": "a@b.c"})
        store.clear()
        assert store.get().is_empty
        assert store.get_user() is None
        assert storage.keys() == []

    def test_clear_is_idempotent(self) -> None:
        store, seen = _store_with_events()
        store.set(Credential("T1", "R1"))
        store.clear()
        store.clear()
        assert store.get().is_empty
        assert [e.authenticated for e in seen] == [True, False]

    def test_clear_on_empty_store_is_silent(self) -> None:
        store, seen = _store_with_events()
        store.clear()
        assert seen == []

    def test_user_profile_round_trip(self) -> None:
        store = CredentialStore()
        store.set_user({"id": 7, "username": "neo"})
        assert store.get_user() == {"id": 7, "username": "neo"}

    def test_corrupt_user_profile_ignored(self) -> None:
        store = CredentialStore(MemoryStorage({"user": "{not json"}))
        assert store.get_user() is None

    def test_persists_across_instances(self, tmp_path) -> None:
        path = str(tmp_path / "creds.json")
        CredentialStore(JsonFileStorage(path)).set(Credential("T1", "R1"))
        assert CredentialStore(JsonFileStorage(path)).get() == Credential("T1", "R1")

    def test_reload_picks_up_external_change(self, tmp_path) -> None:
        path = str(tmp_path / "creds.json")
        store = CredentialStore(JsonFileStorage(path))
        CredentialStore(JsonFileStorage(path)).set(Credential("T5", "R5"))
        assert store.get().is_empty
        assert store.reload() == Credential("T5", "R5")

    def test_tokens_registered_for_redaction(self) -> None:
        store = CredentialStore()
        store.set(Credential("tok-abcdef-123456", "ref-abcdef-654321"))
        text = secret_redaction_filter.redact("sent Bearer tok-abcdef-123456")
        assert "tok-abcdef-123456" not in text

    def test_redaction_applies_to_log_records(self) -> None:
        CredentialStore().set(Credential("tok-zzzz-999999"))
        record = logging.LogRecord("apiguard", logging.INFO, __file__, 1, "token=%s", ("tok-zzzz-999999",), None)
        secret_redaction_filter.filter(record)
        assert "tok-zzzz-999999" not in record.getMessage()

    def test_redaction_applies_to_mapping_args(self) -> None:
        CredentialStore().set(Credential("tok-yyyy-888888"))
        record = logging.LogRecord(
            "apiguard", logging.INFO, __file__, 1, "token=%(t)s n=%(n)d", ({"t": "tok-yyyy-888888", "n": 3},), None
        )
        secret_redaction_filter.filter(record)
        assert record.getMessage() == "token=***REDACTED*** n=3"
