"""Tests for config loading, env expansion and validation."""

from __future__ import annotations

import os

import pytest

from apiguard.config import (
    ClientConfig,
    expand_env_vars,
    find_config_file,
    load_client_config,
    resolve_config,
    validate_config_data,
)
from apiguard.errors import ConfigurationError


class TestExpandEnvVars:
    def test_substitutes_set_variable(self, monkeypatch) -> None:
        monkeypatch.setenv("APIGUARD_TEST_HOST", "example.org")
        assert expand_env_vars("https://${APIGUARD_TEST_HOST}/api") == "https://example.org/api"

    def test_default_used_when_unset(self, monkeypatch) -> None:
        monkeypatch.delenv("APIGUARD_TEST_UNSET", raising=False)
        assert expand_env_vars("${APIGUARD_TEST_UNSET:-fallback}") == "fallback"

    def test_unset_without_default_left_alone(self, monkeypatch) -> None:
        monkeypatch.delenv("APIGUARD_TEST_UNSET", raising=False)
        assert expand_env_vars("${APIGUARD_TEST_UNSET}") == "${APIGUARD_TEST_UNSET}"

    def test_walks_nested_structures(self, monkeypatch) -> None:
        monkeypatch.setenv("APIGUARD_TEST_X", "1")
        assert expand_env_vars({"a": ["${APIGUARD_TEST_X}", 2]}) == {"a": ["1", 2]}


class TestSchema:
    def test_defaults(self) -> None:
        cfg = ClientConfig()
        assert cfg.api.base_url == "https://spotify.f8team.dev/api"
        assert cfg.api.timeout == 30.0
        assert cfg.health.url == "https://spotify.f8team.dev/health"
        assert cfg.health.fallback_path == "/api"
        assert cfg.health.interval == 30.0
        assert cfg.health.max_retries == 3
        assert cfg.health.retry_delay == 5.0
        assert cfg.auth.refresh_path == "/auth/refresh"
        assert cfg.storage.backend == "file"

    def test_numeric_version_accepted(self) -> None:
        assert validate_config_data({"version": 1}).version == "1"

    def test_trailing_slash_trimmed(self) -> None:
        cfg = validate_config_data({"api": {"base_url": "https://x.test/api/"}})
        assert cfg.api.base_url == "https://x.test/api"

    def test_fallback_can_be_disabled(self) -> None:
        assert validate_config_data({"health": {"fallback_path": None}}).health.fallback_path is None

    def test_all_errors_reported_together(self) -> None:
        raw = {
            "version": "2",
            "api": {"base_url": "ftp://nope", "timeout": 0},
            "storage": {"backend": "cloud"},
        }
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config_data(raw)
        msg = str(exc_info.value)
        assert "4 error(s)" in msg
        assert "version" in msg
        assert "base_url" in msg
        assert "backend" in msg

    def test_retry_delay_must_fit_interval(self) -> None:
        with pytest.raises(ConfigurationError, match="retry_delay"):
            validate_config_data({"health": {"interval": 5, "retry_delay": 10}})

    def test_refresh_path_needs_leading_slash(self) -> None:
        with pytest.raises(ConfigurationError):
            validate_config_data({"auth": {"refresh_path": "auth/refresh"}})


class TestLoader:
    def test_load_yaml_with_env(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("APIGUARD_TEST_BASE", "https://staging.test/api")
        path = tmp_path / "apiguard.yaml"
        path.write_text(
            'version: "1"\n'
            "api:\n"
            "  base_url: ${APIGUARD_TEST_BASE}\n"
            "health:\n"
            "  interval: 60\n"
            "storage:\n"
            "  backend: memory\n"
        )
        cfg = load_client_config(str(path))
        assert cfg.api.base_url == "https://staging.test/api"
        assert cfg.health.interval == 60
        assert cfg.storage.backend == "memory"

    def test_empty_file_gives_defaults(self, tmp_path) -> None:
        path = tmp_path / "apiguard.yml"
        path.write_text("")
        assert load_client_config(str(path)) == ClientConfig()

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            load_client_config(str(tmp_path / "nope.yaml"))

    def test_wrong_extension(self, tmp_path) -> None:
        path = tmp_path / "apiguard.json"
        path.write_text("{}")
        with pytest.raises(ConfigurationError, match="extension"):
            load_client_config(str(path))

    def test_top_level_must_be_mapping(self, tmp_path) -> None:
        path = tmp_path / "apiguard.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_client_config(str(path))

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "apiguard.yaml"
        path.write_text("api: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_client_config(str(path))


class TestFindConfigFile:
    def test_explicit_wins(self, monkeypatch) -> None:
        monkeypatch.setenv("APIGUARD_CONFIG", "/from/env.yaml")
        assert find_config_file("/explicit.yaml") == "/explicit.yaml"

    def test_env_var(self, monkeypatch) -> None:
        monkeypatch.setenv("APIGUARD_CONFIG", "/from/env.yaml")
        assert find_config_file() == "/from/env.yaml"

    def test_cwd_search(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("APIGUARD_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / "apiguard.yml").write_text("")
        assert find_config_file() == os.path.join(str(tmp_path), "apiguard.yml")

    def test_nothing_found_uses_defaults(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("APIGUARD_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        assert find_config_file() is None
        assert resolve_config() == ClientConfig()
