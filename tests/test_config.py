"""Tests for oauthflow.config: XDG paths, atomic writes, settings, connections."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from oauthflow.config import (
    atomic_write,
    connection_exists,
    delete_connection,
    get_config_dir,
    get_connections_dir,
    get_data_dir,
    list_connections,
    load_connection,
    load_settings,
    resolve_credential,
    save_connection,
    save_settings,
)
from oauthflow.exceptions import ConfigurationError
from oauthflow.models import AuthorizationConfig, Connection, EngineSettings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _make_connection(name: str = "github", **config: Any) -> Connection:
    values: dict[str, Any] = {
        "authorize_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "client_id": "abc",
        "scopes": ["repo"],
    }
    values.update(config)
    return Connection(name=name, config=AuthorizationConfig(**values))


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestXDGPaths:
    def test_config_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("oauthflow.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_config_dir()
        assert result == tmp_path / ".config" / "oauthflow"
        assert result.is_dir()

    def test_data_dir_xdg_custom(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        custom = tmp_path / "custom_data"
        monkeypatch.setattr("oauthflow.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_DATA_HOME", str(custom))

        assert get_data_dir() == custom / "oauthflow"

    def test_fallback_dirs(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("oauthflow.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_config_dir() == tmp_path / ".oauthflow"
        assert get_data_dir() == tmp_path / ".oauthflow" / "data"

    def test_connections_dir(self, isolated_config: Path) -> None:
        assert get_connections_dir() == isolated_config / "config" / "oauthflow" / "connections"


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_creates_file_with_content(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "test.txt"
        atomic_write(target, "hello world")
        assert target.read_text(encoding="utf-8") == "hello world"

    def test_overwrites_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        target.write_text("old content", encoding="utf-8")
        atomic_write(target, "new content")
        assert target.read_text(encoding="utf-8") == "new content"

    def test_no_temp_files_left_on_success(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        atomic_write(target, "content")
        assert list(tmp_path.iterdir()) == [target]

    def test_no_temp_files_left_on_error(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        with patch("oauthflow.config.os.fsync", side_effect=OSError("disk error")):
            with pytest.raises(OSError, match="disk error"):
                atomic_write(target, "will fail")
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_mode_applied(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.json"
        atomic_write(target, "{}", mode=0o600)
        assert stat.S_IMODE(target.stat().st_mode) == 0o600


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults_when_missing(self, isolated_config: Path) -> None:
        settings = load_settings()
        assert settings == EngineSettings()
        assert settings.callback_timeout == 300.0
        assert settings.validity_buffer == 300.0
        assert settings.storage_poll_interval == 1.0
        assert settings.liveness_degraded_interval == 3.0
        assert settings.liveness_ceiling == 600.0

    def test_save_and_load_roundtrip(self, isolated_config: Path) -> None:
        save_settings(EngineSettings(callback_timeout=120, callback_port=4000))
        settings = load_settings()
        assert settings.callback_timeout == 120
        assert settings.callback_port == 4000

    def test_env_overrides_file(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        save_settings(EngineSettings(callback_timeout=120))
        monkeypatch.setenv("OAUTHFLOW_CALLBACK_TIMEOUT", "30")
        monkeypatch.setenv("OAUTHFLOW_VERIFY_SSL", "false")

        settings = load_settings()
        assert settings.callback_timeout == 30
        assert settings.verify_ssl is False

    def test_invalid_json(self, isolated_config: Path) -> None:
        (get_config_dir() / "settings.json").write_text("{nope", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid settings file"):
            load_settings()

    def test_invalid_value(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OAUTHFLOW_CALLBACK_PORT", "not-a-port")
        with pytest.raises(ConfigurationError, match="Invalid engine settings"):
            load_settings()


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


class TestConnections:
    def test_list_empty(self, isolated_config: Path) -> None:
        assert list_connections() == []

    def test_save_load_roundtrip(self, isolated_config: Path) -> None:
        connection = _make_connection(client_secret_source="env:GH_SECRET", use_pkce=False)
        save_connection(connection)

        loaded = load_connection("github")
        assert loaded == connection
        assert connection_exists("github")
        assert list_connections() == ["github"]

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_connection_file_is_private(self, isolated_config: Path) -> None:
        save_connection(_make_connection())
        path = get_connections_dir() / "github.json"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_none_fields_omitted(self, isolated_config: Path) -> None:
        save_connection(_make_connection())
        data = json.loads((get_connections_dir() / "github.json").read_text())
        assert "client_secret" not in data["config"]

    def test_load_missing(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_connection("nope")

    def test_load_invalid(self, isolated_config: Path) -> None:
        _write_json(get_connections_dir() / "bad.json", {"name": "bad"})
        with pytest.raises(ConfigurationError, match="Invalid connection"):
            load_connection("bad")

    def test_delete(self, isolated_config: Path) -> None:
        save_connection(_make_connection())
        delete_connection("github")
        assert not connection_exists("github")
        with pytest.raises(ConfigurationError):
            delete_connection("github")

    def test_list_ignores_non_json(self, isolated_config: Path) -> None:
        save_connection(_make_connection("a"))
        (get_connections_dir() / "notes.txt").write_text("hi")
        assert list_connections() == ["a"]


# ---------------------------------------------------------------------------
# Credential resolution
# ---------------------------------------------------------------------------


class TestResolveCredential:
    def test_env_source(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_SECRET", "secret123")
        assert resolve_credential("env:MY_SECRET") == "secret123"

    def test_env_source_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        with pytest.raises(ConfigurationError, match="not set"):
            resolve_credential("env:NONEXISTENT_VAR")

    def test_file_source(self, tmp_path: Path) -> None:
        cred_file = tmp_path / "secret.txt"
        cred_file.write_text("  my-client-secret  \n", encoding="utf-8")
        assert resolve_credential(f"file:{cred_file}") == "my-client-secret"

    def test_file_source_missing_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            resolve_credential("file:/nonexistent/path/secret.txt")

    def test_prompt_source_with_tty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.stdin.isatty", lambda: True)
        monkeypatch.setattr("getpass.getpass", lambda prompt: "user-typed-secret")
        assert resolve_credential("prompt") == "user-typed-secret"

    def test_prompt_source_non_tty_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.stdin.isatty", lambda: False)
        with pytest.raises(ConfigurationError, match="not a TTY"):
            resolve_credential("prompt")

    def test_unknown_source_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown credential source"):
            resolve_credential("magic:wand")
