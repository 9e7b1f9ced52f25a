"""Tests for layered configuration.

Covers defaults, TOML sources, environment overrides and secret
redaction in exported settings.
"""

from __future__ import annotations

import tomllib

from pathlib import Path

import pytest

from pyoauth.config import (
    HttpSettings,
    LogSettings,
    OAuthSettings,
    StoreSettings,
    get_settings,
    reload_settings,
)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    """Tests for built-in defaults."""

    def test_general_defaults(self) -> None:
        settings = OAuthSettings()
        assert settings.auto_refresh is False
        assert settings.refresh_leeway_seconds == 0.0
        assert settings.require_biometrics is False
        assert settings.use_ephemeral_browser is False
        assert settings.login_timeout == 300.0
        assert settings.providers == []

    def test_section_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PYOAUTH_STORE__BACKEND")
        assert LogSettings().level == "WARNING"
        assert HttpSettings().timeout == 30.0
        assert StoreSettings().backend == "keyring"
        assert StoreSettings().application_tag == "pyoauth"

    def test_invalid_backend_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PYOAUTH_STORE__BACKEND", "vault")
        with pytest.raises(ValueError):
            StoreSettings()


class TestEnvironment:
    """Tests for environment variable overrides."""

    def test_top_level_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PYOAUTH__AUTO_REFRESH", "true")
        monkeypatch.setenv("PYOAUTH__REFRESH_LEEWAY_SECONDS", "30")
        settings = OAuthSettings()
        assert settings.auto_refresh is True
        assert settings.refresh_leeway_seconds == 30.0

    def test_section_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PYOAUTH_LOG__LEVEL", "DEBUG")
        monkeypatch.setenv("PYOAUTH_HTTP__TIMEOUT", "5")
        settings = OAuthSettings()
        assert settings.log.level == "DEBUG"
        assert settings.http.timeout == 5.0
        assert settings.store.backend == "memory"


class TestTomlSources:
    """Tests for TOML configuration files."""

    def test_project_file(self) -> None:
        _write(Path("pyoauth.toml"), "auto_refresh = true\n\n[http]\ntimeout = 7.5\n")
        settings = OAuthSettings()
        assert settings.auto_refresh is True
        assert settings.http.timeout == 7.5

    def test_pyproject_tool_table(self) -> None:
        _write(
            Path("pyproject.toml"),
            '[project]\nname = "app"\n\n[tool.pyoauth]\nuse_ephemeral_browser = true\n',
        )
        assert OAuthSettings().use_ephemeral_browser is True

    def test_user_file_overrides_project(self, tmp_path: Path) -> None:
        _write(Path("pyoauth.toml"), "login_timeout = 10\n")
        _write(tmp_path / ".config" / "pyoauth" / "config.toml", "login_timeout = 20\n")
        assert OAuthSettings().login_timeout == 20.0

    def test_config_file_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path / "custom.toml", "require_biometrics = true\n")
        monkeypatch.setenv("PYOAUTH_CONFIG_FILE", str(path))
        assert OAuthSettings().require_biometrics is True

    def test_env_beats_toml(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _write(Path("pyoauth.toml"), 'auto_refresh = false\n\n[log]\nlevel = "ERROR"\n')
        monkeypatch.setenv("PYOAUTH__AUTO_REFRESH", "true")
        monkeypatch.setenv("PYOAUTH_LOG__LEVEL", "INFO")
        settings = OAuthSettings()
        assert settings.auto_refresh is True
        assert settings.log.level == "INFO"

    def test_explicit_kwargs_win(self) -> None:
        _write(Path("pyoauth.toml"), "auto_refresh = true\n")
        assert OAuthSettings(auto_refresh=False).auto_refresh is False

    def test_unreadable_file_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        _write(Path("pyoauth.toml"), "this is = = not toml")
        assert OAuthSettings().auto_refresh is False
        assert "Ignoring unreadable config file" in caplog.text

    def test_inline_providers(self) -> None:
        _write(
            Path("pyoauth.toml"),
            "[[providers]]\n"
            'id = "svc"\n'
            'authorizationURL = "https://idp.test/a"\n'
            'accessTokenURL = "https://idp.test/t"\n'
            'clientID = "c"\n'
            'clientSecret = "s3cret"\n',
        )
        settings = OAuthSettings()
        assert settings.providers[0]["id"] == "svc"


class TestExport:
    """Tests for show() and to_toml()."""

    def test_to_toml_round_trips(self) -> None:
        exported = OAuthSettings(auto_refresh=True).to_toml()
        data = tomllib.loads(exported)
        assert data["auto_refresh"] is True
        assert data["http"]["timeout"] == 30.0
        assert data["store"]["backend"] == "memory"

    def test_secrets_are_redacted(self) -> None:
        descriptor = {
            "id": "svc",
            "authorizationURL": "https://idp.test/a",
            "accessTokenURL": "https://idp.test/t",
            "clientID": "c",
            "clientSecret": "s3cret",
        }
        settings = OAuthSettings(providers=[descriptor])
        assert "s3cret" not in settings.to_toml()
        assert "s3cret" not in settings.show()
        assert "********" in settings.to_toml()
        assert tomllib.loads(settings.to_toml())["providers"][0]["clientID"] == "c"

    def test_show_lists_sections(self) -> None:
        shown = OAuthSettings().show()
        for heading in ("General", "Logging", "HTTP", "Credential Store"):
            assert heading in shown


class TestCaching:
    """Tests for the cached settings accessor."""

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_reload_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_settings()
        monkeypatch.setenv("PYOAUTH__AUTO_REFRESH", "true")
        reloaded = reload_settings()
        assert reloaded is not first
        assert reloaded.auto_refresh is True
