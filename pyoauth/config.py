"""Configuration system for pyoauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.pyoauth] section (project-level)
3. ./pyoauth.toml (project-level, explicit)
4. ~/.config/pyoauth/config.toml (user-level, overrides project)
5. $PYOAUTH_CONFIG_FILE
6. Environment variables (highest priority)

Environment variables use the PYOAUTH_ prefix with nested delimiter __.
Example: PYOAUTH__AUTO_REFRESH=true, PYOAUTH_STORE__BACKEND=memory
"""

from __future__ import annotations

import logging
import os
import sys
import tomllib

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger("pyoauth.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    pyoauth_toml = Path("pyoauth.toml")
    if pyoauth_toml.exists():
        files.append(pyoauth_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "pyoauth" / "config.toml"
    else:
        user_config = Path("~/.config/pyoauth/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("PYOAUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("pyoauth", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "clientSecret",
}

_REDACTED = "********"


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: PYOAUTH_LOG__
    Example: PYOAUTH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="PYOAUTH_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class HttpSettings(BaseSettings):
    """HTTP client settings for requests to authorization servers.

    Environment prefix: PYOAUTH_HTTP__
    Example: PYOAUTH_HTTP__TIMEOUT=10
    """

    model_config = SettingsConfigDict(
        env_prefix="PYOAUTH_HTTP__",
        extra="ignore",
    )

    timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds before a token or device-code request times out",
    )
    user_agent: str | None = Field(
        default=None,
        description="Default User-Agent for providers without customUserAgent",
    )


class StoreSettings(BaseSettings):
    """Credential storage settings.

    Environment prefix: PYOAUTH_STORE__
    Example: PYOAUTH_STORE__BACKEND=memory
    """

    model_config = SettingsConfigDict(
        env_prefix="PYOAUTH_STORE__",
        extra="ignore",
    )

    backend: Literal["memory", "keyring"] = Field(
        default="keyring",
        description="Secure store backend: keyring (OS credential store) or memory",
    )
    application_tag: str = Field(
        default="pyoauth",
        min_length=1,
        description="Namespace for stored credential keys",
    )
    keyring_service: str = Field(
        default="pyoauth",
        min_length=1,
        description="Keyring service name",
    )


_SECTION_TYPES: dict[str, type[BaseSettings]] = {
    "log": LogSettings,
    "http": HttpSettings,
    "store": StoreSettings,
}


def _env_overrides(prefix: str, field_name: str) -> bool:
    """Whether an environment variable sets ``field_name`` under ``prefix``."""
    name = f"{prefix}{field_name}".upper()
    return any(key.upper() == name for key in os.environ)


class OAuthSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: PYOAUTH__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.pyoauth] section
    3. ./pyoauth.toml (project-level)
    4. ~/.config/pyoauth/config.toml (user-level, overrides project)
    5. $PYOAUTH_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="PYOAUTH__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log: LogSettings = Field(default_factory=LogSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    auto_refresh: bool = Field(
        default=False,
        description="Refresh credentials automatically when they expire",
    )
    refresh_leeway_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Seconds before expiry at which the automatic refresh fires",
    )
    require_biometrics: bool = Field(
        default=False,
        description="Gate restore() on the biometric gate",
    )
    use_ephemeral_browser: bool = Field(
        default=False,
        description="Ask providers to show a fresh login (prompt=login)",
    )
    login_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Maximum seconds to wait for a browser or device login",
    )
    providers_file: str | None = Field(
        default=None,
        description="Path to a JSON provider descriptor list (default ./oauth.json)",
    )
    providers: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Inline provider descriptors, e.g. [[tool.pyoauth.providers]]",
    )

    _sections: ClassVar[list[tuple[str, str]]] = [
        ("Logging", "log"),
        ("HTTP", "http"),
        ("Credential Store", "store"),
    ]

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()

        # Init kwargs outrank the environment, so TOML values that an
        # environment variable also sets are dropped here.
        prefix = self.model_config.get("env_prefix", "")
        toml_config = {
            key: value
            for key, value in toml_config.items()
            if key in _SECTION_TYPES or not _env_overrides(prefix, key)
        }
        for name, section_cls in _SECTION_TYPES.items():
            section = toml_config.get(name)
            if isinstance(section, dict):
                section_prefix = section_cls.model_config.get("env_prefix", "")
                toml_config[name] = section_cls(
                    **{k: v for k, v in section.items() if not _env_overrides(section_prefix, k)}
                )

        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

    def _general(self) -> dict[str, Any]:
        return self.model_dump(exclude={"log", "http", "store", "providers"})

    def _redacted_providers(self) -> list[dict[str, Any]]:
        return [
            {k: (_REDACTED if k in _SENSITIVE_FIELDS else v) for k, v in descriptor.items()}
            for descriptor in self.providers
        ]

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# pyoauth Configuration", "# Generated by: pyoauth config --toml", ""]

        for field_name, field_value in self._general().items():
            if field_value is None:
                continue
            lines.append(f"{field_name} = {_toml_value(field_value)}")
        lines.append("")

        all_data = self.model_dump(include={attr for _, attr in self._sections})
        for _, section_name in self._sections:
            lines.append(f"[{section_name}]")
            for field_name, field_value in all_data[section_name].items():
                if field_value is None:
                    continue
                lines.append(f"{field_name} = {_toml_value(field_value)}")
            lines.append("")

        for descriptor in self._redacted_providers():
            lines.append("[[providers]]")
            lines.extend(f"{k} = {_toml_value(v)}" for k, v in descriptor.items() if v is not None)
            lines.append("")

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["pyoauth Configuration", "=" * 60, ""]

        lines.append("General")
        lines.append("-" * 40)
        for field_name, field_value in self._general().items():
            lines.append(f"  {field_name:24} = {field_value}")

        all_data = self.model_dump(include={attr for _, attr in self._sections})
        for display_name, attr_name in self._sections:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data[attr_name].items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:24} = {value_str}")

        if self.providers:
            lines.append("\nInline Providers")
            lines.append("-" * 40)
            for descriptor in self._redacted_providers():
                lines.append(f"  {descriptor.get('id', '?')}")
                for key, value in descriptor.items():
                    if key != "id":
                        lines.append(f"    {key:22} = {value}")

        return "\n".join(lines)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return str(value)


@lru_cache(maxsize=1)
def get_settings() -> OAuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return OAuthSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> OAuthSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
