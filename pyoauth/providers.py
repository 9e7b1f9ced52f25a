"""Provider descriptors: loading and presets.

Providers come from a JSON descriptor list (``oauth.json`` by default, or
the ``providers_file`` setting) plus any inline ``[[providers]]`` tables in
the TOML configuration. Each entry uses the camelCase descriptor keys::

    [
      {
        "id": "GitHub",
        "authorizationURL": "https://github.com/login/oauth/authorize",
        "accessTokenURL": "https://github.com/login/oauth/access_token",
        "deviceCodeURL": "https://github.com/login/device/code",
        "clientID": "...",
        "redirectURI": "http://127.0.0.1:8765/callback",
        "authorizationPattern": "api.github.com",
        "scope": ["read:user"]
      }
    ]
"""

from __future__ import annotations

import json
import logging

from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import Provider


if TYPE_CHECKING:
    from .config import OAuthSettings


logger = logging.getLogger("pyoauth.providers")

DEFAULT_PROVIDERS_FILE = "oauth.json"


def find_providers_file(settings: OAuthSettings | None = None) -> Path | None:
    """Locate the provider descriptor file.

    Uses ``settings.providers_file`` when set, otherwise ``./oauth.json``.

    Returns
    -------
    Path or None
        The descriptor path, or None when no file exists.
    """
    if settings is not None and settings.providers_file:
        path = Path(settings.providers_file).expanduser()
        if not path.exists():
            msg = f"Providers file not found: {path}"
            raise ConfigurationError(msg, path=str(path))
        return path
    path = Path(DEFAULT_PROVIDERS_FILE)
    return path if path.exists() else None


def parse_providers(descriptors: list[dict[str, Any]], source: str = "<inline>") -> list[Provider]:
    """Validate a list of provider descriptors.

    Raises
    ------
    ConfigurationError
        If an entry is invalid or two entries share an id.
    """
    providers: list[Provider] = []
    seen: set[str] = set()
    for index, descriptor in enumerate(descriptors):
        try:
            provider = Provider.model_validate(descriptor)
        except ValidationError as exc:
            msg = f"Invalid provider #{index} in {source}: {exc}"
            raise ConfigurationError(msg, source=source) from exc
        if provider.id in seen:
            msg = f"Duplicate provider id {provider.id!r} in {source}"
            raise ConfigurationError(msg, source=source)
        seen.add(provider.id)
        providers.append(provider)
    return providers


def load_providers_file(path: str | Path) -> list[Provider]:
    """Load providers from a JSON descriptor file.

    Parameters
    ----------
    path : str or Path
        File containing a JSON list of provider descriptors.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or does not hold a list of valid
        descriptors.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"Could not read providers file: {exc}"
        raise ConfigurationError(msg, path=str(path)) from exc
    if not isinstance(data, list):
        msg = "Providers file must contain a JSON list"
        raise ConfigurationError(msg, path=str(path))
    return parse_providers(data, source=str(path))


def load_providers(
    path: str | Path | None = None,
    settings: OAuthSettings | None = None,
) -> list[Provider]:
    """Load every configured provider.

    Parameters
    ----------
    path : str or Path, optional
        Explicit descriptor file. Defaults to ``find_providers_file()``.
    settings : OAuthSettings, optional
        Supplies ``providers_file`` and inline ``providers``. Inline
        entries replace file entries with the same id.

    Returns
    -------
    list[Provider]
        Providers in file order, followed by new inline providers.
    """
    if path is None:
        path = find_providers_file(settings)

    merged: dict[str, Provider] = {}
    if path is not None:
        for provider in load_providers_file(path):
            merged[provider.id] = provider
        logger.debug("Loaded %d provider(s) from %s", len(merged), path)

    if settings is not None and settings.providers:
        for provider in parse_providers(settings.providers, source="settings"):
            merged[provider.id] = provider

    return list(merged.values())


# ── Presets ─────────────────────────────────────────────────────────


def github(
    client_id: str,
    client_secret: str | None = None,
    scope: list[str] | None = None,
    redirect_uri: str | None = None,
    provider_id: str = "github",
) -> Provider:
    """GitHub OAuth app with device flow support.

    GitHub answers token requests with form encoding unless asked for
    JSON, which every request does through ``Accept``.
    """
    return Provider(
        id=provider_id,
        authorization_url="https://github.com/login/oauth/authorize",
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106
        device_code_url="https://github.com/login/device/code",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scope=tuple(scope or ["read:user", "user:email"]),
        authorization_pattern=r"^https://api\.github\.com/",
    )


def google(
    client_id: str,
    client_secret: str | None = None,
    scope: list[str] | None = None,
    redirect_uri: str | None = None,
    provider_id: str = "google",
) -> Provider:
    """Google OAuth client (desktop or TV/limited-input)."""
    return Provider(
        id=provider_id,
        authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
        access_token_url="https://oauth2.googleapis.com/token",  # noqa: S106
        device_code_url="https://oauth2.googleapis.com/device/code",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scope=tuple(scope or ["openid", "email", "profile"]),
        authorization_pattern=r"^https://[a-z0-9.-]+\.googleapis\.com/",
    )


def microsoft(
    client_id: str,
    client_secret: str | None = None,
    tenant_id: str = "common",
    scope: list[str] | None = None,
    redirect_uri: str | None = None,
    provider_id: str = "microsoft",
) -> Provider:
    """Microsoft identity platform (Azure AD) application.

    Parameters
    ----------
    client_id : str
        Azure AD application (client) ID.
    client_secret : str, optional
        Azure AD client secret.
    tenant_id : str
        Azure AD tenant ID (default "common" for multi-tenant).
    scope : list[str], optional
        Requested scopes.
    redirect_uri : str, optional
        Registered redirect URI.
    provider_id : str
        Id of the returned provider.
    """
    base = f"https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0"
    return Provider(
        id=provider_id,
        authorization_url=f"{base}/authorize",
        access_token_url=f"{base}/token",
        device_code_url=f"{base}/devicecode",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scope=tuple(scope or ["openid", "email", "profile", "offline_access"]),
        authorization_pattern=r"^https://graph\.microsoft\.com/",
    )


PRESETS = {
    "github": github,
    "google": google,
    "microsoft": microsoft,
}
