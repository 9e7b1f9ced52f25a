"""Wire request construction for every OAuth 2.0 endpoint.

Builders are pure: they take a provider (plus grant data) and return an
``OAuthRequest`` value without touching the network. Token-endpoint
requests honour ``Provider.encode_body_as_form`` because authorization
servers disagree on whether they accept form bodies or query parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl

import httpx

from .exceptions import MalformedURLError
from .types import AuthorizationCodeGrant, PKCEGrant


if TYPE_CHECKING:
    from .models import DeviceCode, Provider, Token
    from .types import GrantType


DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

_JSON_ACCEPT = {"Accept": "application/json"}


@dataclass(frozen=True)
class OAuthRequest:
    """An outbound request ready to hand to an HTTP client.

    Attributes
    ----------
    method : str
        HTTP method, ``GET`` or ``POST``.
    url : str
        Absolute URL including any query parameters.
    data : dict[str, str] or None
        Form-encoded body parameters, or None for no body.
    headers : dict[str, str]
        Extra request headers.
    """

    method: str
    url: str
    data: dict[str, str] | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def params(self) -> dict[str, str]:
        """All OAuth parameters, whether sent in the query or the body."""
        params = dict(parse_qsl(httpx.URL(self.url).query.decode("ascii")))
        if self.data:
            params.update(self.data)
        return params


def _parse_url(value: str | None, provider: Provider, name: str) -> httpx.URL:
    """Parse an absolute endpoint URL or raise ``MalformedURLError``."""
    if not value:
        msg = f"Provider has no {name} configured"
        raise MalformedURLError(msg, provider=provider.id)
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        msg = f"Invalid {name}: {value!r}"
        raise MalformedURLError(msg, provider=provider.id) from exc
    if not url.scheme or not url.host:
        msg = f"{name} must be an absolute URL: {value!r}"
        raise MalformedURLError(msg, provider=provider.id)
    return url


def _params(**values: str | None) -> dict[str, str]:
    """Drop parameters whose value is absent."""
    return {key: value for key, value in values.items() if value is not None}


def _post(provider: Provider, url: httpx.URL, params: dict[str, str]) -> OAuthRequest:
    """Build a POST carrying ``params`` as a form body or as query parameters."""
    if provider.encode_body_as_form:
        return OAuthRequest("POST", str(url), data=params, headers=dict(_JSON_ACCEPT))
    return OAuthRequest("POST", str(url.copy_merge_params(params)), headers=dict(_JSON_ACCEPT))


def build_authorization_request(
    provider: Provider,
    grant: GrantType,
    extra_params: dict[str, str] | None = None,
) -> OAuthRequest:
    """Build the authorization endpoint URL the browser should load.

    Parameters
    ----------
    provider : Provider
        The provider to authorize against.
    grant : AuthorizationCodeGrant or PKCEGrant
        The grant carrying the CSRF state (and PKCE challenge).
    extra_params : dict, optional
        Additional query parameters (e.g. ``prompt``).

    Returns
    -------
    OAuthRequest
        A GET request for the consent page.

    Raises
    ------
    MalformedURLError
        If ``authorization_url`` is not an absolute URL.
    ValueError
        If ``grant`` does not use the authorization endpoint.
    """
    url = _parse_url(provider.authorization_url, provider, "authorization URL")

    if isinstance(grant, PKCEGrant):
        params = _params(
            client_id=provider.client_id,
            redirect_uri=provider.redirect_uri,
            response_type="code",
            state=grant.pkce.state,
            code_challenge=grant.pkce.challenge,
            code_challenge_method=grant.pkce.method,
            scope=provider.scope_string,
        )
    elif isinstance(grant, AuthorizationCodeGrant):
        params = _params(
            client_id=provider.client_id,
            redirect_uri=provider.redirect_uri,
            response_type="code",
            state=grant.state,
            scope=provider.scope_string,
        )
    else:
        msg = f"The {grant.name} grant does not use the authorization endpoint"
        raise ValueError(msg)

    if extra_params:
        params.update(extra_params)

    headers: dict[str, str] = {}
    if provider.custom_user_agent:
        headers["User-Agent"] = provider.custom_user_agent
    return OAuthRequest("GET", str(url.copy_merge_params(params)), headers=headers)


def build_token_request(
    provider: Provider,
    code: str,
    pkce_verifier: str | None = None,
) -> OAuthRequest:
    """Build the code-for-token exchange (RFC 6749 §4.1.3).

    Parameters
    ----------
    provider : Provider
        The provider that issued the code.
    code : str
        The authorization code from the redirect.
    pkce_verifier : str, optional
        The PKCE code verifier if PKCE was used.
    """
    url = _parse_url(provider.access_token_url, provider, "access token URL")
    params = _params(
        client_id=provider.client_id,
        client_secret=provider.client_secret,
        code=code,
        redirect_uri=provider.redirect_uri,
        grant_type="authorization_code",
        code_verifier=pkce_verifier,
    )
    return _post(provider, url, params)


def build_refresh_request(provider: Provider, token: Token) -> OAuthRequest | None:
    """Build a refresh request, or None if ``token`` has no refresh token."""
    if not token.refresh_token:
        return None
    url = _parse_url(provider.access_token_url, provider, "access token URL")
    params = _params(
        client_id=provider.client_id,
        client_secret=provider.client_secret,
        grant_type="refresh_token",
        refresh_token=token.refresh_token,
    )
    return _post(provider, url, params)


def build_device_authorization_request(provider: Provider) -> OAuthRequest:
    """Build the device authorization request (RFC 8628 §3.1)."""
    url = _parse_url(provider.device_code_url, provider, "device code URL")
    params = _params(
        client_id=provider.client_id,
        client_secret=provider.client_secret,
        scope=provider.scope_string,
    )
    return _post(provider, url, params)


def build_device_poll_request(provider: Provider, device_code: DeviceCode) -> OAuthRequest:
    """Build the device access token request used while polling (RFC 8628 §3.4)."""
    url = _parse_url(provider.access_token_url, provider, "access token URL")
    params = _params(
        client_id=provider.client_id,
        client_secret=provider.client_secret,
        grant_type=DEVICE_CODE_GRANT_TYPE,
        device_code=device_code.device_code,
    )
    return _post(provider, url, params)


def build_client_credentials_request(provider: Provider) -> OAuthRequest:
    """Build the client credentials token request (RFC 6749 §4.4.2)."""
    url = _parse_url(provider.access_token_url, provider, "access token URL")
    params = _params(
        client_id=provider.client_id,
        client_secret=provider.client_secret,
        grant_type="client_credentials",
        scope=provider.scope_string,
    )
    return _post(provider, url, params)
