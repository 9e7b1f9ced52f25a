"""Unit tests for OAuth wire request construction."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest

from pyoauth.exceptions import MalformedURLError
from pyoauth.models import DeviceCode, Provider, Token
from pyoauth.request_builder import (
    DEVICE_CODE_GRANT_TYPE,
    OAuthRequest,
    build_authorization_request,
    build_client_credentials_request,
    build_device_authorization_request,
    build_device_poll_request,
    build_refresh_request,
    build_token_request,
)
from pyoauth.types import (
    AuthorizationCodeGrant,
    ClientCredentialsGrant,
    DeviceCodeGrant,
    PKCEGrant,
    RefreshTokenGrant,
)


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


@pytest.fixture()
def github() -> Provider:
    return Provider.model_validate(
        {
            "id": "GH",
            "authorizationURL": "https://github.com/login/oauth/authorize",
            "accessTokenURL": "https://github.com/login/oauth/access_token",
            "clientID": "CID",
            "redirectURI": "app://cb",
        }
    )


# ── Authorization endpoint ──────────────────────────────────────────


class TestAuthorizationRequest:
    """Tests for build_authorization_request."""

    def test_authorization_code_literal(self, github: Provider) -> None:
        request = build_authorization_request(github, AuthorizationCodeGrant("STATE1"))
        query = _query(request.url)
        assert request.method == "GET"
        assert request.url.startswith("https://github.com/login/oauth/authorize?")
        assert query["client_id"] == "CID"
        assert query["redirect_uri"] == "app://cb"
        assert query["response_type"] == "code"
        assert query["state"] == "STATE1"
        assert "code_challenge" not in query

    def test_pkce_parameters(self, github: Provider) -> None:
        grant = PKCEGrant()
        query = _query(build_authorization_request(github, grant).url)
        assert query["state"] == grant.pkce.state
        assert query["code_challenge"] == grant.pkce.challenge
        assert query["code_challenge_method"] == "S256"
        assert grant.pkce.verifier not in build_authorization_request(github, grant).url

    def test_scope_joined_with_spaces(self, provider: Provider) -> None:
        query = _query(build_authorization_request(provider, AuthorizationCodeGrant()).url)
        assert query["scope"] == "read write"

    def test_scope_omitted_when_unset(self, github: Provider) -> None:
        assert "scope" not in _query(build_authorization_request(github, AuthorizationCodeGrant()).url)

    def test_extra_params(self, github: Provider) -> None:
        request = build_authorization_request(github, AuthorizationCodeGrant(), {"prompt": "login"})
        assert _query(request.url)["prompt"] == "login"

    def test_custom_user_agent(self, github: Provider) -> None:
        agent = github.model_copy(update={"custom_user_agent": "my-app/1.0"})
        request = build_authorization_request(agent, AuthorizationCodeGrant())
        assert request.headers == {"User-Agent": "my-app/1.0"}
        assert build_authorization_request(github, AuthorizationCodeGrant()).headers == {}

    @pytest.mark.parametrize("grant", [DeviceCodeGrant(), ClientCredentialsGrant(), RefreshTokenGrant()])
    def test_non_redirect_grants_rejected(self, github: Provider, grant: object) -> None:
        with pytest.raises(ValueError, match="does not use the authorization endpoint"):
            build_authorization_request(github, grant)  # type: ignore[arg-type]

    @pytest.mark.parametrize("url", ["", "/relative/authorize", "not a url"])
    def test_malformed_url(self, github: Provider, url: str) -> None:
        broken = github.model_copy(update={"authorization_url": url})
        with pytest.raises(MalformedURLError) as exc_info:
            build_authorization_request(broken, AuthorizationCodeGrant())
        assert exc_info.value.provider == "GH"


# ── Token endpoint ──────────────────────────────────────────────────


class TestTokenRequests:
    """Tests for token endpoint requests."""

    def test_code_exchange_form_body(self, provider: Provider) -> None:
        request = build_token_request(provider, "CODE", pkce_verifier="VERIFIER")
        assert request.method == "POST"
        assert request.url == provider.access_token_url
        assert request.headers["Accept"] == "application/json"
        assert request.data == {
            "client_id": "client-123",
            "client_secret": "secret-456",
            "code": "CODE",
            "redirect_uri": "app://callback",
            "grant_type": "authorization_code",
            "code_verifier": "VERIFIER",
        }

    def test_code_exchange_without_secret_or_verifier(self, public_provider: Provider) -> None:
        data = build_token_request(public_provider, "CODE").data
        assert data is not None
        assert "client_secret" not in data
        assert "code_verifier" not in data

    def test_query_encoding_when_form_disabled(self, provider: Provider) -> None:
        query_provider = provider.model_copy(update={"encode_body_as_form": False})
        request = build_token_request(query_provider, "CODE")
        assert request.data is None
        query = _query(request.url)
        assert query["code"] == "CODE"
        assert query["grant_type"] == "authorization_code"
        assert request.params == query

    def test_refresh_request(self, provider: Provider) -> None:
        request = build_refresh_request(provider, Token(access_token="at", refresh_token="rt"))
        assert request is not None
        assert request.url == provider.access_token_url
        assert request.params["grant_type"] == "refresh_token"
        assert request.params["refresh_token"] == "rt"

    def test_refresh_request_without_refresh_token(self, provider: Provider) -> None:
        assert build_refresh_request(provider, Token(access_token="at")) is None

    def test_client_credentials_request(self, provider: Provider) -> None:
        params = build_client_credentials_request(provider).params
        assert params["grant_type"] == "client_credentials"
        assert params["client_secret"] == "secret-456"
        assert params["scope"] == "read write"

    def test_token_url_must_be_absolute(self, provider: Provider) -> None:
        broken = provider.model_copy(update={"access_token_url": "token"})
        with pytest.raises(MalformedURLError):
            build_token_request(broken, "CODE")


# ── Device endpoints ────────────────────────────────────────────────


class TestDeviceRequests:
    """Tests for device authorization and polling requests."""

    def test_device_authorization_request(self, provider: Provider) -> None:
        request = build_device_authorization_request(provider)
        assert request.url == provider.device_code_url
        assert request.params == {
            "client_id": "client-123",
            "client_secret": "secret-456",
            "scope": "read write",
        }

    def test_device_authorization_requires_endpoint(self, public_provider: Provider) -> None:
        with pytest.raises(MalformedURLError, match="device code URL"):
            build_device_authorization_request(public_provider)

    def test_device_poll_request(self, provider: Provider) -> None:
        code = DeviceCode(device_code="dc", user_code="uc", verification_uri="https://x.test")
        params = build_device_poll_request(provider, code).params
        assert params["grant_type"] == DEVICE_CODE_GRANT_TYPE
        assert params["device_code"] == "dc"


class TestOAuthRequest:
    """Tests for the OAuthRequest value."""

    def test_params_merge_query_and_body(self) -> None:
        request = OAuthRequest("POST", "https://x.test/t?a=1", data={"b": "2"})
        assert request.params == {"a": "1", "b": "2"}
