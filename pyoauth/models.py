"""Pydantic models for providers, tokens, credentials and device codes.

Wire payloads (token and device authorization responses) are decoded
straight into these models; credentials are persisted as their JSON dump.
"""

from __future__ import annotations

import re
import time

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Provider(BaseModel):
    """Configuration for one OAuth 2.0 authorization server.

    Descriptor files use camelCase keys (``authorizationURL``,
    ``clientID``, ...); the snake_case field names are accepted too.
    Providers are immutable and compare equal by ``id``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    authorization_url: str = Field(alias="authorizationURL")
    access_token_url: str = Field(alias="accessTokenURL")
    device_code_url: str | None = Field(default=None, alias="deviceCodeURL")
    client_id: str = Field(alias="clientID")
    client_secret: str | None = Field(default=None, alias="clientSecret")
    redirect_uri: str | None = Field(default=None, alias="redirectURI")
    scope: tuple[str, ...] | None = None
    authorization_pattern: str | None = Field(default=None, alias="authorizationPattern")
    encode_body_as_form: bool = Field(
        default=True,
        validation_alias=AliasChoices("encodeBodyAsForm", "encodeHttpBody", "encode_body_as_form"),
    )
    custom_user_agent: str | None = Field(default=None, alias="customUserAgent")
    debug: bool = False

    @field_validator("authorization_pattern")
    @classmethod
    def _compile_pattern(cls, v: str | None) -> str | None:
        """Reject patterns that are not valid regular expressions."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                msg = f"authorizationPattern is not a valid regular expression: {exc}"
                raise ValueError(msg) from exc
        return v

    @field_validator("client_secret", "redirect_uri", "device_code_url", mode="before")
    @classmethod
    def _empty_to_none(cls, v: Any) -> Any:
        """Treat empty strings in descriptors as absent values."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Provider):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def scope_string(self) -> str | None:
        """Scopes joined with spaces, or None when no scope is configured."""
        if not self.scope:
            return None
        return " ".join(self.scope)


class Token(BaseModel):
    """Token endpoint response (RFC 6749 §5.1).

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    refresh_token : str or None
        Optional refresh token for obtaining new access tokens.
    expires_in : int or None
        Token lifetime in seconds from issuance; None never expires.
    scope : str or None
        Space-separated list of granted scopes.
    token_type : str
        Token type, "Bearer" when the server omits it.
    id_token : str or None
        OpenID Connect ID token, carried opaquely.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str = "Bearer"  # noqa: S105
    id_token: str | None = None


class Credential(BaseModel):
    """A token issued by a provider, stamped with its issue time."""

    model_config = ConfigDict(frozen=True)

    issuer: str
    token: Token
    issued_at: float = Field(default_factory=time.time)

    @property
    def expiration(self) -> float | None:
        """Unix timestamp after which the token is expired, or None."""
        if self.token.expires_in is None:
            return None
        return self.issued_at + self.token.expires_in

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        expiration = self.expiration
        if expiration is None:
            return False
        return time.time() > expiration

    @property
    def authorization_header(self) -> str:
        """Value for the ``Authorization`` header, e.g. ``Bearer abc``."""
        return f"{self.token.token_type} {self.token.access_token}"


class DeviceCode(BaseModel):
    """Device authorization response (RFC 8628 §3.2).

    Google answers with ``verification_url`` instead of
    ``verification_uri``; both are accepted.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    device_code: str = Field(min_length=1)
    user_code: str
    verification_uri: str = Field(
        validation_alias=AliasChoices("verification_uri", "verification_url"),
    )
    verification_uri_complete: str | None = None
    expires_in: int | None = None
    interval: int = Field(default=5, ge=1)
    issued_at: float = Field(default_factory=time.time)

    @property
    def expiration(self) -> float | None:
        """Unix timestamp after which the device code is expired, or None."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    @property
    def is_expired(self) -> bool:
        """Check if the device code has expired."""
        expiration = self.expiration
        if expiration is None:
            return False
        return time.time() > expiration
