"""Grant types, engine states and error kinds.

``GrantType`` and ``State`` are closed unions of frozen dataclasses.
``OAuthEngine.authorize`` dispatches on the grant variant and raises
``TypeError`` for anything outside ``GrantType``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Union

from .crypto import secure_random
from .pkce import PKCEChallenge


if TYPE_CHECKING:
    from .exceptions import OAuthError
    from .models import Credential, DeviceCode, Provider


class ErrorKind(str, Enum):
    """Category of an authorization failure."""

    MALFORMED_URL = "malformed_url"
    BAD_RESPONSE = "bad_response"
    DECODING = "decoding"
    CREDENTIAL_STORE = "credential_store"
    INVALID_CALLBACK = "invalid_callback"


# ── Grant types ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    """Authorization code grant (RFC 6749 §4.1).

    Attributes
    ----------
    state : str
        CSRF nonce echoed back by the provider on the redirect.
    """

    name: ClassVar[str] = "authorization_code"

    state: str = field(default_factory=lambda: secure_random(16))


@dataclass(frozen=True)
class PKCEGrant:
    """Authorization code grant hardened with PKCE (RFC 7636)."""

    name: ClassVar[str] = "pkce"

    pkce: PKCEChallenge = field(default_factory=PKCEChallenge.generate)

    @property
    def state(self) -> str:
        """CSRF nonce carried by the PKCE pair."""
        return self.pkce.state


@dataclass(frozen=True)
class DeviceCodeGrant:
    """Device authorization grant (RFC 8628)."""

    name: ClassVar[str] = "device_code"


@dataclass(frozen=True)
class ClientCredentialsGrant:
    """Client credentials grant (RFC 6749 §4.4)."""

    name: ClassVar[str] = "client_credentials"


@dataclass(frozen=True)
class RefreshTokenGrant:
    """Refresh of a stored credential (RFC 6749 §6)."""

    name: ClassVar[str] = "refresh_token"


GrantType = Union[
    AuthorizationCodeGrant,
    PKCEGrant,
    DeviceCodeGrant,
    ClientCredentialsGrant,
    RefreshTokenGrant,
]


# ── Engine states ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Empty:
    """Nothing is authorized and no flow is running."""

    provider: ClassVar[None] = None


@dataclass(frozen=True)
class Authorizing:
    """Waiting for the browser collaborator to deliver a redirect."""

    provider: Provider
    grant: AuthorizationCodeGrant | PKCEGrant


@dataclass(frozen=True)
class RequestingAccessToken:
    """A token request is in flight."""

    provider: Provider


@dataclass(frozen=True)
class RequestingDeviceCode:
    """A device authorization request is in flight."""

    provider: Provider


@dataclass(frozen=True)
class ReceivedDeviceCode:
    """A device code was issued; the token endpoint is being polled."""

    provider: Provider
    device_code: DeviceCode


@dataclass(frozen=True)
class Authorized:
    """A credential is stored and usable."""

    provider: Provider
    credential: Credential


@dataclass(frozen=True)
class Error:
    """The last operation for ``provider`` failed.

    Attributes
    ----------
    provider : Provider
        The provider whose operation failed.
    kind : ErrorKind
        Category of the failure.
    error : OAuthError or None
        The underlying exception, when one was raised.
    """

    provider: Provider
    kind: ErrorKind
    error: OAuthError | None = field(default=None, compare=False)


State = Union[
    Empty,
    Authorizing,
    RequestingAccessToken,
    RequestingDeviceCode,
    ReceivedDeviceCode,
    Authorized,
    Error,
]
