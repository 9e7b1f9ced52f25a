"""pyoauth - an OAuth 2.0 client engine.

Drives authorization code, PKCE, device code, client credentials and
refresh grants through one observable state machine, stores credentials
in the OS keyring and attaches them to matching httpx requests.
"""

from __future__ import annotations

from .browser import BrowserAuthorizer, LoopbackCallbackServer
from .config import OAuthSettings, clear_settings, get_settings, reload_settings
from .credential_store import (
    CredentialStore,
    KeyringSecureStore,
    MemorySecureStore,
    SecureStore,
    get_secure_store,
    reset_secure_store,
)
from .engine import BiometricGate, OAuthEngine
from .exceptions import (
    AuthorizationCallbackError,
    BadResponseError,
    ConfigurationError,
    CredentialStoreError,
    DecodingError,
    MalformedURLError,
    OAuthError,
    PyOAuthException,
)
from .injector import CredentialInjector
from .models import Credential, DeviceCode, Provider, Token
from .pkce import PKCEChallenge
from .providers import load_providers
from .request_builder import OAuthRequest
from .scheduler import ScheduledTask, Scheduler
from .types import (
    AuthorizationCodeGrant,
    Authorized,
    Authorizing,
    ClientCredentialsGrant,
    DeviceCodeGrant,
    Empty,
    Error,
    ErrorKind,
    GrantType,
    PKCEGrant,
    ReceivedDeviceCode,
    RefreshTokenGrant,
    RequestingAccessToken,
    RequestingDeviceCode,
    State,
)


__version__ = "0.1.0"

__all__ = [
    "AuthorizationCallbackError",
    "AuthorizationCodeGrant",
    "Authorized",
    "Authorizing",
    "BadResponseError",
    "BiometricGate",
    "BrowserAuthorizer",
    "ClientCredentialsGrant",
    "ConfigurationError",
    "Credential",
    "CredentialInjector",
    "CredentialStore",
    "CredentialStoreError",
    "DecodingError",
    "DeviceCode",
    "DeviceCodeGrant",
    "Empty",
    "Error",
    "ErrorKind",
    "GrantType",
    "KeyringSecureStore",
    "LoopbackCallbackServer",
    "MalformedURLError",
    "MemorySecureStore",
    "OAuthEngine",
    "OAuthError",
    "OAuthRequest",
    "OAuthSettings",
    "PKCEChallenge",
    "PKCEGrant",
    "Provider",
    "PyOAuthException",
    "ReceivedDeviceCode",
    "RefreshTokenGrant",
    "RequestingAccessToken",
    "RequestingDeviceCode",
    "ScheduledTask",
    "Scheduler",
    "SecureStore",
    "State",
    "Token",
    "__version__",
    "clear_settings",
    "get_secure_store",
    "get_settings",
    "load_providers",
    "reload_settings",
    "reset_secure_store",
]
