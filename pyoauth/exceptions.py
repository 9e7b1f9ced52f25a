"""pyoauth exception hierarchy.

All pyoauth-specific exceptions inherit from PyOAuthException, enabling
catch-all handling while supporting specific error types. Every failure
raised by the authorization engine is an ``OAuthError`` carrying the
``ErrorKind`` that is also published through ``Error`` states.
"""

from __future__ import annotations

from typing import Any, ClassVar

from .types import ErrorKind


class PyOAuthException(Exception):
    """Base exception for all pyoauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize pyoauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, status_code, key, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(PyOAuthException):
    """Provider descriptor or settings are invalid."""


class OAuthError(PyOAuthException):
    """Base exception for all authorization failures.

    Subclasses pin ``kind`` so that a raised error and the ``Error`` state
    published for it always agree.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.BAD_RESPONSE

    def __init__(self, message: str, provider: str | None = None, **context: Any) -> None:
        """Initialize authorization error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The id of the provider involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class MalformedURLError(OAuthError):
    """A request URL could not be formed from the provider configuration."""

    kind = ErrorKind.MALFORMED_URL


class BadResponseError(OAuthError):
    """Transport failure or an unsuccessful response from the provider.

    Raised when the HTTP client fails, or when the provider answers with a
    non-success status or an OAuth ``error`` body.
    """

    kind = ErrorKind.BAD_RESPONSE

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize bad response error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The id of the provider involved.
        status_code : int, optional
            The HTTP status code, when a response was received.
        error_code : str, optional
            The OAuth ``error`` value from the response body.
        **context : Any
            Additional context.
        """
        super().__init__(
            message,
            provider=provider,
            status_code=status_code,
            error_code=error_code,
            **context,
        )
        self.status_code = status_code
        self.error_code = error_code


class DecodingError(OAuthError):
    """A response body did not match the expected token or device-code schema."""

    kind = ErrorKind.DECODING


class CredentialStoreError(OAuthError):
    """Persisting, reading or deleting a credential failed."""

    kind = ErrorKind.CREDENTIAL_STORE


class AuthorizationCallbackError(OAuthError):
    """A redirect callback was rejected.

    Raised when the redirect carries a provider error, has no authorization
    code, or its ``state`` does not match the pending grant.
    """

    kind = ErrorKind.INVALID_CALLBACK
