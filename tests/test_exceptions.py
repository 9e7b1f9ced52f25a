"""Tests for pyoauth.exceptions module.

These tests verify the exception hierarchy, message formatting, context
storage and the error kind each authorization failure carries.
"""

from __future__ import annotations

import pytest

from pyoauth.exceptions import (
    AuthorizationCallbackError,
    BadResponseError,
    ConfigurationError,
    CredentialStoreError,
    DecodingError,
    MalformedURLError,
    OAuthError,
    PyOAuthException,
)
from pyoauth.types import ErrorKind


class TestPyOAuthException:
    """Test base exception class behavior."""

    def test_message_only(self) -> None:
        """Exception with just a message stores it correctly."""
        exc = PyOAuthException("Something went wrong")
        assert exc.message == "Something went wrong"
        assert not exc.context
        assert str(exc) == "Something went wrong"

    def test_with_context(self) -> None:
        """Context appears in the string representation."""
        exc = PyOAuthException("Failed", provider="github", attempt=2)
        assert exc.context == {"provider": "github", "attempt": 2}
        assert "provider='github'" in str(exc)
        assert "attempt=2" in str(exc)

    def test_none_context_is_hidden(self) -> None:
        exc = PyOAuthException("Failed", provider=None)
        assert str(exc) == "Failed"

    def test_args_preserved(self) -> None:
        assert PyOAuthException("message").args == ("message",)


class TestOAuthError:
    """Test authorization failures."""

    @pytest.mark.parametrize(
        ("exc_type", "kind"),
        [
            (MalformedURLError, ErrorKind.MALFORMED_URL),
            (BadResponseError, ErrorKind.BAD_RESPONSE),
            (DecodingError, ErrorKind.DECODING),
            (CredentialStoreError, ErrorKind.CREDENTIAL_STORE),
            (AuthorizationCallbackError, ErrorKind.INVALID_CALLBACK),
        ],
    )
    def test_kind(self, exc_type: type[OAuthError], kind: ErrorKind) -> None:
        """Every subclass pins the kind published in Error states."""
        exc = exc_type("failed", provider="github")
        assert exc.kind is kind
        assert isinstance(exc, OAuthError)
        assert isinstance(exc, PyOAuthException)
        assert exc.provider == "github"

    def test_bad_response_details(self) -> None:
        exc = BadResponseError("denied", provider="gh", status_code=400, error_code="invalid_grant")
        assert exc.status_code == 400
        assert exc.error_code == "invalid_grant"
        assert "status_code=400" in str(exc)
        assert "error_code='invalid_grant'" in str(exc)

    def test_configuration_error_is_not_an_oauth_error(self) -> None:
        assert not issubclass(ConfigurationError, OAuthError)
        assert issubclass(ConfigurationError, PyOAuthException)

    def test_catch_all(self) -> None:
        with pytest.raises(PyOAuthException):
            raise DecodingError("bad body")
