"""Secure random values and the digests/encodings built on them."""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode


def random_bytes(count: int = 32) -> bytes:
    """Return ``count`` cryptographically secure random bytes."""
    if count <= 0:
        msg = f"count must be positive, got {count}"
        raise ValueError(msg)
    return secrets.token_bytes(count)


def base64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url (RFC 4648 §5)."""
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def sha256(data: str | bytes) -> bytes:
    """Return the SHA-256 digest of ``data`` (text is UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).digest()


def secure_random(count: int = 32) -> str:
    """Generate a URL-safe random string from ``count`` random bytes.

    Parameters
    ----------
    count : int
        Number of random bytes (default 32, giving 43 characters).

    Returns
    -------
    str
        Unpadded base64url text, safe for query parameters.
    """
    return base64url_encode(random_bytes(count))
