"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .crypto import base64url_encode, secure_random, sha256


def code_challenge(verifier: str) -> str:
    """Compute the S256 code challenge for ``verifier``."""
    return base64url_encode(sha256(verifier.encode("ascii")))


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    A new pair is generated for every authorization attempt and is never
    reused.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    state : str
        CSRF nonce sent alongside the challenge, independent of the verifier.
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    state: str = field(default_factory=lambda: secure_random(16))
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of bytes for the random verifier (default 64).
            RFC 7636 recommends at least 32 bytes and caps the encoded
            verifier at 128 characters, so ``length`` must be 32 to 96.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        if not 32 <= length <= 96:
            msg = f"PKCE verifier length must be between 32 and 96 bytes, got {length}"
            raise ValueError(msg)
        verifier = secure_random(length)
        return cls(verifier=verifier, challenge=code_challenge(verifier))
