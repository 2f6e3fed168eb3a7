"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets
import uuid

from base64 import urlsafe_b64encode
from dataclasses import dataclass


# RFC 7636 caps the verifier at 128 characters
_MAX_VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 128) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes drawn for the verifier (default 128).
            The base64url text is cut to the 128 characters RFC 7636 allows.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        verifier = secrets.token_urlsafe(length)[:_MAX_VERIFIER_LENGTH]
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        challenge = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        return cls(verifier=verifier, challenge=challenge)


def new_state() -> str:
    """Generate an OAuth ``state`` nonce.

    A random UUID4 (122 bits of entropy). It also keys pending logins
    when matching redirects.
    """
    return str(uuid.uuid4())
