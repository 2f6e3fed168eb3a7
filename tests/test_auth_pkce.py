"""Unit tests for PKCE generation."""

from __future__ import annotations

import hashlib
import re
import uuid

from base64 import urlsafe_b64encode

from authsession.auth.pkce import PKCEChallenge, new_state


class TestPKCEChallenge:
    """Tests for PKCEChallenge.generate."""

    def test_method_is_s256(self) -> None:
        """The challenge method is always S256."""
        assert PKCEChallenge.generate().method == "S256"

    def test_challenge_is_sha256_of_verifier(self) -> None:
        """The challenge is the unpadded base64url SHA-256 of the verifier."""
        pkce = PKCEChallenge.generate()
        digest = hashlib.sha256(pkce.verifier.encode("ascii")).digest()
        expected = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert pkce.challenge == expected
        assert "=" not in pkce.challenge

    def test_verifier_charset_and_length(self) -> None:
        """The verifier uses unreserved characters and fits RFC 7636 limits."""
        pkce = PKCEChallenge.generate()
        assert 43 <= len(pkce.verifier) <= 128
        assert re.fullmatch(r"[A-Za-z0-9_\-]+", pkce.verifier)

    def test_unique(self) -> None:
        """Each call produces a new verifier."""
        verifiers = {PKCEChallenge.generate().verifier for _ in range(20)}
        assert len(verifiers) == 20


class TestNewState:
    """Tests for new_state."""

    def test_is_uuid4(self) -> None:
        """The state nonce is a random UUID."""
        state = new_state()
        assert uuid.UUID(state).version == 4

    def test_unique(self) -> None:
        """Each nonce is unique."""
        assert len({new_state() for _ in range(50)}) == 50
