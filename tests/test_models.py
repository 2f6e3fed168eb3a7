"""Tests for session and payload models."""

from __future__ import annotations

import pytest

from pydantic import ValidationError

from authsession.models import UNKNOWN_ACCOUNT, Session, SessionAccount, TokenResponse, UserInfo
from authsession.types import LoginState, SessionChangeEvent


class TestSession:
    """Tests for the Session model."""

    def test_wire_format_uses_camel_case(self) -> None:
        """to_wire writes the persisted field names."""
        session = Session(
            id="s1",
            access_token="tok1",
            scopes=["a", "b"],
            account=SessionAccount(id="u1", label="Alice"),
        )
        assert session.to_wire() == {
            "id": "s1",
            "accessToken": "tok1",
            "scopes": ["a", "b"],
            "account": {"id": "u1", "label": "Alice"},
        }

    def test_account_optional(self) -> None:
        """Sessions without an account omit it on the wire."""
        session = Session.model_validate({"id": "s1", "accessToken": "t", "scopes": []})
        assert session.account is None
        assert "account" not in session.to_wire()

    def test_missing_token_rejected(self) -> None:
        """accessToken is required."""
        with pytest.raises(ValidationError):
            Session.model_validate({"id": "s1", "scopes": []})

    def test_frozen(self) -> None:
        """Sessions are replaced, never mutated."""
        session = Session(id="s1", access_token="t")
        with pytest.raises(ValidationError):
            session.id = "s2"  # type: ignore[misc]


class TestSessionAccount:
    """Tests for SessionAccount."""

    def test_resolved_label_prefers_label(self) -> None:
        """label wins over the legacy displayName."""
        account = SessionAccount.model_validate({"id": "u", "label": "L", "displayName": "D"})
        assert account.resolved_label == "L"

    def test_resolved_label_falls_back_to_display_name(self) -> None:
        """displayName is used when label is missing."""
        account = SessionAccount.model_validate({"id": "u", "displayName": "D"})
        assert account.resolved_label == "D"


class TestUserInfo:
    """Tests for UserInfo."""

    @pytest.mark.parametrize("field", ["accountName", "name", "fullName"])
    def test_account_name_aliases(self, field: str) -> None:
        """The account name is read from any of the known fields."""
        assert UserInfo.model_validate({"id": "u1", field: "Alice"}).account_name == "Alice"

    def test_account_name_default(self) -> None:
        """A missing name falls back to <unknown>."""
        assert UserInfo.model_validate({"id": "u1"}).account_name == UNKNOWN_ACCOUNT


class TestTokenResponse:
    """Tests for TokenResponse."""

    def test_extra_fields_ignored(self) -> None:
        """Unknown fields in the token response are ignored."""
        token = TokenResponse.model_validate({"access_token": "x.y.z", "id_token": "i"})
        assert token.access_token == "x.y.z"
        assert token.token_type == "Bearer"


class TestTypes:
    """Tests for LoginState and SessionChangeEvent."""

    def test_terminal_states(self) -> None:
        """Only the four settled states are terminal."""
        terminal = {s for s in LoginState if s.is_terminal}
        assert terminal == {
            LoginState.RESOLVED,
            LoginState.REJECTED,
            LoginState.CANCELED,
            LoginState.TIMED_OUT,
        }

    def test_change_event_empty(self) -> None:
        """An event with nothing added or removed is empty."""
        assert SessionChangeEvent().is_empty
        assert not SessionChangeEvent(added=(Session(id="s", access_token="t"),)).is_empty
