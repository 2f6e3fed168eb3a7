"""Unit tests for session list persistence."""

from __future__ import annotations

import asyncio
import json

from typing import Any

import pytest

from authsession.auth.secret_store import MemorySecretStore
from authsession.auth.session_store import SessionStore, decode_sessions, encode_sessions
from authsession.exceptions import SessionCorruptionError
from authsession.models import Session, SessionAccount
from conftest import SECRET_KEY, stored_blob


def _run(coro: Any) -> Any:
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _sessions() -> list[Session]:
    return [
        Session(
            id="s1",
            access_token="tok1",
            scopes=["a", "b"],
            account=SessionAccount(id="u1", label="Alice"),
        ),
        Session(id="s2", access_token="tok2", scopes=[]),
    ]


class TestDecodeSessions:
    """Tests for decode_sessions."""

    @pytest.mark.parametrize("blob", [None, ""])
    def test_missing_blob_is_empty(self, blob: str | None) -> None:
        """No blob decodes to no sessions."""
        result = decode_sessions(blob)
        assert result.ok
        assert result.sessions == ()
        assert result.raw_count == 0

    def test_not_json(self) -> None:
        """Malformed JSON fails as a whole."""
        result = decode_sessions("{not json")
        assert not result.ok
        assert "not valid JSON" in (result.error or "")

    def test_not_a_list(self) -> None:
        """A JSON value other than an array fails as a whole."""
        assert not decode_sessions('{"id": "s1"}').ok

    def test_invalid_entries_skipped(self) -> None:
        """Entries missing required fields are skipped and counted."""
        blob = stored_blob(
            {"id": "s1", "accessToken": "t", "scopes": ["a"]},
            {"id": "s2", "scopes": ["a"]},
            "garbage",
        )
        result = decode_sessions(blob)
        assert result.ok
        assert [s.id for s in result.sessions] == ["s1"]
        assert result.raw_count == 3

    def test_legacy_display_name(self) -> None:
        """Accounts written with displayName decode."""
        blob = stored_blob(
            {"id": "s1", "accessToken": "t", "scopes": [], "account": {"id": "u", "displayName": "D"}}
        )
        (session,) = decode_sessions(blob).sessions
        assert session.account is not None
        assert session.account.resolved_label == "D"


class TestEncodeSessions:
    """Tests for encode_sessions."""

    def test_persisted_shape(self) -> None:
        """The blob is a JSON array of camelCase objects."""
        data = json.loads(encode_sessions(_sessions()))
        assert data[0] == {
            "id": "s1",
            "accessToken": "tok1",
            "scopes": ["a", "b"],
            "account": {"id": "u1", "label": "Alice"},
        }
        assert data[1] == {"id": "s2", "accessToken": "tok2", "scopes": []}


class TestSessionStore:
    """Tests for SessionStore."""

    def test_save_then_load_round_trip(self) -> None:
        """save followed by load yields equal sessions."""

        async def _scenario() -> list[Session]:
            store = SessionStore(MemorySecretStore(), SECRET_KEY)
            await store.save(_sessions())
            return await store.load()

        assert _run(_scenario()) == _sessions()

    def test_load_empty(self) -> None:
        """A missing blob loads as an empty list."""
        assert _run(SessionStore(MemorySecretStore(), SECRET_KEY).load()) == []

    def test_corrupt_blob_deleted_and_raised(self) -> None:
        """A corrupt blob is deleted before SessionCorruptionError is raised."""
        secrets = MemorySecretStore({SECRET_KEY: "{not json"})
        store = SessionStore(secrets, SECRET_KEY)
        with pytest.raises(SessionCorruptionError):
            _run(store.load())
        assert _run(secrets.get(SECRET_KEY)) is None
        assert _run(store.load()) == []

    def test_save_overwrites(self) -> None:
        """Every save replaces the whole blob."""

        async def _scenario() -> list[Session]:
            store = SessionStore(MemorySecretStore(), SECRET_KEY)
            await store.save(_sessions())
            await store.save(_sessions()[1:])
            return await store.load()

        assert [s.id for s in _run(_scenario())] == ["s2"]

    def test_clear(self) -> None:
        """clear deletes the blob."""

        async def _scenario() -> str | None:
            secrets = MemorySecretStore()
            store = SessionStore(secrets, SECRET_KEY)
            await store.save(_sessions())
            await store.clear()
            return await secrets.get(SECRET_KEY)

        assert _run(_scenario()) is None

    def test_save_fires_changed(self) -> None:
        """Saving notifies secret store subscribers with the blob key."""

        async def _scenario() -> list[str]:
            secrets = MemorySecretStore()
            changed: list[str] = []
            secrets.on_did_change(changed.append)
            await SessionStore(secrets, SECRET_KEY).save([])
            return changed

        assert _run(_scenario()) == [SECRET_KEY]
