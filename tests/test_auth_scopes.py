"""Unit tests for scope normalization and filtering."""

from __future__ import annotations

import logging

import pytest

from authsession.auth.scopes import filter_scopes, normalize_scopes, scope_key, scopes_equal


class TestNormalizeScopes:
    """Tests for normalize_scopes."""

    def test_sorts(self) -> None:
        """Scopes are sorted lexicographically."""
        assert normalize_scopes(["b", "c", "a"]) == ["a", "b", "c"]

    def test_keeps_duplicates(self) -> None:
        """Duplicates survive normalization."""
        assert normalize_scopes(["b", "a", "b"]) == ["a", "b", "b"]

    def test_none_is_empty(self) -> None:
        """None normalizes to an empty list."""
        assert normalize_scopes(None) == []

    def test_returns_new_list(self) -> None:
        """The input is not sorted in place."""
        scopes = ["b", "a"]
        normalize_scopes(scopes)
        assert scopes == ["b", "a"]


class TestScopesEqual:
    """Tests for scopes_equal."""

    def test_order_insensitive(self) -> None:
        """Order does not matter."""
        assert scopes_equal(["a", "b"], ["b", "a"])

    def test_duplicates_must_match(self) -> None:
        """Duplicates are compared positionally."""
        assert not scopes_equal(["a", "a", "b"], ["a", "b"])

    def test_different_sets(self) -> None:
        """Different scopes are not equal."""
        assert not scopes_equal(["a"], ["b"])


class TestScopeKey:
    """Tests for scope_key."""

    def test_space_joined_sorted(self) -> None:
        """The key is the sorted scopes joined by spaces."""
        assert scope_key(["function:getWorkspace", "resource:default"]) == (
            "function:getWorkspace resource:default"
        )
        assert scope_key(["b", "a"]) == scope_key(["a", "b"])

    def test_empty(self) -> None:
        """Empty scopes produce an empty key."""
        assert scope_key([]) == ""


class TestFilterScopes:
    """Tests for filter_scopes."""

    def test_none_disables_filtering(self) -> None:
        """Without a valid-scope set, scopes are only normalized."""
        assert filter_scopes(["z", "a"], None) == ["a", "z"]

    def test_drops_unknown(self, caplog: pytest.LogCaptureFixture) -> None:
        """Unknown scopes are dropped with a warning."""
        with caplog.at_level(logging.WARNING, logger="authsession.auth"):
            result = filter_scopes(["b", "x", "a"], ["a", "b", "c"])
        assert result == ["a", "b"]
        assert "x" in caplog.text

    def test_no_warning_when_all_valid(self, caplog: pytest.LogCaptureFixture) -> None:
        """No warning when every scope is recognized."""
        with caplog.at_level(logging.WARNING, logger="authsession.auth"):
            assert filter_scopes(["b", "a"], ["a", "b", "c"]) == ["a", "b"]
        assert not caplog.records

    def test_all_unknown_yields_empty(self) -> None:
        """Filtering everything out yields an empty (wildcard) query."""
        assert filter_scopes(["x", "y"], ["a"]) == []
