"""Scope set normalization and matching.

Scope order never matters to the remote service, so every comparison
works on the lexicographically sorted sequence. Duplicates are kept and
must match positionally after sorting, the same way the service's
scope inspection endpoint reports them. An empty scope collection means
"no scope restriction", not "no scopes".
"""

from __future__ import annotations

import logging

from collections.abc import Collection, Iterable


logger = logging.getLogger("authsession.auth")


def normalize_scopes(scopes: Iterable[str] | None) -> list[str]:
    """Return the scopes as a new sorted list.

    Parameters
    ----------
    scopes : iterable of str, optional
        Scopes in any order. ``None`` is treated as empty.

    Returns
    -------
    list[str]
        Sorted scopes; duplicates preserved.
    """
    return sorted(scopes or ())


def scopes_equal(a: Iterable[str], b: Iterable[str]) -> bool:
    """Compare two scope collections ignoring order."""
    return normalize_scopes(a) == normalize_scopes(b)


def scope_key(scopes: Iterable[str]) -> str:
    """Canonical string key of a scope set, as sent in the ``scope`` parameter."""
    return " ".join(normalize_scopes(scopes))


def filter_scopes(
    scopes: Iterable[str] | None,
    valid_scopes: Collection[str] | None,
) -> list[str]:
    """Normalize scopes and drop the ones the remote service does not know.

    Parameters
    ----------
    scopes : iterable of str, optional
        Requested scopes.
    valid_scopes : collection of str, optional
        Scopes the service accepts. ``None`` disables filtering.

    Returns
    -------
    list[str]
        Sorted, filtered scopes.
    """
    normalized = normalize_scopes(scopes)
    if valid_scopes is None:
        return normalized
    filtered = [scope for scope in normalized if scope in valid_scopes]
    if len(filtered) != len(normalized):
        dropped = [scope for scope in normalized if scope not in valid_scopes]
        logger.warning(
            "Dropping scopes not recognized by the service: %s (keeping %s)",
            ",".join(dropped),
            ",".join(filtered) or "no scopes",
        )
    return filtered
