"""Serialization of the session list to and from the secret store.

The whole list lives in one JSON blob under one key per remote host.
Every save overwrites the blob (last writer wins).
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import json
import logging

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ..exceptions import SessionCorruptionError
from ..models import Session


if TYPE_CHECKING:
    from collections.abc import Iterable

    from .secret_store import SecretStore


logger = logging.getLogger("authsession.auth")


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of decoding a persisted blob.

    Attributes
    ----------
    sessions : tuple[Session, ...]
        Entries that passed validation, in stored order.
    raw_count : int
        Number of entries in the stored array, valid or not.
    error : str, optional
        Why the blob as a whole could not be decoded.
    """

    sessions: tuple[Session, ...] = ()
    raw_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the blob was a JSON array."""
        return self.error is None


def decode_sessions(blob: str | None) -> DecodeResult:
    """Decode a persisted blob into sessions.

    A missing or empty blob decodes to no sessions. Entries that do not
    match the session schema are skipped with a warning; only a blob that
    is not a JSON array fails as a whole.

    Parameters
    ----------
    blob : str, optional
        The raw value read from the secret store.

    Returns
    -------
    DecodeResult
        Decoded sessions, or the reason decoding failed.
    """
    if not blob:
        return DecodeResult()
    try:
        data = json.loads(blob)
    except ValueError as exc:
        return DecodeResult(error=f"stored sessions are not valid JSON: {exc}")
    if not isinstance(data, list):
        return DecodeResult(error=f"stored sessions are a {type(data).__name__}, not a list")

    sessions: list[Session] = []
    for index, item in enumerate(data):
        try:
            sessions.append(Session.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                "Skipping stored session %d: %d validation error(s)", index, exc.error_count()
            )
    return DecodeResult(sessions=tuple(sessions), raw_count=len(data))


def encode_sessions(sessions: Iterable[Session]) -> str:
    """Encode sessions into the persisted JSON array."""
    return json.dumps([session.to_wire() for session in sessions])


class SessionStore:
    """Loads and saves the session list for one remote host.

    Parameters
    ----------
    secret_store : SecretStore
        Backend the blob is persisted in.
    key : str
        Secret key of the blob, e.g. ``authsession.auth.gitpod.io``.
    """

    def __init__(self, secret_store: SecretStore, key: str) -> None:
        """Initialize the session store."""
        self.secret_store = secret_store
        self.key = key

    async def read(self) -> DecodeResult:
        """Read and decode the blob.

        Returns
        -------
        DecodeResult
            Always ``ok``; a corrupt blob raises instead.

        Raises
        ------
        SessionCorruptionError
            If the blob could not be decoded. The blob is deleted first.
        """
        blob = await self.secret_store.get(self.key)
        result = decode_sessions(blob)
        if not result.ok:
            logger.error("Deleting corrupt session blob %s: %s", self.key, result.error)
            await self.secret_store.delete(self.key)
            raise SessionCorruptionError(result.error or "corrupt session blob", key=self.key)
        return result

    async def load(self) -> list[Session]:
        """Load the stored sessions.

        Returns
        -------
        list[Session]
            Stored sessions; empty when nothing is stored.

        Raises
        ------
        SessionCorruptionError
            If the blob could not be decoded. The blob is deleted first.
        """
        result = await self.read()
        return list(result.sessions)

    async def save(self, sessions: Iterable[Session]) -> None:
        """Overwrite the blob with ``sessions``."""
        sessions = list(sessions)
        logger.info("Storing %d sessions...", len(sessions))
        await self.secret_store.set(self.key, encode_sessions(sessions))
        logger.info("Stored %d sessions!", len(sessions))

    async def clear(self) -> None:
        """Delete the blob."""
        await self.secret_store.delete(self.key)
