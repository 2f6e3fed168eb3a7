"""Login outcome and session change types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union


if TYPE_CHECKING:
    from .models import Session


class LoginState(str, Enum):
    """State of one login attempt.

    ``IDLE -> AWAITING_REDIRECT -> EXCHANGING -> terminal``. The four
    terminal states all trigger the same cleanup and are never left.
    """

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        """Whether the attempt has settled."""
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {LoginState.RESOLVED, LoginState.REJECTED, LoginState.CANCELED, LoginState.TIMED_OUT}
)


@dataclass(frozen=True)
class Resolved:
    """The redirect was accepted and the code exchanged for a token."""

    token: str


@dataclass(frozen=True)
class Canceled:
    """The cancel signal fired before a token was obtained."""


@dataclass(frozen=True)
class TimedOut:
    """No redirect was accepted before the deadline."""

    timeout: float


@dataclass(frozen=True)
class Failed:
    """The exchange was rejected or could not be performed."""

    reason: BaseException


LoginOutcome = Union[Resolved, Canceled, TimedOut, Failed]


@dataclass(frozen=True)
class SessionChangeEvent:
    """Batch of session changes published to subscribers.

    Attributes
    ----------
    added : tuple[Session, ...]
        Sessions that appeared.
    removed : tuple[Session, ...]
        Sessions that disappeared.
    changed : tuple[Session, ...]
        Always empty; sessions are replaced, not changed in place.
    """

    added: tuple[Session, ...] = ()
    removed: tuple[Session, ...] = ()
    changed: tuple[Session, ...] = ()

    @property
    def is_empty(self) -> bool:
        """True when nothing was added or removed."""
        return not self.added and not self.removed
