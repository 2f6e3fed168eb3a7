"""Observer registry for session change notification.

Listeners may be plain callables or coroutine functions. Async listeners
are scheduled on the running loop; their failures are logged, never
propagated back into the publisher.
"""

from __future__ import annotations

import asyncio
import inspect

from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .log import log_listener_error
from .types import SessionChangeEvent


if TYPE_CHECKING:
    from .models import Session


T = TypeVar("T")

# Type alias for listener functions (sync or async)
Listener = Callable[[T], None] | Callable[[T], Awaitable[None]]


class Subscription:
    """Handle returned by :meth:`EventEmitter.subscribe`.

    Call :meth:`dispose` (or use it as a context manager) to stop
    receiving events.
    """

    def __init__(self, dispose: Callable[[], None]) -> None:
        """Initialize the subscription with its removal callback."""
        self._dispose = dispose
        self._disposed = False

    @property
    def disposed(self) -> bool:
        """Whether the listener has been removed."""
        return self._disposed

    def dispose(self) -> None:
        """Remove the listener. Safe to call more than once."""
        if not self._disposed:
            self._disposed = True
            self._dispose()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class EventEmitter(Generic[T]):
    """Publishes events of one type to registered listeners.

    Parameters
    ----------
    name : str
        Event name used in log messages.
    """

    def __init__(self, name: str) -> None:
        """Initialize an emitter with no listeners."""
        self.name = name
        self._listeners: list[tuple[Listener[T], bool]] = []
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, listener: Listener[T]) -> Subscription:
        """Register a listener.

        Parameters
        ----------
        listener : callable
            Called with each fired event. May be a coroutine function.

        Returns
        -------
        Subscription
            Handle that removes the listener when disposed.
        """
        entry = (listener, inspect.iscoroutinefunction(listener))
        self._listeners.append(entry)

        def _remove() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return Subscription(_remove)

    @property
    def listener_count(self) -> int:
        """Number of registered listeners."""
        return len(self._listeners)

    def fire(self, event: T) -> None:
        """Deliver an event to every listener registered at call time."""
        for listener, is_async in list(self._listeners):
            try:
                if is_async:
                    self._schedule(listener(event))  # type: ignore[arg-type]
                else:
                    result = listener(event)
                    if inspect.isawaitable(result):
                        self._schedule(result)
            except Exception as exc:
                log_listener_error(self.name, exc)

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_listener_error(self.name, task.exception())  # type: ignore[arg-type]

    async def drain(self) -> None:
        """Wait for async listeners scheduled so far to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()


def diff_sessions(previous: Iterable[Session], current: Iterable[Session]) -> SessionChangeEvent:
    """Compute the change between two session snapshots by id only.

    Sessions whose id appears in both snapshots are never reported,
    even if their other fields differ.

    Parameters
    ----------
    previous : iterable of Session
        The snapshot the subscribers have already seen.
    current : iterable of Session
        The freshly read snapshot.

    Returns
    -------
    SessionChangeEvent
        ``added`` in current order, ``removed`` in previous order.
    """
    previous = list(previous)
    current = list(current)
    previous_ids = {session.id for session in previous}
    current_ids = {session.id for session in current}
    added = tuple(session for session in current if session.id not in previous_ids)
    removed = tuple(session for session in previous if session.id not in current_ids)
    return SessionChangeEvent(added=added, removed=removed)
