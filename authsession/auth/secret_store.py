"""Pluggable secret storage backends.

Provides the SecretStore ABC and concrete implementations for
in-memory and OS keyring-backed persistence of opaque string blobs,
each with a subscribable "changed" signal.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import keyring

from ..events import EventEmitter


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import AuthSettings
    from ..events import Subscription


logger = logging.getLogger("authsession.auth")


class SecretStore(ABC):
    """Abstract base class for secret storage.

    Values are opaque strings. All methods are async to support both
    local and OS-backed stores. ``changed`` fires with the key whenever
    a value is written or deleted, by this process or, where the
    backend can tell, by another one.
    """

    def __init__(self) -> None:
        """Initialize the change signal."""
        self._changed: EventEmitter[str] = EventEmitter("secret_store.changed")

    def on_did_change(self, listener: Callable[[str], Any]) -> Subscription:
        """Subscribe to change notifications.

        Parameters
        ----------
        listener : callable
            Called with the changed key. May be a coroutine function.

        Returns
        -------
        Subscription
            Handle that removes the listener when disposed.
        """
        return self._changed.subscribe(listener)

    def _fire_changed(self, key: str) -> None:
        self._changed.fire(key)

    async def drain(self) -> None:
        """Wait for async change listeners to finish."""
        await self._changed.drain()

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Load the value stored under ``key``.

        Parameters
        ----------
        key : str
            Secret identifier.

        Returns
        -------
        str or None
            The stored value, or None if not found.
        """

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Parameters
        ----------
        key : str
            Secret identifier.
        value : str
            Opaque value to persist.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the value stored under ``key``. No-op when absent.

        Parameters
        ----------
        key : str
            Secret identifier.
        """

    async def close(self) -> None:  # noqa: B027
        """Release background resources."""


class MemorySecretStore(SecretStore):
    """In-memory secret store for tests and single-process use.

    Several :class:`SessionManager` instances sharing one
    ``MemorySecretStore`` behave like several windows sharing the OS
    secret store.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Initialize the memory secret store."""
        super().__init__()
        self._values: dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        """Load a value from memory."""
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        """Save a value in memory and notify listeners."""
        async with self._lock:
            self._values[key] = value
        self._fire_changed(key)

    async def delete(self, key: str) -> None:
        """Delete a value from memory and notify listeners if it existed."""
        async with self._lock:
            existed = self._values.pop(key, None) is not None
        if existed:
            self._fire_changed(key)

    def keys(self) -> list[str]:
        """List stored keys."""
        return list(self._values)


class KeyringSecretStore(SecretStore):
    """OS keyring-backed secret store.

    The keyring API has no change notification, so values written by
    other processes are detected by polling the keys this store has
    touched (:meth:`poll_for_changes`, or :meth:`watch` in the
    background). Keyring failures are logged and treated as "no value".

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "authsession").
    """

    def __init__(self, service_name: str = "authsession") -> None:
        """Initialize the keyring secret store."""
        super().__init__()
        self._service_name = service_name
        self._keyring = keyring
        self._last_seen: dict[str, str | None] = {}
        self._watch_task: asyncio.Task[None] | None = None

    @property
    def service_name(self) -> str:
        """Keyring service the secrets live under."""
        return self._service_name

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def get(self, key: str) -> str | None:
        """Load a value from the OS keyring."""
        try:
            value = await self._run(self._keyring.get_password, self._service_name, key)
        except Exception as exc:
            logger.error("Getting secret %s failed: %s", key, exc)
            return None
        self._last_seen[key] = value
        return value

    async def set(self, key: str, value: str) -> None:
        """Save a value to the OS keyring and notify listeners."""
        try:
            await self._run(self._keyring.set_password, self._service_name, key, value)
        except Exception as exc:
            logger.error("Setting secret %s failed: %s", key, exc)
            return
        self._last_seen[key] = value
        self._fire_changed(key)

    async def delete(self, key: str) -> None:
        """Delete a value from the OS keyring and notify listeners."""
        with contextlib.suppress(Exception):
            await self._run(self._keyring.delete_password, self._service_name, key)
        if self._last_seen.get(key) is not None:
            self._fire_changed(key)
        self._last_seen[key] = None

    async def poll_for_changes(self) -> list[str]:
        """Re-read every known key and fire ``changed`` for the ones that differ.

        Returns
        -------
        list[str]
            Keys whose value changed since they were last seen.
        """
        changed: list[str] = []
        for key, previous in list(self._last_seen.items()):
            try:
                current = await self._run(self._keyring.get_password, self._service_name, key)
            except Exception as exc:
                logger.debug("Polling secret %s failed: %s", key, exc)
                continue
            if current != previous:
                self._last_seen[key] = current
                changed.append(key)
        for key in changed:
            logger.debug("Secret %s changed outside this process", key)
            self._fire_changed(key)
        return changed

    def watch(self, interval: float = 2.0) -> asyncio.Task[None]:
        """Start polling for external changes on the running loop.

        Parameters
        ----------
        interval : float
            Seconds between polls.

        Returns
        -------
        asyncio.Task
            The polling task; stopped by :meth:`close`.
        """
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.ensure_future(self._watch_loop(interval))
        return self._watch_task

    async def _watch_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.poll_for_changes()

    async def close(self) -> None:
        """Stop the polling task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None


def create_secret_store(settings: AuthSettings) -> SecretStore:
    """Build the secret store selected by ``settings.secret_store_backend``.

    Parameters
    ----------
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    SecretStore
        A new store instance. Callers own it; nothing is cached here.
    """
    backend = settings.secret_store_backend
    if backend == "memory":
        return MemorySecretStore()
    if backend == "keyring":
        return KeyringSecretStore(service_name=settings.keyring_service)
    msg = f"Unknown secret store backend: {backend}"
    raise ValueError(msg)
