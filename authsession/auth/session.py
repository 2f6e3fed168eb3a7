"""Authentication session manager.

:class:`SessionManager` owns the in-memory session list for one remote
host. It creates sessions through the OAuth client, verifies sessions
read from the secret store against the service, and turns changes made
by other processes sharing that store into ``added``/``removed`` events.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes

from __future__ import annotations

import asyncio
import json
import logging
import uuid

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..config import AuthSettings
from ..events import EventEmitter, diff_sessions
from ..exceptions import (
    LoginCancelled,
    LoginFailed,
    LogoutFailed,
    SessionCorruptionError,
    UnauthorizedError,
)
from ..models import UNKNOWN_ACCOUNT, Session, SessionAccount
from ..types import SessionChangeEvent
from .collaborators import LoggingNotificationService, LoggingTelemetryReporter
from .oauth_client import OAuthClient
from .scopes import filter_scopes, normalize_scopes, scope_key
from .secret_store import KeyringSecretStore, create_secret_store
from .service import ServiceClient
from .session_store import SessionStore


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    import httpx

    from ..events import Subscription
    from .collaborators import BrowserOpener, NotificationService, TelemetryReporter
    from .secret_store import SecretStore


logger = logging.getLogger("authsession.auth")


@dataclass
class PendingCreation:
    """A ``create_session`` run shared by every caller for one scope key.

    Attributes
    ----------
    task : asyncio.Task
        Produces the stored session.
    cancel : asyncio.Event
        Cancel signal handed to the login; set when the last waiting
        caller cancels.
    waiters : int
        Callers currently awaiting ``task``.
    """

    task: asyncio.Task[Session]
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    waiters: int = 0


class SessionManager:
    """Manages the authentication sessions of one remote host.

    Parameters
    ----------
    settings : AuthSettings, optional
        Host and timeouts. Loaded from the environment when omitted.
    secret_store : SecretStore, optional
        Shared persistence. When omitted, one is built from
        ``settings.secret_store_backend`` and owned by this manager.
    browser_opener : BrowserOpener, optional
        Opens the authorize URL. Defaults to the system browser.
    notifications : NotificationService, optional
        Receives user-facing errors and warnings.
    telemetry : TelemetryReporter, optional
        Receives user-flow statuses.
    redirect_uri : str, optional
        Redirect URI to use instead of ``settings.resolve_redirect_uri()``.
    http_client : httpx.AsyncClient, optional
        HTTP client for the remote service.
    """

    def __init__(
        self,
        settings: AuthSettings | None = None,
        secret_store: SecretStore | None = None,
        browser_opener: BrowserOpener | None = None,
        notifications: NotificationService | None = None,
        telemetry: TelemetryReporter | None = None,
        redirect_uri: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the session manager."""
        self.settings = settings or AuthSettings()
        self._owns_secret_store = secret_store is None
        self.secret_store = secret_store or create_secret_store(self.settings)
        self._browser_opener = browser_opener
        self._notifications = notifications or LoggingNotificationService()
        self._telemetry = telemetry or LoggingTelemetryReporter()
        self._redirect_uri = redirect_uri or self.settings.resolve_redirect_uri()
        self._http_client = http_client

        self._changed: EventEmitter[SessionChangeEvent] = EventEmitter("sessions.changed")
        self._sessions: list[Session] = []
        self._init_task: asyncio.Task[None] | None = None
        self._store_subscription: Subscription | None = None
        self._creating: dict[str, PendingCreation] = {}
        self._update_lock = asyncio.Lock()

        self._valid_scopes: list[str] | None = None
        self._valid_scopes_fetched = False
        self._valid_scopes_lock = asyncio.Lock()

        self._build_host_clients()

    def _build_host_clients(self) -> None:
        self.service = ServiceClient(
            service_url=self.settings.service_url,
            client_id=self.settings.client_id,
            redirect_uri=self._redirect_uri,
            user_info_path=self.settings.user_info_path,
            http_timeout=self.settings.http_timeout_seconds,
            valid_scopes_timeout=self.settings.valid_scopes_timeout_seconds,
            http_client=self._http_client,
        )
        self.oauth = OAuthClient(
            self.service,
            browser_opener=self._browser_opener,
            notifications=self._notifications,
            timeout=self.settings.login_timeout_seconds,
        )
        self.store = SessionStore(self.secret_store, self.settings.secret_key)
        logger.info("Started authentication provider for %s", self.settings.host)

    @property
    def service_url(self) -> str:
        """Base URL of the current host."""
        return self.service.service_url

    @property
    def redirect_uri(self) -> str:
        """Redirect URI sent with authorize and token requests."""
        return self._redirect_uri

    @redirect_uri.setter
    def redirect_uri(self, value: str) -> None:
        self._redirect_uri = value
        self.service.redirect_uri = value

    @property
    def sessions(self) -> list[Session]:
        """Snapshot of the cached session list."""
        return list(self._sessions)

    def on_did_change_sessions(
        self, listener: Callable[[SessionChangeEvent], Any]
    ) -> Subscription:
        """Subscribe to session change events.

        Parameters
        ----------
        listener : callable
            Called with each :class:`SessionChangeEvent`. May be a
            coroutine function.

        Returns
        -------
        Subscription
            Handle that removes the listener when disposed.
        """
        return self._changed.subscribe(listener)

    async def drain(self) -> None:
        """Wait for scheduled listeners and reconciliation runs to finish."""
        await self.secret_store.drain()
        await self._changed.drain()

    def _flow(self) -> dict[str, Any]:
        return {"flow": "auth", "host": self.service_url}

    async def initialize(self) -> None:
        """Read the stored sessions and start following store changes.

        Safe to call more than once; every public operation calls it.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        self._sessions = await self.read_sessions()
        self._store_subscription = self.secret_store.on_did_change(self._on_secret_changed)
        if self._owns_secret_store and isinstance(self.secret_store, KeyringSecretStore):
            self.secret_store.watch(self.settings.secret_poll_interval_seconds)

    async def _on_secret_changed(self, key: str) -> None:
        if key == self.store.key:
            await self.check_for_updates()

    async def _fetch_valid_scopes(self) -> list[str] | None:
        async with self._valid_scopes_lock:
            if not self._valid_scopes_fetched:
                self._valid_scopes = await self.service.fetch_valid_scopes()
                self._valid_scopes_fetched = True
        return self._valid_scopes

    async def get_sessions(self, scopes: Iterable[str] | None = None) -> list[Session]:
        """Return the sessions granted exactly ``scopes``.

        Parameters
        ----------
        scopes : iterable of str, optional
            Requested scopes in any order. Scopes the service does not
            recognize are dropped first. Empty or omitted returns every
            session.

        Returns
        -------
        list[Session]
            Matching sessions.
        """
        await self.initialize()
        requested = normalize_scopes(scopes)
        if not requested:
            logger.info("Got %d sessions for all scopes...", len(self._sessions))
            return list(self._sessions)

        filtered = filter_scopes(requested, await self._fetch_valid_scopes())
        if not filtered:
            return list(self._sessions)
        found = [s for s in self._sessions if normalize_scopes(s.scopes) == filtered]
        logger.info("Got %d sessions for %s...", len(found), ",".join(filtered))
        return found

    async def create_session(
        self,
        scopes: Iterable[str],
        *,
        timeout: float | None = None,
        cancellation: asyncio.Event | None = None,
    ) -> Session:
        """Log in through the browser and store the new session.

        Concurrent calls for the same scope set share one login and
        return the same session. ``timeout`` applies to the call that
        starts the login. A caller whose ``cancellation`` fires gets
        :class:`LoginCancelled` at once; the shared login is only
        cancelled when no other caller is still waiting on it.

        Parameters
        ----------
        scopes : iterable of str
            Requested scopes in any order.
        timeout : float, optional
            Seconds to wait for the redirect.
        cancellation : asyncio.Event, optional
            Setting it abandons this call.

        Returns
        -------
        Session
            The stored session.

        Raises
        ------
        LoginCancelled
            If the login was cancelled or timed out. No notification is shown.
        LoginFailed
            On any other failure, after notifying the user.
        """
        await self.initialize()
        filtered = filter_scopes(scopes, await self._fetch_valid_scopes())
        key = scope_key(filtered)

        creation = self._creating.get(key)
        if creation is None:
            cancel = asyncio.Event()
            task = asyncio.ensure_future(self._create_session(filtered, timeout, cancel))
            creation = PendingCreation(task=task, cancel=cancel)
            self._creating[key] = creation
            task.add_done_callback(lambda done, key=key: self._forget_creation(key, done))
        else:
            logger.debug("Joining pending sign in for scopes: %s", key or "<all>")

        creation.waiters += 1
        try:
            if cancellation is None:
                return await asyncio.shield(creation.task)
            cancel_wait = asyncio.ensure_future(cancellation.wait())
            try:
                await asyncio.wait(
                    {creation.task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                cancel_wait.cancel()
            if creation.task.done():
                return creation.task.result()
            if creation.waiters == 1:
                creation.cancel.set()
                return await asyncio.shield(creation.task)
            msg = "Cancelled"
            raise LoginCancelled(msg, host=self.service_url, flow_id=key)
        finally:
            creation.waiters -= 1

    def _forget_creation(self, key: str, task: asyncio.Task[Session]) -> None:
        creation = self._creating.get(key)
        if creation is not None and creation.task is task:
            del self._creating[key]

    async def _create_session(
        self,
        scopes: list[str],
        timeout: float | None,
        cancellation: asyncio.Event | None,
    ) -> Session:
        flow = self._flow()
        try:
            flow["scopes"] = json.dumps(scopes)
            self._telemetry.send_user_flow_status("login", flow)

            token = await self.oauth.login(
                scopes, timeout=timeout, cancellation=cancellation, flow=flow
            )
            session = await self._token_to_session(token, scopes)
            flow["userId"] = session.account.id if session.account else UNKNOWN_ACCOUNT

            sessions = list(self._sessions)
            index = next(
                (
                    i
                    for i, s in enumerate(sessions)
                    if s.id == session.id or normalize_scopes(s.scopes) == scopes
                ),
                None,
            )
            if index is None:
                sessions.append(session)
            else:
                sessions[index] = session
            await self.store.save(sessions)
            self._sessions = sessions

            self._changed.fire(SessionChangeEvent(added=(session,)))
            logger.info("Login success!")
            self._telemetry.send_user_flow_status("login_successful", flow)
            return session
        except LoginCancelled:
            self._telemetry.send_user_flow_status("login_cancelled", flow)
            raise
        except Exception as exc:
            self._notifications.show_error(f"Sign in failed: {exc}", id="login_failed", flow=flow)
            self._telemetry.send_user_flow_status("login_failed", flow)
            logger.error("Sign in failed: %s", exc)
            if isinstance(exc, LoginFailed):
                raise
            msg = f"Sign in failed: {exc}"
            raise LoginFailed(msg, host=self.service_url, flow_id=scope_key(scopes)) from exc

    async def _token_to_session(self, token: str, scopes: list[str]) -> Session:
        user = await self.service.get_user_info(token)
        return Session(
            id=str(uuid.uuid4()),
            access_token=token,
            scopes=scopes,
            account=SessionAccount(id=user.id, label=user.account_name),
        )

    async def remove_session(self, session_id: str) -> None:
        """Sign out of a session.

        An unknown id is logged and ignored.

        Parameters
        ----------
        session_id : str
            Id of the session to remove.

        Raises
        ------
        LogoutFailed
            If the updated list could not be stored.
        """
        await self.initialize()
        flow = self._flow()
        try:
            self._telemetry.send_user_flow_status("logout", flow)
            logger.info("Logging out of %s", session_id)

            sessions = list(self._sessions)
            index = next((i for i, s in enumerate(sessions) if s.id == session_id), None)
            if index is None:
                logger.error("Session not found: %s", session_id)
            else:
                session = sessions.pop(index)
                if session.account:
                    flow["userId"] = session.account.id
                await self.store.save(sessions)
                self._sessions = sessions
                self._changed.fire(SessionChangeEvent(removed=(session,)))
            self._telemetry.send_user_flow_status("logout_successful", flow)
        except Exception as exc:
            self._notifications.show_error(
                f"Sign out failed: {exc}", id="logout_failed", flow=flow
            )
            self._telemetry.send_user_flow_status("logout_failed", flow)
            logger.error("Sign out failed: %s", exc)
            msg = f"Sign out failed: {exc}"
            raise LogoutFailed(msg, host=self.service_url) from exc

    async def read_sessions(self) -> list[Session]:
        """Load the stored sessions and verify each against the service.

        Sessions the service rejects as unauthorized are dropped; any
        other verification failure keeps the session. When sessions were
        dropped, the reduced list is stored. The cached list is left
        untouched.

        Returns
        -------
        list[Session]
            Verified sessions with sorted scopes and a resolved account.
        """
        try:
            logger.info("Reading sessions from secret store...")
            result = await self.store.read()
        except SessionCorruptionError as exc:
            logger.error("Error reading token: %s", exc)
            return []
        except Exception as exc:
            logger.error("Error reading token: %s", exc)
            return []

        verified = await asyncio.gather(*(self._verify_session(s) for s in result.sessions))
        sessions = [s for s in verified if s is not None]
        logger.info("Got %d verified sessions.", len(sessions))

        if len(sessions) != result.raw_count:
            try:
                await self.store.save(sessions)
            except Exception as exc:
                logger.error("Error storing verified sessions: %s", exc)
        return sessions

    async def _verify_session(self, stored: Session) -> Session | None:
        scopes = normalize_scopes(stored.scopes)
        scopes_str = " ".join(scopes)
        user = None
        try:
            user = await self.service.get_user_info(stored.access_token)
            logger.info("Verified session with the following scopes: %s", scopes_str)
        except UnauthorizedError:
            logger.info("Dropping unauthorized session with the following scopes: %s", scopes_str)
            return None
        except Exception as exc:
            logger.error(
                "Error while verifying session with the following scopes: %s: %s",
                scopes_str,
                exc,
            )

        if stored.account is not None:
            label = stored.account.resolved_label or UNKNOWN_ACCOUNT
            account_id = stored.account.id
        else:
            label = user.account_name if user else UNKNOWN_ACCOUNT
            account_id = user.id if user else UNKNOWN_ACCOUNT
        return Session(
            id=stored.id,
            access_token=stored.access_token,
            scopes=scopes,
            account=SessionAccount(id=account_id, label=label),
        )

    async def check_for_updates(self) -> SessionChangeEvent:
        """Re-read the store and publish what other processes changed.

        Sessions are compared by id only. A single event is fired when
        anything was added or removed. Runs are serialized, so a run that
        started later always reads after an earlier one has finished and
        decides the cached list.

        Returns
        -------
        SessionChangeEvent
            The computed difference, fired or not.
        """
        await self.initialize()
        async with self._update_lock:
            current = await self.read_sessions()
            # No await between capturing the previous snapshot and replacing it
            previous = self._sessions
            self._sessions = current
            event = diff_sessions(previous, current)

        for session in event.added:
            logger.info("Adding session %s found in secret store", session.id)
        for session in event.removed:
            logger.info("Removing session %s no longer found in secret store", session.id)
        if not event.is_empty:
            self._changed.fire(event)
        return event

    async def handle_redirect(self, uri: str) -> None:
        """Deliver an authorization redirect to the pending logins."""
        await self.oauth.handle_redirect(uri)

    async def reconfigure(self, host: str) -> None:
        """Switch to another remote host.

        Pending logins are cancelled, the valid-scopes cache is reset and
        the sessions of the new host are reconciled into events.

        Parameters
        ----------
        host : str
            Base URL of the new host.
        """
        await self.initialize()
        self.oauth.dispose()
        old_service = self.service
        data = self.settings.model_dump()
        data["host"] = host
        self.settings = AuthSettings.model_validate(data)
        self._build_host_clients()
        self._valid_scopes = None
        self._valid_scopes_fetched = False
        await old_service.close()
        await self.check_for_updates()

    async def dispose(self) -> None:
        """Cancel pending logins and release every resource."""
        self.oauth.dispose()
        await self.oauth.wait_idle()
        if self._store_subscription is not None:
            self._store_subscription.dispose()
            self._store_subscription = None
        self._changed.clear()
        await self.service.close()
        if self._owns_secret_store:
            await self.secret_store.close()

    async def __aenter__(self) -> SessionManager:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()
