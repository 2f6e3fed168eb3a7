"""Browser-delegated OAuth2 login with PKCE.

:class:`OAuthClient` drives one authorization code round trip per
normalized scope set. Concurrent logins for the same scope set share a
single pending login (one browser launch, one token exchange), and every
pending login is torn down on every exit path: success, rejection,
cancellation or timeout.

The redirect carrying ``code`` and ``state`` is delivered from outside
through :meth:`OAuthClient.handle_redirect`.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from ..exceptions import LoginCancelled, LoginFailed, LoginTimeout, TokenExchangeError
from ..types import Canceled, Failed, LoginOutcome, LoginState, Resolved, TimedOut
from .collaborators import LoggingNotificationService, open_system_browser
from .pkce import PKCEChallenge, new_state
from .scopes import normalize_scopes, scope_key


if TYPE_CHECKING:
    from collections.abc import Iterable

    from .collaborators import BrowserOpener, NotificationService
    from .service import ServiceClient


logger = logging.getLogger("authsession.auth")

DEFAULT_LOGIN_TIMEOUT = 60.0


@dataclass
class PendingLogin:
    """Bookkeeping for one in-flight login, keyed by normalized scope set.

    Attributes
    ----------
    key : str
        Space-joined sorted scopes.
    scopes : list[str]
        The normalized scopes requested.
    states : list[str]
        State nonces issued for this login, oldest first.
    verifiers : dict[str, str]
        PKCE verifier per state nonce.
    future : asyncio.Future
        Settled by :meth:`OAuthClient.handle_redirect` with the token.
    cancel : asyncio.Event
        Cancel signal; setting it settles the login as canceled.
    task : asyncio.Task
        Shared task producing the :data:`LoginOutcome`.
    state : LoginState
        Where the attempt is in its lifecycle.
    """

    key: str
    scopes: list[str]
    future: asyncio.Future[str]
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    states: list[str] = field(default_factory=list)
    verifiers: dict[str, str] = field(default_factory=dict)
    task: asyncio.Task[LoginOutcome] = field(init=False)
    state: LoginState = LoginState.IDLE
    authorize_url: str = ""
    flow: dict[str, Any] = field(default_factory=dict)
    waiters: int = 0


class OAuthClient:
    """Runs PKCE logins against one remote service.

    Parameters
    ----------
    service : ServiceClient
        Remote endpoints of the service.
    browser_opener : BrowserOpener, optional
        Opens the authorize URL. Defaults to the system browser.
    notifications : NotificationService, optional
        Receives user-facing warnings and errors.
    timeout : float
        Default seconds to wait for a redirect (default 60).
    """

    def __init__(
        self,
        service: ServiceClient,
        browser_opener: BrowserOpener | None = None,
        notifications: NotificationService | None = None,
        timeout: float = DEFAULT_LOGIN_TIMEOUT,
    ) -> None:
        """Initialize the OAuth client."""
        self.service = service
        self.timeout = timeout
        self._browser_opener = browser_opener or open_system_browser
        self._notifications = notifications or LoggingNotificationService()
        self._pending: dict[str, PendingLogin] = {}
        self._state_index: dict[str, str] = {}

    @property
    def pending_keys(self) -> list[str]:
        """Scope keys of the logins currently in flight."""
        return list(self._pending)

    def pending_states(self, scopes: Iterable[str] | None = None) -> list[str]:
        """State nonces registered for ``scopes``, or for every pending login."""
        if scopes is None:
            return list(self._state_index)
        pending = self._pending.get(scope_key(scopes))
        return list(pending.states) if pending else []

    def get_pending(self, scopes: Iterable[str]) -> PendingLogin | None:
        """The pending login for ``scopes``, if any."""
        return self._pending.get(scope_key(scopes))

    async def login(
        self,
        scopes: Iterable[str],
        *,
        timeout: float | None = None,
        cancellation: asyncio.Event | None = None,
        flow: dict[str, Any] | None = None,
    ) -> str:
        """Log in and return the opaque session token.

        Parameters
        ----------
        scopes : iterable of str
            Scopes to request. Normalized before use.
        timeout : float, optional
            Seconds to wait for the redirect. Only applies when this call
            starts a new login; defaults to :attr:`timeout`.
        cancellation : asyncio.Event, optional
            Setting it abandons this call.
        flow : dict, optional
            Telemetry properties attached to notifications.

        Returns
        -------
        str
            The token.

        Raises
        ------
        LoginTimeout
            If no redirect was accepted before the deadline.
        LoginCancelled
            If the login was cancelled.
        LoginFailed
            If the token exchange failed.
        """
        key = scope_key(scopes)
        outcome = await self.login_outcome(
            scopes, timeout=timeout, cancellation=cancellation, flow=flow
        )
        if isinstance(outcome, Resolved):
            return outcome.token
        if isinstance(outcome, TimedOut):
            msg = f"Cancelled: no redirect received within {outcome.timeout}s"
            raise LoginTimeout(
                msg, timeout=outcome.timeout, host=self.service.service_url, flow_id=key
            )
        if isinstance(outcome, Canceled):
            msg = "Cancelled"
            raise LoginCancelled(msg, host=self.service.service_url, flow_id=key)
        reason = outcome.reason
        if isinstance(reason, LoginFailed):
            raise reason
        msg = f"Login failed: {reason}"
        raise LoginFailed(msg, host=self.service.service_url, flow_id=key) from reason

    async def login_outcome(
        self,
        scopes: Iterable[str],
        *,
        timeout: float | None = None,
        cancellation: asyncio.Event | None = None,
        flow: dict[str, Any] | None = None,
    ) -> LoginOutcome:
        """Log in and return the typed outcome instead of raising.

        Calls for a scope set that already has a login in flight join it
        and observe the same outcome. A caller whose ``cancellation``
        fires gets :class:`Canceled`; the shared login is only cancelled
        when no other caller is still waiting on it.

        Parameters
        ----------
        scopes : iterable of str
            Scopes to request.
        timeout : float, optional
            Deadline for a newly started login.
        cancellation : asyncio.Event, optional
            Per-call cancel signal.
        flow : dict, optional
            Telemetry properties attached to notifications.

        Returns
        -------
        LoginOutcome
            ``Resolved``, ``Canceled``, ``TimedOut`` or ``Failed``.
        """
        normalized = normalize_scopes(scopes)
        key = scope_key(normalized)
        pending = self._pending.get(key)
        if pending is None:
            pending = self._start(normalized, key, timeout, flow)
        else:
            logger.debug("Joining pending login for scopes: %s", key or "<all>")

        task = pending.task
        pending.waiters += 1
        try:
            if cancellation is None:
                return await asyncio.shield(task)
            cancel_wait = asyncio.ensure_future(cancellation.wait())
            try:
                await asyncio.wait({task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancel_wait.cancel()
            if task.done():
                return task.result()
            if pending.waiters == 1:
                pending.cancel.set()
                return await asyncio.shield(task)
            return Canceled()
        finally:
            pending.waiters -= 1

    def _start(
        self,
        scopes: list[str],
        key: str,
        timeout: float | None,
        flow: dict[str, Any] | None,
    ) -> PendingLogin:
        logger.info("Logging in for the following scopes: %s", key or "<all>")
        loop = asyncio.get_running_loop()
        pkce = PKCEChallenge.generate()
        state = new_state()
        pending = PendingLogin(
            key=key,
            scopes=scopes,
            future=loop.create_future(),
            flow=dict(flow or {}),
        )
        pending.states.append(state)
        pending.verifiers[state] = pkce.verifier
        pending.authorize_url = self.service.build_authorize_url(scopes, state, pkce)
        self._pending[key] = pending
        self._state_index[state] = key

        deadline = self.timeout if timeout is None else timeout
        pending.task = asyncio.ensure_future(self._run(pending, deadline))
        return pending

    async def _run(self, pending: PendingLogin, timeout: float) -> LoginOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        cancel_wait = asyncio.ensure_future(pending.cancel.wait())
        try:
            pending.state = LoginState.AWAITING_REDIRECT
            opener = asyncio.ensure_future(self._open_browser(pending))
            try:
                await asyncio.wait(
                    {opener, cancel_wait},
                    timeout=max(0.0, deadline - loop.time()),
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                if not opener.done():
                    logger.debug("Abandoning browser launch for scopes %s", pending.key or "<all>")
                    opener.cancel()

            remaining = max(0.0, deadline - loop.time())
            await asyncio.wait(
                {pending.future, cancel_wait},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if pending.future.done() and not pending.future.cancelled():
                exc = pending.future.exception()
                if exc is not None:
                    pending.state = LoginState.REJECTED
                    logger.error("Login for scopes %s failed: %s", pending.key or "<all>", exc)
                    return Failed(exc)
                pending.state = LoginState.RESOLVED
                return Resolved(pending.future.result())

            if pending.cancel.is_set():
                pending.state = LoginState.CANCELED
                logger.info("Login for scopes %s was cancelled", pending.key or "<all>")
                return Canceled()

            pending.state = LoginState.TIMED_OUT
            pending.cancel.set()
            logger.info(
                "Login for scopes %s timed out after %ss", pending.key or "<all>", timeout
            )
            return TimedOut(timeout)
        finally:
            cancel_wait.cancel()
            if not pending.future.done():
                pending.future.cancel()
            self._cleanup(pending)

    async def _open_browser(self, pending: PendingLogin) -> None:
        try:
            opened = await self._browser_opener(pending.authorize_url)
        except Exception as exc:
            logger.warning("Browser opener raised: %s", exc)
            opened = False
        if not opened:
            self._notifications.show_warning(
                "There was a problem opening the login URL in your browser. "
                f"Please copy it into your browser manually: {pending.authorize_url}",
                id="open_browser_failed",
                flow=pending.flow,
            )

    def _cleanup(self, pending: PendingLogin) -> None:
        for state in pending.states:
            pending.verifiers.pop(state, None)
            self._state_index.pop(state, None)
        pending.states.clear()
        if self._pending.get(pending.key) is pending:
            del self._pending[pending.key]

    async def handle_redirect(self, uri: str) -> None:
        """Deliver a redirect URI carrying ``code`` and ``state``.

        Redirects with a missing parameter, or a ``state`` that no pending
        login issued, are ignored. A matching redirect is exchanged for a
        token, which settles the owning login.

        Parameters
        ----------
        uri : str
            The full redirect URI.
        """
        query = parse_qs(urlparse(uri).query)
        code = query.get("code", [None])[0]
        state = query.get("state", [None])[0]

        if not code:
            logger.error("No code in response.")
            return
        if not state:
            logger.error("No state in response.")
            return

        key = self._state_index.get(state)
        pending = self._pending.get(key) if key is not None else None
        if pending is None or pending.future.done():
            logger.info("Nonce not found in accepted nonces. Skipping this execution...")
            return

        verifier = pending.verifiers.get(state)
        if verifier is None:
            logger.error("Code verifier not found in memory.")
            self._settle(
                pending,
                error=LoginFailed(
                    "Code verifier not found",
                    host=self.service.service_url,
                    flow_id=pending.key,
                ),
            )
            return

        logger.info("Exchanging code for token...")
        pending.state = LoginState.EXCHANGING
        try:
            token = await self.service.exchange_code(code, verifier)
        except TokenExchangeError as exc:
            self._notifications.show_error(
                f"Couldn't connect (token exchange): {exc.reason}, {exc.body}",
                id="failed_to_exchange",
                flow=pending.flow,
            )
            self._settle(pending, error=exc)
        except LoginFailed as exc:
            self._notifications.show_error(
                f"Couldn't connect (token exchange): {exc}",
                id="failed_to_exchange",
                flow=pending.flow,
            )
            self._settle(pending, error=exc)
        else:
            self._settle(pending, token=token)

    def _settle(
        self,
        pending: PendingLogin,
        token: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        if pending.future.done():
            logger.debug("Discarding token exchange result for settled login %s", pending.key)
            return
        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(token)  # type: ignore[arg-type]

    def dispose(self) -> None:
        """Cancel every pending login."""
        for pending in list(self._pending.values()):
            pending.cancel.set()

    async def wait_idle(self) -> None:
        """Wait until every pending login has settled and been cleaned up."""
        tasks = [p.task for p in self._pending.values()]
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
