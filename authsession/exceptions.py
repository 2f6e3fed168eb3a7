"""authsession exception hierarchy.

All authsession-specific exceptions inherit from AuthSessionException,
enabling catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class AuthSessionException(Exception):
    """Base exception for all authsession errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize authsession exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (host, flow_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class AuthenticationError(AuthSessionException):
    """Base exception for all authentication failures.

    Raised when a login round trip, a session verification or a
    logout fails.
    """

    def __init__(
        self,
        message: str,
        host: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        host : str, optional
            The remote service URL the operation targeted.
        flow_id : str, optional
            The scope key of the login flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, host=host, flow_id=flow_id, **context)
        self.host = host
        self.flow_id = flow_id


class LoginCancelled(AuthenticationError):
    """Login was cancelled.

    Raised when the cancel signal of a pending login fires, either
    because the host was disposed or reconfigured, the caller's
    cancellation token was set, or the login deadline expired.
    Never surfaced to the user as a failure notification.
    """


class LoginTimeout(LoginCancelled):
    """Login deadline expired before a redirect was accepted."""

    def __init__(
        self,
        message: str,
        timeout: float,
        host: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The deadline in seconds.
        host : str, optional
            The remote service URL.
        flow_id : str, optional
            The scope key of the login flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, host=host, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class LoginFailed(AuthenticationError):
    """Login failed.

    Raised when the remote service rejects the code exchange, the
    network fails, or the returned token cannot be decoded.
    """


class TokenExchangeError(LoginFailed):
    """Token endpoint answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        reason: str = "",
        body: str = "",
        **context: Any,
    ) -> None:
        """Initialize token exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int
            HTTP status returned by the token endpoint.
        reason : str
            HTTP reason phrase (status text).
        body : str
            Response body text.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code
        self.reason = reason
        self.body = body


class LogoutFailed(AuthenticationError):
    """Removing a session failed."""


class UnauthorizedError(AuthenticationError):
    """The remote service rejected an access token (HTTP 401)."""


class ServiceError(AuthSessionException):
    """A remote service call failed for a reason other than 401.

    Covers non-2xx responses, timeouts and connection errors.
    """

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize service error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status code, when a response was received.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class SessionCorruptionError(AuthSessionException):
    """The persisted session blob could not be decoded.

    The blob has already been deleted from the secret store when
    this is raised.
    """
