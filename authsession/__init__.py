"""authsession - browser OAuth2 login and shared session storage.

Authenticates a user against a remote service with PKCE through the
system browser and keeps a list of sessions consistent across several
processes that share one secret store.
"""

from __future__ import annotations

from .auth import (
    KeyringSecretStore,
    MemorySecretStore,
    OAuthClient,
    RedirectCallbackServer,
    SecretStore,
    ServiceClient,
    SessionManager,
    SessionStore,
)
from .config import AuthSettings
from .events import EventEmitter, Subscription, diff_sessions
from .exceptions import (
    AuthenticationError,
    AuthSessionException,
    LoginCancelled,
    LoginFailed,
    LoginTimeout,
    LogoutFailed,
    ServiceError,
    SessionCorruptionError,
    TokenExchangeError,
    UnauthorizedError,
)
from .models import Session, SessionAccount, TokenResponse, UserInfo
from .types import (
    Canceled,
    Failed,
    LoginOutcome,
    LoginState,
    Resolved,
    SessionChangeEvent,
    TimedOut,
)


__version__ = "0.1.0"

__all__ = [
    "AuthSessionException",
    "AuthSettings",
    "AuthenticationError",
    "Canceled",
    "EventEmitter",
    "Failed",
    "KeyringSecretStore",
    "LoginCancelled",
    "LoginFailed",
    "LoginOutcome",
    "LoginState",
    "LoginTimeout",
    "LogoutFailed",
    "MemorySecretStore",
    "OAuthClient",
    "RedirectCallbackServer",
    "Resolved",
    "SecretStore",
    "ServiceClient",
    "ServiceError",
    "Session",
    "SessionAccount",
    "SessionChangeEvent",
    "SessionCorruptionError",
    "SessionManager",
    "SessionStore",
    "Subscription",
    "TimedOut",
    "TokenExchangeError",
    "TokenResponse",
    "UnauthorizedError",
    "UserInfo",
    "__version__",
    "diff_sessions",
]
