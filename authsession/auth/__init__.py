"""Browser-delegated OAuth2 authentication with shared session storage.

Provides scope normalization, PKCE, the OAuth login client, the session
store and the session manager, plus the secret store, remote service
and side-effect collaborators they depend on.
"""

from __future__ import annotations

from .callback_server import RedirectCallbackServer
from .collaborators import (
    BrowserOpener,
    LoggingNotificationService,
    LoggingTelemetryReporter,
    NotificationService,
    TelemetryReporter,
    open_system_browser,
)
from .oauth_client import OAuthClient, PendingLogin
from .pkce import PKCEChallenge, new_state
from .scopes import filter_scopes, normalize_scopes, scope_key, scopes_equal
from .secret_store import (
    KeyringSecretStore,
    MemorySecretStore,
    SecretStore,
    create_secret_store,
)
from .service import ServiceClient
from .session import SessionManager
from .session_store import DecodeResult, SessionStore, decode_sessions, encode_sessions


__all__ = [
    "BrowserOpener",
    "DecodeResult",
    "KeyringSecretStore",
    "LoggingNotificationService",
    "LoggingTelemetryReporter",
    "MemorySecretStore",
    "NotificationService",
    "OAuthClient",
    "PKCEChallenge",
    "PendingLogin",
    "RedirectCallbackServer",
    "SecretStore",
    "ServiceClient",
    "SessionManager",
    "SessionStore",
    "TelemetryReporter",
    "create_secret_store",
    "decode_sessions",
    "encode_sessions",
    "filter_scopes",
    "new_state",
    "normalize_scopes",
    "open_system_browser",
    "scope_key",
    "scopes_equal",
]
