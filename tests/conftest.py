"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import base64
import json
import os

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from authsession.auth.oauth_client import OAuthClient
from authsession.auth.secret_store import MemorySecretStore
from authsession.auth.service import ServiceClient
from authsession.auth.session import SessionManager
from authsession.config import AuthSettings


if TYPE_CHECKING:
    from collections.abc import Callable, Generator


HOST = "https://example.test/"
SERVICE_URL = "https://example.test"
REDIRECT_URI = "http://127.0.0.1:9999/complete-auth"
SECRET_KEY = "authsession.auth.example.test"


# =============================================================================
# Configuration isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_config(
    tmp_path: Any, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Keep user and project config files and AUTHSESSION_* variables out of tests."""
    for name in list(os.environ):
        if name.startswith("AUTHSESSION_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    monkeypatch.chdir(tmp_path)
    yield


# =============================================================================
# Fake remote service
# =============================================================================


def make_jwt(claims: dict[str, Any]) -> str:
    """Build an unsigned three-segment token carrying ``claims``."""

    def _segment(data: dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_segment({'alg': 'none'})}.{_segment(claims)}.signature"


class FakeService:
    """In-process stand-in for the remote service's OAuth endpoints.

    Attributes
    ----------
    valid_scopes : list[str] or None
        Payload of the inspect endpoint; None answers HTTP 500.
    codes : dict[str, str]
        Authorization code -> ``jti`` of the issued token.
    users : dict[str, dict]
        Session token -> user-info payload.
    unauthorized : set[str]
        Session tokens answered with HTTP 401.
    user_info_status : int, optional
        Forces every user-info call to answer this status.
    exchange_status : int, optional
        Forces every token call to answer this status.
    """

    def __init__(self) -> None:
        self.valid_scopes: list[str] | None = ["a", "b", "c"]
        self.codes: dict[str, str] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.unauthorized: set[str] = set()
        self.user_info_status: int | None = None
        self.exchange_status: int | None = None
        self.requests: list[httpx.Request] = []

    def count(self, path: str) -> int:
        """Number of requests received for ``path``."""
        return sum(1 for r in self.requests if r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        """MockTransport handler."""
        self.requests.append(request)
        path = request.url.path

        if path == "/api/oauth/inspect":
            if self.valid_scopes is None:
                return httpx.Response(500)
            return httpx.Response(200, json=self.valid_scopes)

        if path == "/api/oauth/token":
            form = parse_qs(request.content.decode("utf-8"))
            code = form.get("code", [""])[0]
            if self.exchange_status is not None:
                return httpx.Response(self.exchange_status, text="exchange refused")
            if code not in self.codes:
                return httpx.Response(400, text="invalid_grant")
            return httpx.Response(
                200,
                json={
                    "token_type": "Bearer",
                    "expires_in": 3600,
                    "access_token": make_jwt({"jti": self.codes[code], "sub": "u"}),
                    "refresh_token": "",
                    "scope": form.get("scope", [""])[0],
                },
            )

        if path == "/api/oauth/userinfo":
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if self.user_info_status is not None:
                return httpx.Response(self.user_info_status)
            if token in self.unauthorized or token not in self.users:
                return httpx.Response(401)
            return httpx.Response(200, json=self.users[token])

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        """An AsyncClient routed to this fake."""
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def fake_service() -> FakeService:
    """Create a fake remote service."""
    return FakeService()


# =============================================================================
# Collaborators
# =============================================================================


class RecordingBrowser:
    """Browser opener that records URLs and optionally completes the redirect.

    Parameters
    ----------
    result : bool
        Value returned for every open.
    """

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.urls: list[str] = []
        self.redirect_target: Callable[[str], Any] | None = None
        self.redirect_code: str | None = None

    async def __call__(self, url: str) -> bool:
        self.urls.append(url)
        if self.redirect_target is not None and self.redirect_code is not None:
            uri = redirect_for(url, self.redirect_code)
            asyncio.get_running_loop().call_later(
                0.01, lambda: asyncio.ensure_future(self.redirect_target(uri))
            )
        return self.result

    def states(self) -> list[str]:
        """State nonces of every opened URL."""
        return [parse_qs(urlparse(u).query)["state"][0] for u in self.urls]


def redirect_for(authorize_url: str, code: str, redirect_uri: str = REDIRECT_URI) -> str:
    """The redirect the service would send for ``authorize_url``."""
    state = parse_qs(urlparse(authorize_url).query)["state"][0]
    return f"{redirect_uri}?{urlencode({'code': code, 'state': state})}"


class RecordingNotifications:
    """Notification service that records every message."""

    def __init__(self) -> None:
        self.errors: list[tuple[str, str]] = []
        self.warnings: list[tuple[str, str]] = []

    def show_error(self, message: str, *, id: str, flow: dict[str, Any] | None = None) -> None:  # noqa: A002
        self.errors.append((id, message))

    def show_warning(self, message: str, *, id: str, flow: dict[str, Any] | None = None) -> None:  # noqa: A002
        self.warnings.append((id, message))


class RecordingTelemetry:
    """Telemetry reporter that records every status."""

    def __init__(self) -> None:
        self.statuses: list[tuple[str, dict[str, Any]]] = []

    def send_user_flow_status(self, status: str, flow: dict[str, Any]) -> None:
        self.statuses.append((status, dict(flow)))

    @property
    def names(self) -> list[str]:
        """Status names in order."""
        return [status for status, _ in self.statuses]


@pytest.fixture()
def browser() -> RecordingBrowser:
    """Create a recording browser opener."""
    return RecordingBrowser()


@pytest.fixture()
def notifications() -> RecordingNotifications:
    """Create a recording notification service."""
    return RecordingNotifications()


@pytest.fixture()
def telemetry() -> RecordingTelemetry:
    """Create a recording telemetry reporter."""
    return RecordingTelemetry()


@pytest.fixture()
def secret_store() -> MemorySecretStore:
    """Create a memory secret store."""
    return MemorySecretStore()


# =============================================================================
# Builders
# =============================================================================


def make_settings(**overrides: Any) -> AuthSettings:
    """Settings pointing at the fake service."""
    values: dict[str, Any] = {
        "host": HOST,
        "redirect_uri": REDIRECT_URI,
        "secret_store_backend": "memory",
        "login_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return AuthSettings(**values)


def make_service(fake: FakeService) -> ServiceClient:
    """ServiceClient wired to ``fake``."""
    return ServiceClient(
        service_url=SERVICE_URL,
        client_id="vscode-gitpod",
        redirect_uri=REDIRECT_URI,
        http_client=fake.client(),
    )


def make_oauth_client(
    fake: FakeService,
    browser: RecordingBrowser,
    notifications: RecordingNotifications | None = None,
    timeout: float = 5.0,
) -> OAuthClient:
    """OAuthClient wired to ``fake``."""
    return OAuthClient(
        make_service(fake),
        browser_opener=browser,
        notifications=notifications,
        timeout=timeout,
    )


def make_manager(
    fake: FakeService,
    secret_store: MemorySecretStore,
    browser: RecordingBrowser | None = None,
    notifications: RecordingNotifications | None = None,
    telemetry: RecordingTelemetry | None = None,
    **settings: Any,
) -> SessionManager:
    """SessionManager wired to ``fake`` and ``secret_store``."""
    manager = SessionManager(
        make_settings(**settings),
        secret_store=secret_store,
        browser_opener=browser or RecordingBrowser(),
        notifications=notifications or RecordingNotifications(),
        telemetry=telemetry or RecordingTelemetry(),
        http_client=fake.client(),
    )
    if browser is not None and browser.redirect_target is None:
        browser.redirect_target = manager.handle_redirect
    return manager


def stored_blob(*sessions: dict[str, Any]) -> str:
    """JSON blob holding ``sessions`` in the persisted shape."""
    return json.dumps(list(sessions))


async def wait_until(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not reached"
            raise AssertionError(msg)
        await asyncio.sleep(0.005)
