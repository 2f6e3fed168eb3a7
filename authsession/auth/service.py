"""HTTP client for the remote service's OAuth and user-info endpoints.

Wraps the four remote calls the session manager needs: building the
browser authorize URL, exchanging an authorization code for a token,
inspecting the scopes the service accepts, and fetching the identity
behind an access token.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import base64
import json
import logging

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from pydantic import ValidationError

from ..exceptions import LoginFailed, ServiceError, TokenExchangeError, UnauthorizedError
from ..models import TokenResponse, UserInfo
from .scopes import scope_key


if TYPE_CHECKING:
    from collections.abc import Iterable

    from .pkce import PKCEChallenge


logger = logging.getLogger("authsession.auth")


class ServiceClient:
    """Client for one remote service host.

    Parameters
    ----------
    service_url : str
        Base URL of the service, without trailing slash.
    client_id : str
        OAuth2 client ID.
    redirect_uri : str
        Redirect URI sent with both the authorize and token requests.
        May be updated once the local callback server has bound a port.
    user_info_path : str
        Path of the user-info endpoint.
    http_timeout : float
        Timeout for token exchange and user-info requests.
    valid_scopes_timeout : float
        Timeout for the valid-scopes inspection request.
    http_client : httpx.AsyncClient, optional
        Client to use instead of a lazily created one. It is not
        closed by :meth:`close`.
    """

    def __init__(
        self,
        service_url: str,
        client_id: str,
        redirect_uri: str,
        user_info_path: str = "/api/oauth/userinfo",
        http_timeout: float = 30.0,
        valid_scopes_timeout: float = 1.5,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the service client."""
        self.service_url = service_url.rstrip("/")
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.user_info_path = user_info_path
        self.http_timeout = http_timeout
        self.valid_scopes_timeout = valid_scopes_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def authorize_url(self) -> str:
        """The service's authorization endpoint."""
        return f"{self.service_url}/api/oauth/authorize"

    @property
    def token_url(self) -> str:
        """The service's token exchange endpoint."""
        return f"{self.service_url}/api/oauth/token"

    @property
    def inspect_url(self) -> str:
        """The service's valid-scopes inspection endpoint."""
        return f"{self.service_url}/api/oauth/inspect"

    @property
    def user_info_url(self) -> str:
        """The service's user-info endpoint."""
        return f"{self.service_url}{self.user_info_path}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.http_timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client if this instance created it."""
        if (
            self._owns_client
            and self._http_client is not None
            and not self._http_client.is_closed
        ):
            await self._http_client.aclose()
            self._http_client = None

    def build_authorize_url(
        self,
        scopes: Iterable[str],
        state: str,
        pkce: PKCEChallenge,
    ) -> str:
        """Build the browser URL that starts an authorization code grant.

        Parameters
        ----------
        scopes : iterable of str
            Requested scopes; sent sorted and space-joined.
        state : str
            State nonce correlating the redirect with this request.
        pkce : PKCEChallenge
            PKCE pair; only the challenge is sent.

        Returns
        -------
        str
            The full authorization URL.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": scope_key(scopes),
            "state": state,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, verifier: str) -> str:
        """Exchange an authorization code for the opaque session token.

        Parameters
        ----------
        code : str
            Authorization code from the redirect.
        verifier : str
            PKCE code verifier registered with the redirect's state.

        Returns
        -------
        str
            The ``jti`` claim of the returned access token.

        Raises
        ------
        TokenExchangeError
            If the token endpoint answers with a non-2xx status.
        LoginFailed
            If the request fails or the response cannot be decoded.
        """
        client = await self._get_client()
        try:
            resp = await client.post(
                self.token_url,
                data={
                    "code": code,
                    "grant_type": "authorization_code",
                    "client_id": self.client_id,
                    "redirect_uri": self.redirect_uri,
                    "code_verifier": verifier,
                },
                timeout=self.http_timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise LoginFailed(msg, host=self.service_url) from exc

        if not resp.is_success:
            msg = f"{resp.reason_phrase}, {resp.text}"
            raise TokenExchangeError(
                msg,
                status_code=resp.status_code,
                reason=resp.reason_phrase,
                body=resp.text,
                host=self.service_url,
            )

        try:
            token = TokenResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            msg = f"Malformed token response: {exc}"
            raise LoginFailed(msg, host=self.service_url) from exc
        return self.decode_access_token(token.access_token)

    @staticmethod
    def decode_access_token(access_token: str) -> str:
        """Extract the ``jti`` claim from a three-segment bearer token.

        The signature is not verified. An invalid token is rejected by
        the user-info call that follows every login.

        Parameters
        ----------
        access_token : str
            ``header.payload.signature`` token returned by the token endpoint.

        Returns
        -------
        str
            The ``jti`` claim.

        Raises
        ------
        LoginFailed
            If the payload segment is missing, not Base64URL JSON, or has
            no string ``jti``.
        """
        segments = access_token.split(".")
        if len(segments) < 2:
            msg = "Access token is not a three-segment token"
            raise LoginFailed(msg)
        payload = segments[1]
        payload += "=" * (-len(payload) % 4)
        try:
            claims: Any = json.loads(base64.urlsafe_b64decode(payload))
        except ValueError as exc:
            msg = f"Access token payload is not valid JSON: {exc}"
            raise LoginFailed(msg) from exc
        jti = claims.get("jti") if isinstance(claims, dict) else None
        if not isinstance(jti, str) or not jti:
            msg = "Access token has no jti claim"
            raise LoginFailed(msg)
        return jti

    async def fetch_valid_scopes(self) -> list[str] | None:
        """Ask the service which scopes this client may request.

        Returns
        -------
        list[str] or None
            The accepted scopes, or None when the service could not be
            asked (no filtering should be applied).
        """
        client = await self._get_client()
        try:
            resp = await client.get(
                self.inspect_url,
                params={"client": self.client_id},
                timeout=self.valid_scopes_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Error fetching endpoint %s: %s", self.inspect_url, exc)
            return None
        if not resp.is_success:
            logger.error(
                "Error fetching endpoint %s: HTTP %d", self.inspect_url, resp.status_code
            )
            return None
        try:
            data = resp.json()
        except ValueError as exc:
            logger.error("Error decoding valid scopes from %s: %s", self.inspect_url, exc)
            return None
        if not isinstance(data, list) or not all(isinstance(s, str) for s in data):
            logger.error("Unexpected valid scopes payload from %s", self.inspect_url)
            return None
        return data

    async def get_user_info(self, access_token: str) -> UserInfo:
        """Fetch the identity behind an access token.

        Parameters
        ----------
        access_token : str
            Opaque session token.

        Returns
        -------
        UserInfo
            The user's id and account name.

        Raises
        ------
        UnauthorizedError
            If the service rejects the token (HTTP 401).
        ServiceError
            On any other failure.
        """
        client = await self._get_client()
        try:
            resp = await client.get(
                self.user_info_url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.http_timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"User info request failed: {exc}"
            raise ServiceError(msg) from exc

        if resp.status_code == httpx.codes.UNAUTHORIZED:
            msg = "Unexpected server response: 401"
            raise UnauthorizedError(msg, host=self.service_url)
        if not resp.is_success:
            msg = f"Unexpected server response: {resp.status_code}"
            raise ServiceError(msg, status_code=resp.status_code)

        try:
            return UserInfo.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            msg = f"Malformed user info response: {exc}"
            raise ServiceError(msg, status_code=resp.status_code) from exc
