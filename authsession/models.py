"""Pydantic models for sessions and remote service payloads.

The persisted blob is a JSON array of :class:`Session` objects using the
camelCase field names of the wire format (``accessToken``, ``displayName``,
``accountName``). Decoding always goes through these models; nothing read
from the secret store or the network is trusted unchecked.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


UNKNOWN_ACCOUNT = "<unknown>"


class SessionAccount(BaseModel):
    """Identity bound to a session.

    ``display_name`` is only read from blobs written by older clients
    and is used as a label fallback.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    label: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")

    @property
    def resolved_label(self) -> str | None:
        """Label, falling back to the legacy display name."""
        return self.label or self.display_name


class Session(BaseModel):
    """A persisted credential binding an opaque access token to an identity and scopes.

    Identity is ``id``. Sessions are never partially updated; a changed
    session is replaced as a whole.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    access_token: str = Field(alias="accessToken")
    scopes: list[str] = Field(default_factory=list)
    account: SessionAccount | None = None

    def to_wire(self) -> dict[str, object]:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


class UserInfo(BaseModel):
    """Identity returned by the user-info endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    account_name: str = Field(
        default=UNKNOWN_ACCOUNT,
        alias="accountName",
        validation_alias=AliasChoices("accountName", "name", "fullName"),
    )


class TokenResponse(BaseModel):
    """Successful response of the token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"  # noqa: S105
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str = ""
