"""Configuration system for authsession using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.authsession] section (project-level)
3. ./authsession.toml (project-level, explicit)
4. ~/.config/authsession/config.toml (user-level, overrides project)
5. File named by AUTHSESSION_CONFIG_FILE
6. Environment variables (highest priority)

Environment variables use the AUTHSESSION_ prefix.
Example: AUTHSESSION_HOST, AUTHSESSION_LOGIN_TIMEOUT_SECONDS
"""

from __future__ import annotations

import logging
import os
import sys

from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("authsession")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    project_toml = Path("authsession.toml")
    if project_toml.exists():
        files.append(project_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "authsession" / "config.toml"
    else:
        user_config = Path("~/.config/authsession/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("AUTHSESSION_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("authsession", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class AuthSettings(BaseSettings):
    """Settings for one target service.

    Environment prefix: AUTHSESSION_

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.authsession] section
    3. ./authsession.toml (project-level)
    4. ~/.config/authsession/config.toml (user-level, overrides project)
    5. AUTHSESSION_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHSESSION_",
        extra="ignore",
    )

    # Target service
    host: str = Field(
        default="https://gitpod.io/",
        description="Base URL of the remote service",
    )
    client_id: str = Field(
        default="vscode-gitpod",
        description="OAuth2 client ID registered with the service",
    )

    # Redirect capture
    redirect_uri: str = Field(
        default="",
        description="Explicit redirect URI. Empty means the local callback server",
    )
    callback_host: str = Field(
        default="127.0.0.1",
        description="Bind address of the local callback server",
    )
    callback_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Port of the local callback server (0 = auto-assign)",
    )
    callback_path: str = Field(
        default="/complete-auth",
        description="Path the service redirects to after authorization",
    )

    # Remote endpoints
    user_info_path: str = Field(
        default="/api/oauth/userinfo",
        description="Path of the authenticated user-info endpoint",
    )

    # Timeouts
    login_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds to wait for the redirect of one login attempt",
    )
    valid_scopes_timeout_seconds: float = Field(
        default=1.5,
        gt=0,
        description="Seconds to wait for the valid-scopes inspection endpoint",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for token exchange and user-info requests",
    )

    # Secret storage
    secret_store_backend: Literal["keyring", "memory"] = Field(
        default="keyring",
        description="Secret store backend: keyring or memory",
    )
    keyring_service: str = Field(
        default="authsession",
        description="Keyring service name sessions are stored under",
    )
    secret_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between keyring polls for changes made by other processes",
    )

    log_level: str = Field(
        default="WARNING",
        description="Logging level for the authsession logger",
    )

    @field_validator("host")
    @classmethod
    def _validate_host(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        parsed = urlparse(v)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            msg = f"host must be an absolute http(s) URL, got {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("callback_path")
    @classmethod
    def _validate_callback_path(cls, v: str) -> str:
        """Ensure the callback path is absolute."""
        return v if v.startswith("/") else f"/{v}"

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        """Accept standard logging level names in any case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level

    def __init__(self, **data: Any) -> None:
        # TOML values are passed as init kwargs, so drop those shadowed by env vars
        toml_config = {
            key: value
            for key, value in _load_toml_config().items()
            if f"AUTHSESSION_{key.upper()}" not in os.environ
        }
        # Explicit keyword arguments take precedence over TOML files
        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

    @property
    def service_url(self) -> str:
        """The host URL without a trailing slash."""
        return self.host.rstrip("/")

    @property
    def hostname(self) -> str:
        """Hostname of the target service."""
        return urlparse(self.host).hostname or self.host

    @property
    def secret_key(self) -> str:
        """Secret store key of this host's session blob."""
        return f"authsession.auth.{self.hostname}"

    def resolve_redirect_uri(self, port: int | None = None) -> str:
        """Redirect URI sent to the service.

        Parameters
        ----------
        port : int, optional
            Port the local callback server actually bound. Defaults to
            ``callback_port``.

        Returns
        -------
        str
            ``redirect_uri`` when set, otherwise the callback server URL.
        """
        if self.redirect_uri:
            return self.redirect_uri
        actual_port = self.callback_port if port is None else port
        return f"http://{self.callback_host}:{actual_port}{self.callback_path}"

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# authsession configuration", "# Generated by: authsession config --toml", ""]
        for field_name, field_value in self.model_dump().items():
            if isinstance(field_value, bool):
                value_str = "true" if field_value else "false"
            elif isinstance(field_value, str):
                value_str = f'"{field_value}"'
            else:
                value_str = str(field_value)
            lines.append(f"{field_name} = {value_str}")
        return "\n".join(lines) + "\n"

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# authsession environment variables",
            "# Generated by: authsession config --env",
            "",
        ]
        for field_name, field_value in self.model_dump().items():
            lines.append(f'export AUTHSESSION_{field_name.upper()}="{field_value}"')
        return "\n".join(lines) + "\n"
