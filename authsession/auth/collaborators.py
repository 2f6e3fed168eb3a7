"""Narrow interfaces for the side effects of a login.

The session manager never opens a browser, shows a message or reports
telemetry itself; it calls these collaborators. The default
implementations open the system browser and write everything else to
the ``authsession.auth`` logger.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import webbrowser

from typing import Any, Protocol, runtime_checkable

from ..log import redact_sensitive_data


logger = logging.getLogger("authsession.auth")


@runtime_checkable
class BrowserOpener(Protocol):
    """Opens a URL in the user's browser."""

    async def __call__(self, url: str) -> bool:
        """Open ``url``.

        Returns
        -------
        bool
            False if the browser could not be launched.
        """
        ...  # pylint: disable=unnecessary-ellipsis


@runtime_checkable
class NotificationService(Protocol):
    """User-facing notifications."""

    def show_error(self, message: str, *, id: str, flow: dict[str, Any] | None = None) -> None:
        """Show an error message."""

    def show_warning(self, message: str, *, id: str, flow: dict[str, Any] | None = None) -> None:
        """Show a warning message."""


@runtime_checkable
class TelemetryReporter(Protocol):
    """Receives user-flow status events."""

    def send_user_flow_status(self, status: str, flow: dict[str, Any]) -> None:
        """Report that ``flow`` reached ``status``."""


async def open_system_browser(url: str) -> bool:
    """Open ``url`` with the :mod:`webbrowser` module off the event loop."""
    try:
        return await asyncio.to_thread(webbrowser.open, url)
    except (OSError, webbrowser.Error) as exc:
        logger.warning("Could not open browser: %s", exc)
        return False


class LoggingNotificationService:
    """Notification service that writes messages to the log."""

    def show_error(self, message: str, *, id: str, flow: dict[str, Any] | None = None) -> None:  # noqa: A002
        """Log an error notification."""
        logger.error("[%s] %s", id, message)

    def show_warning(self, message: str, *, id: str, flow: dict[str, Any] | None = None) -> None:  # noqa: A002
        """Log a warning notification."""
        logger.warning("[%s] %s", id, message)


class LoggingTelemetryReporter:
    """Telemetry reporter that logs user-flow statuses at debug level."""

    def send_user_flow_status(self, status: str, flow: dict[str, Any]) -> None:
        """Log the status with sensitive flow properties redacted."""
        logger.debug("User flow %s: %s", status, redact_sensitive_data(flow))
