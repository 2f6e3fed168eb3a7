"""Ephemeral localhost HTTP server for OAuth2 redirect capture.

Listens on a randomly assigned port and forwards every redirect that
hits the callback path into an async handler running on the caller's
event loop (normally :meth:`SessionManager.handle_redirect`). Serves a
small success or error page back to the browser.

Uses only stdlib (http.server, threading, urllib.parse).
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import asyncio
import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


logger = logging.getLogger("authsession.auth")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  h1.error { color: #cc0000; }
  p { color: #666; }
"""

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<style>{style}</style></head>
<body><div class="card">
  <h1 class="{css_class}">{heading}</h1>
  <p>{message}</p>
</div></body></html>"""


def _render_page(title: str, heading: str, message: str, error: bool = False) -> str:
    return _PAGE_TEMPLATE.format(
        title=title,
        style=_PAGE_STYLE,
        css_class="error" if error else "",
        heading=heading,
        message=html.escape(message, quote=True),
    )


class RedirectCallbackServer:
    """Localhost HTTP server that forwards OAuth2 redirects to a handler.

    Parameters
    ----------
    handler : callable
        Coroutine function called with the full redirect URI.
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    path : str
        Path the service redirects to (default ``"/complete-auth"``).
    """

    def __init__(
        self,
        handler: Callable[[str], Awaitable[None]],
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/complete-auth",
    ) -> None:
        """Initialize the callback server."""
        self._handler = handler
        self._host = host
        self._port = port
        self._path = path
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._actual_port: int = 0
        self.received: list[str] = []

    @property
    def port(self) -> int:
        """Port the server is bound to (0 before :meth:`start`)."""
        return self._actual_port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI served by this server.

        Returns
        -------
        str
            e.g. ``http://127.0.0.1:54321/complete-auth``.
        """
        return f"http://{self._host}:{self._actual_port}{self._path}"

    @property
    def running(self) -> bool:
        """Whether the server thread is serving requests."""
        return self._thread is not None and self._thread.is_alive()

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> str:
        """Start serving on a daemon thread.

        Parameters
        ----------
        loop : asyncio.AbstractEventLoop, optional
            Loop the handler runs on. Defaults to the running loop.

        Returns
        -------
        str
            The redirect URI to register with the remote service.
        """
        self._loop = loop or asyncio.get_running_loop()
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth2 redirects."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)
                if parsed.path != server_ref._path:
                    self.send_error(404)
                    return

                params = parse_qs(parsed.query)
                error = params.get("error", [None])[0]
                uri = f"http://{server_ref._host}:{server_ref._actual_port}{self.path}"
                server_ref._forward(uri)

                if error:
                    description = params.get("error_description", [None])[0] or error
                    self._send_html(
                        _render_page(
                            "Authentication Error",
                            "&#x274C; Authentication Failed",
                            str(description),
                            error=True,
                        )
                    )
                else:
                    self._send_html(
                        _render_page(
                            "Authentication Complete",
                            "&#x2705; Authentication Complete",
                            "You can close this window.",
                        )
                    )

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the authsession logger."""
                if args:
                    logger.debug("Redirect callback server: %s", args[0] % args[1:])

        self._server = ThreadingHTTPServer((self._host, self._port), _CallbackHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Redirect callback server started on %s", self.redirect_uri)
        return self.redirect_uri

    def _forward(self, uri: str) -> None:
        """Schedule the handler on the event loop (runs on a server thread)."""
        self.received.append(uri)
        if self._loop is None or self._loop.is_closed():
            logger.warning("Dropping redirect: event loop is not available")
            return
        future = asyncio.run_coroutine_threadsafe(self._handler(uri), self._loop)
        future.add_done_callback(self._on_handled)

    @staticmethod
    def _on_handled(future: Any) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Redirect handler failed: %s", future.exception())

    def stop(self) -> None:
        """Shut down the server and join its thread."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.debug("Redirect callback server stopped")

    def __enter__(self) -> RedirectCallbackServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
