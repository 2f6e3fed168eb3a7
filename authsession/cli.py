"""Command-line interface for authsession."""

from __future__ import annotations

import argparse
import asyncio
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from . import log
from .exceptions import AuthenticationError, LoginCancelled


if TYPE_CHECKING:
    from .config import AuthSettings
    from .models import Session


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : list[str], optional
        Arguments to parse instead of ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="authsession",
        description="Sign in to a remote service and manage stored sessions",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Base URL of the remote service (uses config default)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # sessions command
    sessions_parser = subparsers.add_parser(
        "sessions",
        help="List stored sessions",
    )
    sessions_parser.add_argument(
        "--scopes",
        nargs="*",
        default=None,
        help="Only list sessions granted exactly these scopes",
    )

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Sign in through the browser and store a session",
    )
    login_parser.add_argument(
        "scopes",
        nargs="+",
        help="Scopes to request",
    )
    login_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the browser redirect (uses config default)",
    )

    # logout command
    logout_parser = subparsers.add_parser(
        "logout",
        help="Remove a stored session",
    )
    logout_parser.add_argument(
        "session_id",
        help="Id of the session to remove",
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = load_settings(args.host)
    log.set_level(settings.log_level)
    if args.verbose:
        log.enable_debug()

    if args.command == "config":
        return handle_config(args, settings)
    if args.command == "sessions":
        return asyncio.run(handle_sessions(args, settings))
    if args.command == "login":
        return asyncio.run(handle_login(args, settings))
    if args.command == "logout":
        return asyncio.run(handle_logout(args, settings))
    parser.print_help()
    return 0


def load_settings(host: str | None = None) -> AuthSettings:
    """Load settings, overriding the host when given."""
    from .config import AuthSettings

    if host:
        return AuthSettings(host=host)
    return AuthSettings()


def format_session(session: Session) -> str:
    """Render one session as a line of text, without its token."""
    account = session.account
    label = account.resolved_label if account else None
    scopes = " ".join(session.scopes) or "<all>"
    return f"{session.id}  {label or '<unknown>'}  [{scopes}]"


def handle_config(args: argparse.Namespace, settings: AuthSettings) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    int
        Exit code.
    """
    output = settings.to_env() if args.env else settings.to_toml()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


async def handle_sessions(args: argparse.Namespace, settings: AuthSettings) -> int:
    """Handle the sessions command."""
    from .auth.session import SessionManager

    async with SessionManager(settings) as manager:
        sessions = await manager.get_sessions(args.scopes)
    if not sessions:
        print("No sessions.")
        return 0
    for session in sessions:
        print(format_session(session))
    return 0


async def handle_login(args: argparse.Namespace, settings: AuthSettings) -> int:
    """Handle the login command.

    Starts the local redirect callback server unless an explicit
    ``redirect_uri`` is configured.
    """
    from .auth.callback_server import RedirectCallbackServer
    from .auth.session import SessionManager

    manager = SessionManager(settings)
    server = None
    if not settings.redirect_uri:
        server = RedirectCallbackServer(
            manager.handle_redirect,
            host=settings.callback_host,
            port=settings.callback_port,
            path=settings.callback_path,
        )
        manager.redirect_uri = server.start()

    try:
        session = await manager.create_session(args.scopes, timeout=args.timeout)
    except LoginCancelled as exc:
        print(f"Login cancelled: {exc}", file=sys.stderr)
        return 1
    except AuthenticationError as exc:
        print(f"Login failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if server is not None:
            server.stop()
        await manager.dispose()

    print(format_session(session))
    return 0


async def handle_logout(args: argparse.Namespace, settings: AuthSettings) -> int:
    """Handle the logout command."""
    from .auth.session import SessionManager

    async with SessionManager(settings) as manager:
        known = {session.id for session in manager.sessions}
        if args.session_id not in known:
            print(f"Session not found: {args.session_id}", file=sys.stderr)
            return 1
        try:
            await manager.remove_session(args.session_id)
        except AuthenticationError as exc:
            print(f"Logout failed: {exc}", file=sys.stderr)
            return 1
    print(f"Signed out of {args.session_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
