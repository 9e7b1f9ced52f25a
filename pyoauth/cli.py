"""Command-line interface for pyoauth."""

from __future__ import annotations

import argparse
import sys
import time

from pathlib import Path
from typing import TYPE_CHECKING

from .config import _find_config_files
from .exceptions import OAuthError, PyOAuthException
from .sync_helpers import run_async
from .types import (
    AuthorizationCodeGrant,
    Authorized,
    DeviceCodeGrant,
    Empty,
    Error,
    PKCEGrant,
    ReceivedDeviceCode,
)


if TYPE_CHECKING:
    from .config import OAuthSettings
    from .engine import OAuthEngine
    from .models import Credential
    from .types import State


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="pyoauth",
        description="OAuth 2.0 client: authorize providers and manage stored credentials",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_parser = subparsers.add_parser("config", help="Show or export configuration")
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    subparsers.add_parser("providers", help="List configured providers")
    subparsers.add_parser("status", help="Show stored credentials")

    login_parser = subparsers.add_parser("login", help="Authorize a provider")
    login_parser.add_argument("provider", help="Provider id")
    login_parser.add_argument(
        "--grant",
        choices=["pkce", "code", "device", "client"],
        default="pkce",
        help="Grant type (default: pkce)",
    )
    login_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the user (default: login_timeout setting)",
    )

    refresh_parser = subparsers.add_parser("refresh", help="Refresh a stored credential")
    refresh_parser.add_argument("provider", help="Provider id")

    logout_parser = subparsers.add_parser("logout", help="Delete stored credentials")
    logout_parser.add_argument(
        "provider",
        nargs="?",
        help="Provider id (default: every provider)",
    )

    args = parser.parse_args(argv)

    if args.debug:
        from .log import enable_debug

        enable_debug()

    handlers = {
        "config": handle_config,
        "providers": handle_providers,
        "status": handle_status,
        "login": handle_login,
        "refresh": handle_refresh,
        "logout": handle_logout,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args)
    except PyOAuthException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _settings() -> OAuthSettings:
    from .config import get_settings

    return get_settings()


def _engine() -> OAuthEngine:
    from .engine import OAuthEngine

    return OAuthEngine.from_settings(_settings())


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    if args.sources:
        return show_config_sources()

    settings = _settings()
    output = settings.to_toml() if args.toml else settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def show_config_sources() -> int:
    """Print the configuration files that are loaded, lowest precedence first."""
    files = _find_config_files()
    print("Configuration Sources (in order of precedence):\n")
    if not files:
        print("  (no configuration files found; using defaults)")
    for path in files:
        print(f"  {path.resolve()}")
    print("  environment variables (PYOAUTH__*, PYOAUTH_LOG__*, ...)")
    print("\nNote: Later sources override earlier ones.")
    return 0


def handle_providers(args: argparse.Namespace) -> int:  # noqa: ARG001
    """List configured providers and the grants they support."""
    from .providers import load_providers

    providers = load_providers(settings=_settings())
    if not providers:
        print("No providers configured. Add an oauth.json file or [[providers]] settings.")
        return 0

    print(f"{'Provider':<20} {'Grants':<32} {'Injects on'}")
    print("-" * 80)
    for provider in providers:
        grants = ["pkce", "code"]
        if provider.device_code_url:
            grants.append("device")
        if provider.client_secret:
            grants.append("client")
        print(f"{provider.id:<20} {', '.join(grants):<32} {provider.authorization_pattern or '-'}")
    return 0


def _describe(credential: Credential) -> str:
    expiration = credential.expiration
    if expiration is None:
        expiry = "never expires"
    elif credential.is_expired:
        expiry = "EXPIRED"
    else:
        expiry = f"expires in {int(expiration - time.time())}s"
    refresh = "refreshable" if credential.token.refresh_token else "no refresh token"
    return f"{credential.token.token_type}, {expiry}, {refresh}"


def handle_status(args: argparse.Namespace) -> int:  # noqa: ARG001
    """Show the stored credential for every provider."""
    engine = _engine()
    credentials = engine.store.load_all()
    if not credentials:
        print("No stored credentials.")
        return 0
    for provider_id, credential in sorted(credentials.items()):
        print(f"{provider_id:<20} {_describe(credential)}")
    return 0


def _print_device_code(state: State) -> None:
    if isinstance(state, ReceivedDeviceCode):
        code = state.device_code
        print(f"Open {code.verification_uri_complete or code.verification_uri}")
        print(f"and enter the code: {code.user_code}")


async def _login(engine: OAuthEngine, args: argparse.Namespace) -> Credential:
    from .browser import BrowserAuthorizer

    provider = engine.provider(args.provider)
    timeout = args.timeout if args.timeout is not None else engine.settings.login_timeout

    async with engine:
        if args.grant == "client":
            return await engine.request_client_credentials(provider)

        if args.grant == "device":
            unsubscribe = engine.subscribe(_print_device_code)
            try:
                engine.authorize(provider, DeviceCodeGrant())
                state = await engine.wait_for(
                    Authorized, Error, Empty, timeout=timeout, provider=provider
                )
            finally:
                unsubscribe()
            if isinstance(state, Authorized):
                return state.credential
            if isinstance(state, Error) and state.error is not None:
                raise state.error
            msg = "Device authorization was not completed"
            raise OAuthError(msg, provider=provider.id)

        grant = PKCEGrant() if args.grant == "pkce" else AuthorizationCodeGrant()
        print(f"Opening the {provider.id} sign-in page in your browser...")
        return await BrowserAuthorizer(engine).login(provider, grant, timeout=timeout)


def handle_login(args: argparse.Namespace) -> int:
    """Authorize a provider and store the credential."""
    engine = _engine()
    try:
        credential = run_async(_login(engine, args))
    except TimeoutError:
        print("Error: timed out waiting for authorization", file=sys.stderr)
        return 1
    print(f"Authorized {credential.issuer} ({_describe(credential)})")
    return 0


async def _refresh(engine: OAuthEngine, provider_id: str) -> Credential | None:
    try:
        return await engine.refresh(provider_id)
    finally:
        await engine.close()


def handle_refresh(args: argparse.Namespace) -> int:
    """Refresh a stored credential."""
    engine = _engine()
    credential = run_async(_refresh(engine, args.provider))
    if credential is not None:
        print(f"Refreshed {credential.issuer} ({_describe(credential)})")
        return 0

    state = engine.state
    if isinstance(state, Error):
        print(f"Error: {state.error or state.kind.value}", file=sys.stderr)
    else:
        print(f"Nothing to refresh for {args.provider}", file=sys.stderr)
    return 1


def handle_logout(args: argparse.Namespace) -> int:
    """Delete one provider's credential, or all of them."""
    engine = _engine()
    if args.provider:
        engine.remove(args.provider)
        print(f"Signed out of {args.provider}")
    else:
        engine.clear()
        print("Signed out of every provider")
    return 0
