"""Browser collaborator for authorization code and PKCE grants.

The engine only announces ``Authorizing``; this module opens the consent
page, receives the redirect and hands the code back to the engine.
``BrowserAuthorizer.login`` runs the whole round trip through the system
browser and an ephemeral loopback HTTP server (RFC 8252 §7.3).
"""

# pylint: disable=C0103,W0212

from __future__ import annotations

import asyncio
import html
import logging
import threading
import webbrowser

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlsplit

import httpx

from .exceptions import AuthorizationCallbackError, ConfigurationError, OAuthError
from .types import Authorizing, PKCEGrant


if TYPE_CHECKING:
    from collections.abc import Callable

    from .engine import OAuthEngine
    from .models import Credential, Provider
    from .types import AuthorizationCodeGrant, State


logger = logging.getLogger("pyoauth.browser")

_LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>pyoauth: {title}</title>
<style>
  html {{ font-family: system-ui, sans-serif; background: #fafafa; color: #222; }}
  main {{ max-width: 28rem; margin: 20vh auto; padding: 1.5rem 2rem;
          border: 1px solid #ddd; border-radius: 8px; background: #fff; }}
  h1 {{ font-size: 1.25rem; color: {accent}; }}
</style></head>
<body><main>
  <h1>{title}</h1>
  <p>{message}</p>
</main></body></html>"""

_SUCCESS_HTML = _PAGE.format(
    title="Authorization Complete",
    accent="#1b7f3b",
    message="The sign-in finished. This tab can be closed.",
)


def _error_page(message: str) -> str:
    return _PAGE.format(
        title="Authorization Failed", accent="#b00020", message=html.escape(message, quote=True)
    )


class LoopbackCallbackServer:
    """Ephemeral localhost HTTP server that captures one OAuth redirect.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    path : str
        Path the provider redirects to (default ``"/callback"``).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, path: str = "/callback") -> None:
        """Initialize the callback server."""
        self._host = host
        self._port = port
        self._path = path or "/"
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._result: str | None = None
        self._result_event = threading.Event()
        self._actual_port: int = port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI served, e.g. ``http://127.0.0.1:54321/callback``."""
        return f"http://{self._host}:{self._actual_port}{self._path}"

    def start(self) -> str:
        """Start the callback server on a daemon thread.

        Returns
        -------
        str
            The redirect URI to register with the authorization request.
        """
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth redirects."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlsplit(self.path)
                if parsed.path != server_ref._path:
                    self.send_error(404)
                    return

                if server_ref._result_event.is_set():
                    self._send_html(_SUCCESS_HTML)
                    return

                server_ref._result = f"http://{server_ref._host}:{server_ref._actual_port}{self.path}"
                params = dict(parse_qsl(parsed.query))
                if params.get("error"):
                    message = params.get("error_description") or params["error"]
                    self._send_html(_error_page(message))
                else:
                    self._send_html(_SUCCESS_HTML)

                server_ref._result_event.set()
                threading.Thread(target=self._shutdown_server, daemon=True).start()

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

            def _shutdown_server(self) -> None:
                if server_ref._server:
                    server_ref._server.shutdown()

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the pyoauth logger."""
                if args:
                    logger.debug("Callback server: %s", args[0] % args[1:])

        self._server = HTTPServer((self._host, self._port), _CallbackHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Callback server started on %s", self.redirect_uri)
        return self.redirect_uri

    def wait_for_callback(self, timeout: float | None = 120.0) -> str | None:
        """Block until the redirect arrives or ``timeout`` expires.

        Returns
        -------
        str or None
            The full redirect URL, or None on timeout.
        """
        if self._result_event.wait(timeout=timeout):
            return self._result
        return None

    def stop(self) -> None:
        """Force-shutdown the callback server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None


def loopback_server_for(provider: Provider) -> LoopbackCallbackServer:
    """Build a callback server listening on the provider's redirect URI.

    Providers without a ``redirect_uri`` get an auto-assigned port.

    Raises
    ------
    ConfigurationError
        If ``redirect_uri`` is not an ``http`` loopback address.
    """
    if not provider.redirect_uri:
        return LoopbackCallbackServer()
    url = httpx.URL(provider.redirect_uri)
    if url.scheme != "http" or url.host not in _LOOPBACK_HOSTS:
        msg = "Browser login needs an http loopback redirectURI, e.g. http://127.0.0.1:8765/callback"
        raise ConfigurationError(msg, provider=provider.id, redirect_uri=provider.redirect_uri)
    return LoopbackCallbackServer(host=url.host, port=url.port or 80, path=url.path)


class BrowserAuthorizer:
    """Completes browser grants for an ``OAuthEngine``.

    Parameters
    ----------
    engine : OAuthEngine
        The engine whose ``Authorizing`` states this authorizer serves.
    open_url : callable, optional
        Opens the consent page. Defaults to ``webbrowser.open``.
    """

    def __init__(
        self,
        engine: OAuthEngine,
        open_url: Callable[[str], Any] | None = None,
    ) -> None:
        """Initialize the authorizer."""
        self.engine = engine
        self.open_url = open_url or webbrowser.open
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def attached(self) -> bool:
        """Whether ``Authorizing`` states open the browser automatically."""
        return self._unsubscribe is not None

    def attach(self) -> Callable[[], None]:
        """Open the consent page whenever the engine publishes ``Authorizing``.

        Returns
        -------
        callable
            Detaches the authorizer.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self.engine.subscribe(self._on_state)
        return self.detach

    def detach(self) -> None:
        """Stop observing the engine."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_state(self, state: State) -> None:
        if isinstance(state, Authorizing):
            self.open_consent(state.provider, state.grant)

    def open_consent(self, provider: Provider, grant: AuthorizationCodeGrant | PKCEGrant) -> bool:
        """Open the authorization URL for ``grant`` in the browser.

        An invalid authorization URL is published as ``Error``.
        """
        try:
            url = self.engine.authorization_url(provider, grant)
        except OAuthError as exc:
            self.engine.consume_grant(provider)
            self.engine.fail(provider, exc)
            return False
        logger.info("Opening %s consent page", provider.id)
        self.open_url(url)
        return True

    def _provider_for_state(self, state: str | None) -> Provider | None:
        for provider in self.engine.providers:
            grant = self.engine.pending_grant(provider)
            if grant is not None and grant.state == state:
                return provider
        current = self.engine.state
        if isinstance(current, Authorizing):
            return current.provider
        return None

    async def handle_redirect(self, url: str, provider: Provider | str | None = None) -> Credential:
        """Validate a redirect and exchange its code for a credential.

        The pending grant is consumed by the first redirect, whatever its
        outcome.

        Parameters
        ----------
        url : str
            The full redirect URL, including its query string.
        provider : Provider or str, optional
            The provider the redirect belongs to. Defaults to the provider
            whose pending grant carries the redirect's ``state``.

        Returns
        -------
        Credential
            The stored credential.

        Raises
        ------
        AuthorizationCallbackError
            If the redirect carries an error, no code, or a foreign state.
        OAuthError
            If the code exchange fails.
        """
        params = dict(parse_qsl(urlsplit(url).query))
        returned_state = params.get("state")

        if provider is None:
            resolved = self._provider_for_state(returned_state)
            if resolved is None:
                msg = "Redirect does not belong to an authorization in progress"
                raise AuthorizationCallbackError(msg)
        else:
            resolved = self.engine.provider(provider)

        grant = self.engine.consume_grant(resolved)
        error: AuthorizationCallbackError | None = None
        if grant is None:
            error = AuthorizationCallbackError(
                "No authorization is pending for this provider", provider=resolved.id
            )
        elif params.get("error"):
            description = params.get("error_description") or params["error"]
            error = AuthorizationCallbackError(
                f"Provider returned error: {description}",
                provider=resolved.id,
                error_code=params["error"],
            )
        elif returned_state != grant.state:
            error = AuthorizationCallbackError(
                "State parameter mismatch (possible CSRF attack)", provider=resolved.id
            )
        elif not params.get("code"):
            error = AuthorizationCallbackError(
                "No authorization code in redirect", provider=resolved.id
            )

        if error is not None:
            self.engine.fail(resolved, error)
            raise error

        verifier = grant.pkce.verifier if isinstance(grant, PKCEGrant) else None
        return await self.engine.exchange_code(resolved, params["code"], verifier)

    async def login(
        self,
        provider: Provider | str,
        grant: AuthorizationCodeGrant | PKCEGrant | None = None,
        timeout: float | None = None,
    ) -> Credential:
        """Authorize ``provider`` through the system browser.

        Starts a loopback server on the provider's redirect URI, opens the
        consent page and exchanges the returned code.

        Parameters
        ----------
        provider : Provider or str
            The provider (or its id).
        grant : AuthorizationCodeGrant or PKCEGrant, optional
            Defaults to a fresh ``PKCEGrant``.
        timeout : float, optional
            Seconds to wait for the redirect. Defaults to the
            ``login_timeout`` setting.

        Raises
        ------
        AuthorizationCallbackError
            On timeout or an invalid redirect.
        OAuthError
            If the code exchange fails.
        """
        provider = self.engine.provider(provider)
        grant = grant or PKCEGrant()
        if timeout is None:
            timeout = self.engine.settings.login_timeout

        server = loopback_server_for(provider)
        redirect_uri = server.start()
        try:
            if provider.redirect_uri is None:
                provider = provider.model_copy(update={"redirect_uri": redirect_uri})

            try:
                url = self.engine.authorization_url(provider, grant)
            except OAuthError as exc:
                self.engine.fail(provider, exc)
                raise

            self.engine.authorize(provider, grant)
            if not self.attached:
                logger.info("Opening %s consent page", provider.id)
                self.open_url(url)

            loop = asyncio.get_running_loop()
            callback = await loop.run_in_executor(None, server.wait_for_callback, timeout)
        finally:
            server.stop()

        if callback is None:
            self.engine.consume_grant(provider)
            error = AuthorizationCallbackError(
                f"No redirect received within {timeout}s", provider=provider.id
            )
            self.engine.fail(provider, error)
            raise error

        return await self.handle_redirect(callback, provider=provider)
