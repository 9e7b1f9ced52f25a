"""The OAuth 2.0 authorization state machine.

``OAuthEngine`` owns the published ``State`` and coordinates the request
builder, the HTTP client, the credential store, the scheduler and the
credential injector. Observers follow progress through ``subscribe`` or
``wait_for``; failures of background work are reported as ``Error``
states rather than raised.

Example
-------
>>> engine = OAuthEngine.from_settings()
>>> engine.authorize("github", DeviceCodeGrant())
>>> state = await engine.wait_for(ReceivedDeviceCode)
>>> print(state.device_code.user_code, state.device_code.verification_uri)
>>> await engine.wait_for(Authorized, Error)
"""

# pylint: disable=too-many-instance-attributes,too-many-public-methods

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import inspect
import logging
import threading
import time

from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import httpx

from pydantic import BaseModel, ValidationError

from .config import get_settings
from .credential_store import CredentialStore, SecureStore, get_secure_store
from .exceptions import (
    BadResponseError,
    ConfigurationError,
    CredentialStoreError,
    DecodingError,
    OAuthError,
)
from .injector import CredentialInjector
from .log import get_logger, redact_sensitive_data
from .models import Credential, DeviceCode, Provider, Token
from .request_builder import (
    build_authorization_request,
    build_client_credentials_request,
    build_device_authorization_request,
    build_device_poll_request,
    build_refresh_request,
    build_token_request,
)
from .scheduler import Scheduler, poll_key, refresh_key
from .sync_helpers import get_background_loop
from .types import (
    AuthorizationCodeGrant,
    Authorized,
    Authorizing,
    ClientCredentialsGrant,
    DeviceCodeGrant,
    Empty,
    Error,
    PKCEGrant,
    ReceivedDeviceCode,
    RefreshTokenGrant,
    RequestingAccessToken,
    RequestingDeviceCode,
)


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine, Iterable

    from .config import OAuthSettings
    from .request_builder import OAuthRequest
    from .types import GrantType, State


logger = logging.getLogger("pyoauth.engine")

M = TypeVar("M", bound=BaseModel)

# Added to the poll interval on each RFC 8628 slow_down response
SLOW_DOWN_INCREMENT = 5


class BiometricGate(Protocol):
    """Local user-presence check guarding access to stored credentials."""

    def evaluate(self) -> bool | Awaitable[bool]:
        """Return True when the user is allowed to unlock credentials."""


class OAuthEngine:
    """Drives OAuth 2.0 grants for a set of providers.

    Parameters
    ----------
    providers : iterable of Provider
        The configured authorization servers.
    settings : OAuthSettings, optional
        Source of defaults for every option below. Defaults to
        ``get_settings()``.
    auto_refresh : bool, optional
        Refresh credentials automatically when they expire.
    application_tag : str, optional
        Namespace for stored credential keys.
    http_client : httpx.AsyncClient, optional
        Client used for token and device-code requests. When omitted the
        engine creates (and closes) its own.
    require_biometrics : bool, optional
        Ask ``biometric_gate`` before ``restore()`` loads credentials.
    biometric_gate : BiometricGate, optional
        The user-presence check.
    use_ephemeral_browser : bool, optional
        Ask providers to show a fresh login (``prompt=login``).
    store : CredentialStore or SecureStore, optional
        Credential persistence. Defaults to the configured secure store.
    injector : CredentialInjector, optional
        Injector that receives every authorized credential.
    scheduler : Scheduler, optional
        Scheduler for refresh and poll tasks.
    loop : asyncio.AbstractEventLoop, optional
        Loop that runs engine work. Defaults to the running loop at first
        use, or a background loop when called from sync code.
    """

    def __init__(
        self,
        providers: Iterable[Provider] = (),
        *,
        settings: OAuthSettings | None = None,
        auto_refresh: bool | None = None,
        application_tag: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        require_biometrics: bool | None = None,
        biometric_gate: BiometricGate | None = None,
        use_ephemeral_browser: bool | None = None,
        store: CredentialStore | SecureStore | None = None,
        injector: CredentialInjector | None = None,
        scheduler: Scheduler | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the engine."""
        self.settings = settings or get_settings()
        get_logger(self.settings.log)

        self._providers: dict[str, Provider] = {}
        for provider in providers:
            if provider.id in self._providers:
                msg = f"Duplicate provider id: {provider.id}"
                raise ConfigurationError(msg, provider=provider.id)
            self._providers[provider.id] = provider

        self.auto_refresh = self.settings.auto_refresh if auto_refresh is None else auto_refresh
        self.require_biometrics = (
            self.settings.require_biometrics if require_biometrics is None else require_biometrics
        )
        self.use_ephemeral_browser = (
            self.settings.use_ephemeral_browser
            if use_ephemeral_browser is None
            else use_ephemeral_browser
        )
        self.refresh_leeway = self.settings.refresh_leeway_seconds
        self.biometric_gate = biometric_gate

        tag = application_tag or self.settings.store.application_tag
        if store is None:
            backend = get_secure_store(
                self.settings.store.backend,
                service_name=self.settings.store.keyring_service,
            )
            store = CredentialStore(backend, application_tag=tag)
        elif isinstance(store, SecureStore):
            store = CredentialStore(store, application_tag=tag)
        self.store = store

        self.injector = injector if injector is not None else CredentialInjector()
        self.scheduler = scheduler if scheduler is not None else Scheduler(loop)

        self._http_client = http_client
        self._owns_client = http_client is None
        self._loop = loop

        self._state: State = Empty()
        self._state_lock = threading.Lock()
        self._listeners: list[Callable[[State], None]] = []
        self._pending: dict[str, AuthorizationCodeGrant | PKCEGrant] = {}
        self._injected: set[str] = set()
        self._background: set[asyncio.Task[Any] | concurrent.futures.Future[Any]] = set()
        self._generation = 0

    @classmethod
    def from_settings(
        cls,
        settings: OAuthSettings | None = None,
        providers: Iterable[Provider] | None = None,
        **kwargs: Any,
    ) -> OAuthEngine:
        """Build an engine from settings, loading the configured providers.

        Parameters
        ----------
        settings : OAuthSettings, optional
            Defaults to ``get_settings()``.
        providers : iterable of Provider, optional
            Overrides the providers from ``providers_file`` and the inline
            ``providers`` setting.
        **kwargs : Any
            Passed to the constructor.
        """
        from .providers import load_providers

        settings = settings or get_settings()
        if providers is None:
            providers = load_providers(settings=settings)
        return cls(providers, settings=settings, **kwargs)

    # ── Providers ───────────────────────────────────────────────────

    @property
    def providers(self) -> list[Provider]:
        """Configured providers in registration order."""
        return list(self._providers.values())

    def add_provider(self, provider: Provider) -> None:
        """Register (or replace) a provider."""
        self._providers[provider.id] = provider

    def provider(self, provider: Provider | str) -> Provider:
        """Resolve a provider or provider id.

        Raises
        ------
        ConfigurationError
            If no provider with that id is configured.
        """
        if isinstance(provider, Provider):
            return provider
        try:
            return self._providers[provider]
        except KeyError:
            msg = f"Unknown provider: {provider}"
            raise ConfigurationError(msg, provider=provider) from None

    # ── State ───────────────────────────────────────────────────────

    @property
    def state(self) -> State:
        """The most recently published state."""
        with self._state_lock:
            return self._state

    def subscribe(self, callback: Callable[[State], None]) -> Callable[[], None]:
        """Call ``callback`` with every published state.

        Callbacks run synchronously on the publishing thread, normally the
        engine loop, and must not block.

        Returns
        -------
        callable
            Call it to unsubscribe.
        """
        with self._state_lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._state_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _publish(self, state: State) -> None:
        with self._state_lock:
            self._state = state
            listeners = list(self._listeners)
        logger.debug("State -> %s", type(state).__name__)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)

    async def wait_for(
        self,
        *state_types: type,
        timeout: float | None = None,
        provider: Provider | str | None = None,
    ) -> State:
        """Wait until a state of one of ``state_types`` is published.

        Returns immediately if the current state already matches.

        Parameters
        ----------
        *state_types : type
            State classes to wait for, e.g. ``Authorized, Error``.
        timeout : float, optional
            Seconds to wait. None waits indefinitely.
        provider : Provider or str, optional
            Only match states about this provider. States that concern no
            provider (``Empty``) still match.

        Raises
        ------
        TimeoutError
            If no matching state arrives in time.
        """
        provider_id = self.provider(provider).id if provider is not None else None
        loop = asyncio.get_running_loop()
        future: asyncio.Future[State] = loop.create_future()

        def matches(state: State) -> bool:
            if not isinstance(state, state_types):
                return False
            return provider_id is None or state.provider is None or state.provider.id == provider_id

        def resolve(state: State) -> None:
            if not future.done():
                future.set_result(state)

        def listener(state: State) -> None:
            if matches(state):
                loop.call_soon_threadsafe(resolve, state)

        unsubscribe = self.subscribe(listener)
        try:
            current = self.state
            if matches(current):
                return current
            return await asyncio.wait_for(future, timeout)
        finally:
            unsubscribe()

    def fail(self, provider: Provider | str, error: OAuthError) -> None:
        """Publish ``Error`` for ``error``. Used by redirect handlers."""
        provider = self.provider(provider)
        logger.warning("Authorization failed for %s: %s", provider.id, error)
        self._publish(Error(provider, error.kind, error))

    # ── Loop and task plumbing ──────────────────────────────────────

    def _bind_loop(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        return loop

    def _spawn(
        self, coro: Coroutine[Any, Any, Any]
    ) -> asyncio.Task[Any] | concurrent.futures.Future[Any]:
        """Start ``coro`` on the engine loop from any thread."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or self._loop is running):
            self._loop = running
            handle: asyncio.Task[Any] | concurrent.futures.Future[Any] = running.create_task(coro)
        else:
            if self._loop is None:
                self._loop = get_background_loop()
            handle = asyncio.run_coroutine_threadsafe(coro, self._loop)

        self._background.add(handle)
        handle.add_done_callback(self._background.discard)
        return handle

    def _cancel_background(self) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for handle in list(self._background):
            if handle is current or handle.done():
                continue
            if isinstance(handle, asyncio.Task):
                loop = handle.get_loop()
                if loop is _running_loop():
                    handle.cancel()
                elif not loop.is_closed():
                    loop.call_soon_threadsafe(handle.cancel)
            else:
                handle.cancel()
        self._background.clear()

    async def _blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking store call in the loop's default executor."""
        loop = self._bind_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    @property
    def http_client(self) -> httpx.AsyncClient:
        """The HTTP client used for token endpoint traffic."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.http.timeout)
            self._owns_client = True
        return self._http_client

    # ── HTTP ────────────────────────────────────────────────────────

    async def _send(self, provider: Provider, request: OAuthRequest) -> httpx.Response:
        """Send ``request``; transport failures become ``BadResponseError``."""
        self._bind_loop()
        headers = dict(request.headers)
        user_agent = provider.custom_user_agent or self.settings.http.user_agent
        if user_agent:
            headers.setdefault("User-Agent", user_agent)

        try:
            response = await self.http_client.request(
                request.method, request.url, data=request.data, headers=headers
            )
        except httpx.HTTPError as exc:
            msg = f"Request to {httpx.URL(request.url).host} failed: {exc}"
            raise BadResponseError(msg, provider=provider.id) from exc

        if provider.debug:
            _log_response(provider, request, response)
        return response

    def _decode(self, provider: Provider, response: httpx.Response, model: type[M]) -> M:
        """Decode a successful JSON response into ``model``.

        Raises
        ------
        BadResponseError
            For a non-2xx status or an OAuth ``error`` body.
        DecodingError
            For a body that is not JSON or does not fit ``model``.
        """
        error_code, description = _oauth_error(response)
        if not response.is_success or error_code is not None:
            msg = f"{provider.id} returned HTTP {response.status_code}"
            if error_code:
                msg = f"{msg}: {error_code}"
            if description:
                msg = f"{msg} ({description})"
            raise BadResponseError(
                msg,
                provider=provider.id,
                status_code=response.status_code,
                error_code=error_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            msg = "Response body is not valid JSON"
            raise DecodingError(msg, provider=provider.id) from exc
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            msg = f"Response does not describe a {model.__name__}: {exc.error_count()} error(s)"
            raise DecodingError(msg, provider=provider.id) from exc

    async def _request_token(self, provider: Provider, request: OAuthRequest) -> Credential:
        response = await self._send(provider, request)
        token = self._decode(provider, response, Token)
        return Credential(issuer=provider.id, token=token)

    # ── Credential lifecycle ────────────────────────────────────────

    async def _persist(self, provider: Provider, credential: Credential, generation: int) -> bool:
        """Store ``credential`` and make it the provider's active credential.

        Returns False without storing anything when ``clear()`` ran after
        the operation started.
        """
        if generation != self._generation:
            logger.info("Discarding credential for %s issued before clear()", provider.id)
            return False
        await self._blocking(self.store.save, credential)
        if generation != self._generation:
            await self._blocking(self.store.delete, provider.id)
            return False
        self._activate(provider, credential)
        return True

    def _activate(self, provider: Provider, credential: Credential) -> None:
        self.scheduler.cancel(poll_key(provider.id))
        with self._state_lock:
            self._pending.pop(provider.id, None)
        if self.injector.add_credential(credential, provider):
            self._injected.add(provider.id)
        self._publish(Authorized(provider, credential))
        self._arm_refresh(provider, credential)
        logger.info("Authorized %s", provider.id)

    def _arm_refresh(self, provider: Provider, credential: Credential) -> None:
        if (
            not self.auto_refresh
            or credential.expiration is None
            or not credential.token.refresh_token
        ):
            return
        delay = credential.expiration - time.time() - self.refresh_leeway
        self.scheduler.schedule(
            refresh_key(provider.id), delay, functools.partial(self.refresh, provider)
        )

    # ── Grants ──────────────────────────────────────────────────────

    def authorize(
        self,
        provider: Provider | str,
        grant: GrantType | None = None,
    ) -> asyncio.Task[Any] | concurrent.futures.Future[Any] | None:
        """Start authorizing ``provider`` with ``grant``.

        Authorization code and PKCE grants are remembered as pending and
        announced as ``Authorizing``; the browser collaborator completes
        them through ``exchange_code``. Every other grant runs in the
        background. Failures are published as ``Error`` states.

        Parameters
        ----------
        provider : Provider or str
            The provider (or its id).
        grant : GrantType, optional
            Defaults to a fresh ``PKCEGrant``.

        Returns
        -------
        asyncio.Task or concurrent.futures.Future or None
            Handle to the background work, or None for browser grants.
        """
        provider = self.provider(provider)
        if grant is None:
            grant = PKCEGrant()

        if isinstance(grant, (AuthorizationCodeGrant, PKCEGrant)):
            with self._state_lock:
                self._pending[provider.id] = grant
            self._publish(Authorizing(provider, grant))
            return None
        if isinstance(grant, DeviceCodeGrant):
            self._publish(RequestingDeviceCode(provider))
            return self._spawn(self.request_device_code(provider))
        if isinstance(grant, ClientCredentialsGrant):
            return self._spawn(self._reported(self.request_client_credentials(provider)))
        if isinstance(grant, RefreshTokenGrant):
            return self._spawn(self.refresh(provider))

        msg = f"Unsupported grant: {grant!r}"
        raise TypeError(msg)

    async def _reported(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Await ``coro``; an ``OAuthError`` it raises was already published."""
        try:
            return await coro
        except OAuthError as exc:
            logger.debug("Background authorization ended with %s", type(exc).__name__)
            return None

    def pending_grant(self, provider: Provider | str) -> AuthorizationCodeGrant | PKCEGrant | None:
        """The browser grant waiting for a redirect, if any."""
        provider = self.provider(provider)
        with self._state_lock:
            return self._pending.get(provider.id)

    def consume_grant(self, provider: Provider | str) -> AuthorizationCodeGrant | PKCEGrant | None:
        """Remove and return the pending browser grant.

        A grant is consumed by the first redirect that reaches it, so its
        state and PKCE verifier are never accepted twice.
        """
        provider = self.provider(provider)
        with self._state_lock:
            return self._pending.pop(provider.id, None)

    def authorization_url(
        self,
        provider: Provider | str,
        grant: AuthorizationCodeGrant | PKCEGrant,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """URL of the provider's consent page for ``grant``.

        Raises
        ------
        MalformedURLError
            If the provider's authorization URL is invalid.
        """
        provider = self.provider(provider)
        params = dict(extra_params or {})
        if self.use_ephemeral_browser:
            params.setdefault("prompt", "login")
        return build_authorization_request(provider, grant, params).url

    async def exchange_code(
        self,
        provider: Provider | str,
        code: str,
        pkce_verifier: str | None = None,
    ) -> Credential:
        """Exchange an authorization code for a credential.

        Parameters
        ----------
        provider : Provider or str
            The provider that issued ``code``.
        code : str
            The authorization code from the redirect.
        pkce_verifier : str, optional
            The PKCE verifier when the grant used PKCE.

        Returns
        -------
        Credential
            The stored credential.

        Raises
        ------
        OAuthError
            After publishing the matching ``Error`` state.
        """
        provider = self.provider(provider)
        generation = self._generation
        self._publish(RequestingAccessToken(provider))
        try:
            request = build_token_request(provider, code, pkce_verifier)
            credential = await self._request_token(provider, request)
            await self._persist(provider, credential, generation)
        except OAuthError as exc:
            if generation == self._generation:
                self.fail(provider, exc)
            raise
        return credential

    async def request_client_credentials(self, provider: Provider | str) -> Credential:
        """Obtain a credential with the client credentials grant.

        Raises
        ------
        OAuthError
            After publishing the matching ``Error`` state.
        """
        provider = self.provider(provider)
        generation = self._generation
        self._publish(RequestingAccessToken(provider))
        try:
            request = build_client_credentials_request(provider)
            credential = await self._request_token(provider, request)
            await self._persist(provider, credential, generation)
        except OAuthError as exc:
            if generation == self._generation:
                self.fail(provider, exc)
            raise
        return credential

    async def request_device_code(self, provider: Provider | str) -> DeviceCode | None:
        """Request a device code and start polling for the token.

        Returns
        -------
        DeviceCode or None
            The issued code, or None after publishing ``Error``.
        """
        provider = self.provider(provider)
        generation = self._generation
        if self.state != RequestingDeviceCode(provider):
            self._publish(RequestingDeviceCode(provider))
        try:
            request = build_device_authorization_request(provider)
            response = await self._send(provider, request)
            device_code = self._decode(provider, response, DeviceCode)
        except OAuthError as exc:
            if generation == self._generation:
                self.fail(provider, exc)
            return None
        if generation != self._generation:
            return None

        logger.info(
            "Device code issued for %s; enter %s at %s",
            provider.id,
            device_code.user_code,
            device_code.verification_uri,
        )
        self._receive_device_code(provider, device_code)
        return device_code

    def _receive_device_code(self, provider: Provider, device_code: DeviceCode) -> None:
        self._publish(ReceivedDeviceCode(provider, device_code))
        self._schedule_poll(provider, device_code)

    async def poll(self, provider: Provider | str, device_code: DeviceCode) -> Credential | None:
        """Ask the token endpoint whether the user approved ``device_code``.

        Pending and transient outcomes reschedule the next poll; an
        expired device code publishes ``Empty`` and stops polling.

        Returns
        -------
        Credential or None
            The credential once the user approved, else None.
        """
        provider = self.provider(provider)
        generation = self._generation

        if device_code.is_expired:
            logger.info("Device code for %s expired; polling stopped", provider.id)
            self._publish(Empty())
            return None

        try:
            request = build_device_poll_request(provider, device_code)
        except OAuthError as exc:
            self.fail(provider, exc)
            return None

        try:
            response = await self._send(provider, request)
        except BadResponseError as exc:
            if generation == self._generation:
                logger.debug("Device poll for %s failed, retrying: %s", provider.id, exc)
                self._schedule_poll(provider, device_code)
            return None

        if generation != self._generation:
            return None

        error_code, _ = _oauth_error(response)
        if error_code is None and response.is_success:
            try:
                token = Token.model_validate(response.json())
            except (ValueError, ValidationError):
                logger.debug("Undecodable device poll response for %s, retrying", provider.id)
                self._schedule_poll(provider, device_code)
                return None
            credential = Credential(issuer=provider.id, token=token)
            try:
                stored = await self._persist(provider, credential, generation)
            except CredentialStoreError as exc:
                self.fail(provider, exc)
                return None
            return credential if stored else None

        if error_code == "authorization_pending":
            self._schedule_poll(provider, device_code)
        elif error_code == "slow_down":
            slower = device_code.model_copy(
                update={"interval": device_code.interval + SLOW_DOWN_INCREMENT}
            )
            logger.debug("Slowing device poll for %s to %ss", provider.id, slower.interval)
            self._receive_device_code(provider, slower)
        elif error_code == "access_denied":
            msg = "The user denied the device authorization request"
            self.fail(
                provider,
                BadResponseError(
                    msg,
                    provider=provider.id,
                    status_code=response.status_code,
                    error_code=error_code,
                ),
            )
        elif error_code == "expired_token":
            logger.info("Device code for %s expired at the server", provider.id)
            self._publish(Empty())
        else:
            logger.debug(
                "Device poll for %s returned HTTP %s (%s), retrying",
                provider.id,
                response.status_code,
                error_code,
            )
            self._schedule_poll(provider, device_code)
        return None

    def _schedule_poll(self, provider: Provider, device_code: DeviceCode) -> None:
        self.scheduler.schedule(
            poll_key(provider.id),
            device_code.interval,
            functools.partial(self.poll, provider, device_code),
        )

    async def refresh(self, provider: Provider | str) -> Credential | None:
        """Replace the stored credential using its refresh token.

        Without a stored credential this is a no-op. A credential that has
        no refresh token and is expired clears the engine.

        Returns
        -------
        Credential or None
            The refreshed credential, or None.
        """
        provider = self.provider(provider)
        generation = self._generation
        try:
            current = await self._blocking(self.store.load, provider.id)
        except CredentialStoreError as exc:
            self.fail(provider, exc)
            return None
        if current is None:
            return None

        if not current.token.refresh_token:
            if current.is_expired:
                logger.info("Credential for %s expired without a refresh token", provider.id)
                self.clear()
            return None

        try:
            request = build_refresh_request(provider, current.token)
            if request is None:
                return None
            credential = await self._request_token(provider, request)
            if credential.token.refresh_token is None:
                token = credential.token.model_copy(
                    update={"refresh_token": current.token.refresh_token}
                )
                credential = credential.model_copy(update={"token": token})
            if not await self._persist(provider, credential, generation):
                return None
        except OAuthError as exc:
            if generation == self._generation:
                self.fail(provider, exc)
            return None

        logger.info("Refreshed credential for %s", provider.id)
        return credential

    # ── Restore and teardown ────────────────────────────────────────

    async def restore(self) -> list[Credential]:
        """Publish stored credentials for the configured providers.

        Non-expired credentials are published as ``Authorized``; expired
        ones with a refresh token are refreshed when auto refresh is on.
        With ``require_biometrics`` the biometric gate must pass first.

        Returns
        -------
        list[Credential]
            The credentials that are now active.
        """
        self._bind_loop()
        if self.require_biometrics:
            if self.biometric_gate is None:
                logger.warning("Biometrics required but no gate is configured; restoring anyway")
            else:
                allowed = self.biometric_gate.evaluate()
                if inspect.isawaitable(allowed):
                    allowed = await allowed
                if not allowed:
                    logger.info("Biometric check failed; stored credentials stay locked")
                    return []

        try:
            stored: dict[str, Credential] = await self._blocking(self.store.load_all)
        except CredentialStoreError as exc:
            logger.warning("Could not read stored credentials: %s", exc)
            return []

        restored: list[Credential] = []
        for provider_id, credential in stored.items():
            provider = self._providers.get(provider_id)
            if provider is None:
                logger.debug("Ignoring stored credential for unknown provider %s", provider_id)
                continue
            if not credential.is_expired:
                self._activate(provider, credential)
                restored.append(credential)
            elif credential.token.refresh_token and self.auto_refresh:
                refreshed = await self.refresh(provider)
                if refreshed is not None:
                    restored.append(refreshed)
        return restored

    def clear(self) -> None:
        """Forget everything: tasks, injected and stored credentials.

        Cancels scheduled refresh and poll tasks, drops pending grants and
        this engine's injector entries, deletes every stored credential
        for the application tag and publishes ``Empty``. Never raises.
        Operations still in flight finish without storing or publishing.
        """
        with self._state_lock:
            self._generation += 1
        self.scheduler.cancel_all()
        self._cancel_background()
        with self._state_lock:
            self._pending.clear()
        for provider_id in list(self._injected):
            self.injector.remove_credential(provider_id)
        self._injected.clear()
        try:
            removed = self.store.clear()
        except CredentialStoreError as exc:
            logger.warning("Could not clear stored credentials: %s", exc)
        else:
            logger.info("Cleared %d stored credential(s)", removed)
        self._publish(Empty())

    def remove(self, provider: Provider | str) -> None:
        """Forget one provider's credential and scheduled work.

        Publishes ``Empty`` when the current state concerns ``provider``.
        """
        provider = self.provider(provider)
        self.scheduler.cancel(refresh_key(provider.id))
        self.scheduler.cancel(poll_key(provider.id))
        with self._state_lock:
            self._pending.pop(provider.id, None)
        self.injector.remove_credential(provider)
        self._injected.discard(provider.id)
        try:
            self.store.delete(provider.id)
        except CredentialStoreError as exc:
            logger.warning("Could not delete stored credential: %s", exc)
        if self.state.provider == provider:
            self._publish(Empty())

    async def close(self) -> None:
        """Cancel scheduled work and close the HTTP client if owned."""
        self.scheduler.cancel_all()
        self._cancel_background()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> OAuthEngine:
        await self.restore()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _oauth_error(response: httpx.Response) -> tuple[str | None, str | None]:
    """Extract ``error`` and ``error_description`` from a JSON body."""
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), str):
        return None, None
    description = payload.get("error_description")
    return payload["error"], description if isinstance(description, str) else None


def _log_response(provider: Provider, request: OAuthRequest, response: httpx.Response) -> None:
    endpoint = request.url.partition("?")[0]
    try:
        body: Any = redact_sensitive_data(response.json())
    except ValueError:
        body = f"<{len(response.content)} bytes>"
    logger.debug(
        "[%s] %s %s -> %s %s", provider.id, request.method, endpoint, response.status_code, body
    )
