"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json

from typing import TYPE_CHECKING, Any

import httpx
import pytest

from pyoauth.config import OAuthSettings, clear_settings
from pyoauth.credential_store import CredentialStore, MemorySecureStore, reset_secure_store
from pyoauth.engine import OAuthEngine
from pyoauth.injector import CredentialInjector
from pyoauth.models import Provider
from pyoauth.scheduler import Scheduler


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


TOKEN_URL = "https://auth.example.com/token"
DEVICE_URL = "https://auth.example.com/device"
AUTHORIZE_URL = "https://auth.example.com/authorize"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    """Keep every test away from real config files and the OS keyring."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("PYOAUTH_CONFIG_FILE", raising=False)
    monkeypatch.setenv("PYOAUTH_STORE__BACKEND", "memory")
    clear_settings()
    reset_secure_store()
    yield
    clear_settings()
    reset_secure_store()


# ── Wire stubs ──────────────────────────────────────────────────────


def json_response(status_code: int = 200, **payload: Any) -> httpx.Response:
    """Build a JSON response."""
    return httpx.Response(status_code, json=payload)


def token_response(
    access_token: str = "at_1",
    refresh_token: str | None = "rt_1",
    expires_in: int | None = 3600,
    **extra: Any,
) -> httpx.Response:
    """Build a successful token endpoint response."""
    payload: dict[str, Any] = {"access_token": access_token, "token_type": "Bearer", **extra}
    if refresh_token is not None:
        payload["refresh_token"] = refresh_token
    if expires_in is not None:
        payload["expires_in"] = expires_in
    return httpx.Response(200, json=payload)


def device_code_response(expires_in: int = 900, interval: int = 5) -> httpx.Response:
    """Build a successful device authorization response."""
    return json_response(
        device_code="dc_1",
        user_code="ABCD-EFGH",
        verification_uri="https://auth.example.com/activate",
        expires_in=expires_in,
        interval=interval,
    )


class FakeAuthServer:
    """Queue of canned responses per URL path, recording every request.

    A queued exception is raised instead of answering. The last response
    queued for a path is repeated once the queue runs dry.
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[httpx.Response | Exception | Callable[..., Any]]] = {}
        self.requests: list[httpx.Request] = []

    def queue(self, path: str, *responses: httpx.Response | Exception | Callable[..., Any]) -> None:
        self.responses.setdefault(path, []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queued = self.responses.get(request.url.path)
        if not queued:
            return json_response(404, error="not_found")
        item = queued.pop(0) if len(queued) > 1 else queued[0]
        if callable(item) and not isinstance(item, httpx.Response):
            item = item(request)
        if isinstance(item, Exception):
            raise item
        return item

    def params(self, index: int = -1) -> dict[str, str]:
        """OAuth parameters of a recorded request, from its body or query."""
        request = self.requests[index]
        params = dict(request.url.params)
        body = request.content.decode()
        if body:
            params.update(httpx.QueryParams(body))
        return params


class RecordingScheduler(Scheduler):
    """Scheduler that records operations instead of running them."""

    def __init__(self) -> None:
        super().__init__()
        self.scheduled: dict[str, tuple[float, Callable[[], Awaitable[Any]]]] = {}
        self.history: list[tuple[str, float]] = []

    def schedule(self, key: str, delay: float, operation: Callable[[], Awaitable[Any]]) -> Any:
        self.scheduled[key] = (delay, operation)
        self.history.append((key, delay))
        return None

    def cancel(self, key: str) -> bool:
        return self.scheduled.pop(key, None) is not None

    def cancel_all(self) -> int:
        count = len(self.scheduled)
        self.scheduled.clear()
        return count

    def pending(self) -> list[str]:
        return sorted(self.scheduled)

    def delay(self, key: str) -> float:
        return self.scheduled[key][0]

    async def run(self, key: str) -> Any:
        """Run the operation recorded under ``key`` now."""
        _, operation = self.scheduled.pop(key)
        return await operation()


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def provider() -> Provider:
    """A provider supporting every grant."""
    return Provider(
        id="example",
        authorization_url=AUTHORIZE_URL,
        access_token_url=TOKEN_URL,
        device_code_url=DEVICE_URL,
        client_id="client-123",
        client_secret="secret-456",
        redirect_uri="app://callback",
        scope=("read", "write"),
        authorization_pattern=r"^https://api\.example\.com/",
    )


@pytest.fixture()
def public_provider() -> Provider:
    """A public client without a secret or device endpoint."""
    return Provider(
        id="public",
        authorization_url="https://login.public.test/authorize",
        access_token_url="https://login.public.test/token",
        client_id="public-client",
        redirect_uri="http://127.0.0.1:8765/callback",
    )


@pytest.fixture()
def store() -> CredentialStore:
    """Credential store over an in-memory backend."""
    return CredentialStore(MemorySecureStore(), application_tag="test")


@pytest.fixture()
def scheduler() -> RecordingScheduler:
    """Scheduler that never fires on its own."""
    return RecordingScheduler()


@pytest.fixture()
def server() -> FakeAuthServer:
    """Fake authorization server."""
    return FakeAuthServer()


@pytest.fixture()
def injector() -> CredentialInjector:
    """Empty credential injector."""
    return CredentialInjector()


@pytest.fixture()
def settings() -> OAuthSettings:
    """Settings built from defaults."""
    return OAuthSettings()


@pytest.fixture()
def engine(
    provider: Provider,
    public_provider: Provider,
    store: CredentialStore,
    scheduler: RecordingScheduler,
    server: FakeAuthServer,
    injector: CredentialInjector,
    settings: OAuthSettings,
) -> OAuthEngine:
    """Engine wired to the fake server, with auto refresh enabled."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    return OAuthEngine(
        [provider, public_provider],
        settings=settings,
        auto_refresh=True,
        store=store,
        injector=injector,
        scheduler=scheduler,
        http_client=client,
    )


@pytest.fixture()
def states(engine: OAuthEngine) -> list[Any]:
    """Every state the engine publishes, in order."""
    published: list[Any] = []
    engine.subscribe(published.append)
    return published


@pytest.fixture()
def providers_file(tmp_path: Any) -> Any:
    """An oauth.json descriptor file in the working directory."""
    path = tmp_path / "oauth.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "GitHub",
                    "authorizationURL": "https://github.com/login/oauth/authorize",
                    "accessTokenURL": "https://github.com/login/oauth/access_token",
                    "deviceCodeURL": "https://github.com/login/device/code",
                    "clientID": "gh-client",
                    "redirectURI": "http://127.0.0.1:8765/callback",
                    "authorizationPattern": "api.github.com",
                    "scope": ["read:user"],
                },
                {
                    "id": "Service",
                    "authorizationURL": "https://idp.test/authorize",
                    "accessTokenURL": "https://idp.test/token",
                    "clientID": "svc",
                    "clientSecret": "svc-secret",
                    "encodeHttpBody": False,
                },
            ]
        ),
        encoding="utf-8",
    )
    return path
