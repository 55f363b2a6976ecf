from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest

from globalping_mcp.server.auth.framework import LocalAuthorizationFramework
from globalping_mcp.server.auth.models import AuthorizationRequest, GrantProps
from globalping_mcp.server.auth.pkce import generate_pkce_pair
from globalping_mcp.settings import Settings
from globalping_mcp.utilities.storage import MemoryStorage

TOKEN_PATH = "/oauth/token"
INTROSPECTION_PATH = "/oauth/token/introspect"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Stands in for auth.globalping.io behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: dict[str, Any] | str = {
            "access_token": "T",
            "refresh_token": "R",
            "token_type": "bearer",
            "expires_in": 3600,
            "scope": "measurements",
        }
        self.introspection_status = 200
        self.introspection_body: dict[str, Any] | str = {
            "active": True,
            "username": "alice",
            "client_id": "gp-client",
        }

    @staticmethod
    def _response(status: int, body: dict[str, Any] | str) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            return self._response(self.token_status, self.token_body)
        if request.url.path == INTROSPECTION_PATH:
            return self._response(self.introspection_status, self.introspection_body)
        return httpx.Response(404, json={"error": "not_found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def forms(self, path: str) -> list[dict[str, str]]:
        """Form bodies of the requests sent to `path`, in order."""
        return [
            dict(parse_qsl(request.content.decode()))
            for request in self.requests
            if request.url.path == path
        ]

    def token_forms(self) -> list[dict[str, str]]:
        return self.forms(TOKEN_PATH)

    def introspection_forms(self) -> list[dict[str, str]]:
        return self.forms(INTROSPECTION_PATH)


class RecordingFramework(LocalAuthorizationFramework):
    """Local framework that records what the gateway hands over."""

    def __init__(self, storage, target: str | None = None):
        super().__init__(storage)
        self.target = target
        self.completions: list[tuple[AuthorizationRequest, str, GrantProps]] = []

    async def complete_authorization(self, request, user_id, props):
        self.completions.append((request, user_id, props))
        if self.target is not None:
            return self.target
        return await super().complete_authorization(request, user_id, props)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        client_id="gp-client",
        client_secret="gp-secret",
        base_url="https://mcp.globalping.io",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(clock: FakeClock) -> MemoryStorage:
    return MemoryStorage(clock=clock)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def framework(storage: MemoryStorage) -> RecordingFramework:
    return RecordingFramework(storage)


@pytest.fixture
def client_pkce():
    """PKCE pair of the downstream MCP client."""
    return generate_pkce_pair()


@pytest.fixture
def authorization_request(client_pkce) -> AuthorizationRequest:
    return AuthorizationRequest(
        client_id="mcp-client",
        redirect_uri="http://localhost:5173/callback",
        scope=["measurements"],
        state="client-state",
        code_challenge=client_pkce.code_challenge,
        code_challenge_method="S256",
    )
