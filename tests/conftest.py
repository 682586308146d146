"""
Pytest configuration and fixtures for the knowledge-base API tests.
"""

from __future__ import annotations

from typing import Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from services.cache import TTLCache
from services.zoho_desk import ZohoDeskClient

DESK_URL = "https://desk.example.test/api/v1"
ACCOUNTS_URL = "https://accounts.example.test"


class FakeClock:
    """Manually advanced clock for simulating TTL expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDesk:
    """Routes MockTransport requests to canned Zoho Desk JSON responses.

    `routes` maps an API path (without the base URL) to either a response
    body dict or a callable returning an httpx.Response.
    """

    def __init__(self) -> None:
        self.routes: dict[str, dict | Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: list[httpx.Request] = []
        self.token_requests = 0
        self.token_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v2/token":
            self.token_requests += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": f"token-{self.token_requests}"})

        self.calls.append(request)
        path = request.url.path.removeprefix("/api/v1")
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, json={"errorCode": "URL_NOT_FOUND"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def calls_to(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path == f"/api/v1{path}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(sweep_interval_seconds=300, clock=clock)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings with fake Zoho credentials and no admin token."""
    env = {
        "ZOHO_DESK_API_URL": DESK_URL,
        "ZOHO_ACCOUNTS_URL": ACCOUNTS_URL,
        "ZOHO_ORG_ID": "org-123",
        "ZOHO_REFRESH_TOKEN": "refresh-abc",
        "ZOHO_CLIENT_ID": "client-id",
        "ZOHO_CLIENT_SECRET": "client-secret",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("ADMIN_API_TOKEN", raising=False)
    return Settings()


@pytest.fixture
def fake_desk() -> FakeDesk:
    return FakeDesk()


@pytest.fixture
def desk_client(settings: Settings, fake_desk: FakeDesk) -> ZohoDeskClient:
    return ZohoDeskClient(
        settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_desk)),
        retry_backoff_seconds=0,
        max_retry_wait_seconds=0,
    )


@pytest.fixture
def client(settings: Settings, cache: TTLCache, desk_client: ZohoDeskClient) -> Generator[TestClient, None, None]:
    app = create_app(settings=settings, cache=cache, desk_client=desk_client)
    with TestClient(app) as test_client:
        yield test_client
