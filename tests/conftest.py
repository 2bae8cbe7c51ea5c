"""Shared fixtures: settings, a fake clock and a recording mock transport."""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest

from qbconductor_mcp.cache import Cache
from qbconductor_mcp.client import ConductorClient
from qbconductor_mcp.config import Settings
from qbconductor_mcp.handlers import ToolContext

API_PREFIX = "/v1"

Responder = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


class FakeClock:
    """Manually advanced time source for cache tests."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Router:
    """Route requests to canned responses and record every request sent.

    Responses registered for a route are used in order; the last one keeps
    answering once the others are used up. A responder may be a coroutine
    function; MockTransport awaits its result.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[httpx.Response | Responder]] = {}

    def add(self, method: str, path: str, *responses: httpx.Response | Responder) -> None:
        self._routes[(method, path)] = list(responses)

    def json(self, method: str, path: str, body: Any, status: int = 200) -> None:
        self.add(method, path, httpx.Response(status, json=body))

    def __call__(self, request: httpx.Request) -> httpx.Response | Awaitable[httpx.Response]:
        self.requests.append(request)
        path = request.url.path.removeprefix(API_PREFIX)
        responses = self._routes.get((request.method, path))
        if not responses:
            return httpx.Response(404, json={"error": {"message": f"No route for {path}"}})

        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(response):
            return response(request)
        # Fresh copy so a repeated canned response is never reused by the client
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    def sent(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        """Requests matching an optional method and path."""
        return [
            r for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path.removeprefix(API_PREFIX) == path)
        ]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        secret_key="sk_test_123",
        default_end_user_id="end_usr_default",
        publishable_key="pk_test_123",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> Cache:
    return Cache(default_ttl=60, max_size=100, clock=clock)


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def transport(router: Router) -> httpx.MockTransport:
    return httpx.MockTransport(router)


@pytest.fixture
async def client(settings, cache, transport):
    async with ConductorClient(settings, cache, transport=transport) as conductor:
        yield conductor


@pytest.fixture
def context(settings, cache, transport) -> ToolContext:
    return ToolContext(settings=settings, cache=cache, transport=transport)
