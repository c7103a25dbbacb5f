"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import httpx
import pytest

from quotaring.core.config import MonitorConfig
from quotaring.fetch.api_client import QuotaApiClient
from quotaring.monitor import UsageMonitor
from quotaring.render.sinks import MemoryIconSink
from quotaring.storage.base import InMemoryStore
from quotaring.storage.usage_store import UsageStore

ORG_ID = "org-1234"

# Epoch ms for 2026-01-01T00:00:00Z; a fixed "now" keeps labels deterministic.
T0 = 1_767_225_600_000


def usage_payload(
    session: float = 42.0,
    weekly: float = 17.0,
    opus: float | None = 8.0,
) -> dict[str, Any]:
    """An API usage document in the current response shape."""
    return {
        "five_hour": {"utilization": session, "resets_at": "2026-01-01T04:39:00Z"},
        "seven_day": {"utilization": weekly, "resets_at": "2026-01-05T10:00:00Z"},
        "seven_day_opus": (
            {"utilization": opus, "resets_at": "2026-01-05T10:00:00Z"} if opus is not None else None
        ),
        "seven_day_oauth_apps": None,
    }


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRenderer:
    """Content renderer double.

    ``reply`` (if set) is called with the renderer after each refresh
    request and may deliver a payload back, e.g. via ``monitor.on_usage_scraped``.
    """

    def __init__(self, reply: Callable[[], Any] | None = None, *, fail: bool = False) -> None:
        self.requests = 0
        self.reply = reply
        self.fail = fail

    async def request_refresh(self) -> None:
        self.requests += 1
        if self.fail:
            raise RuntimeError("tab closed")
        if self.reply is not None:
            asyncio.get_running_loop().call_soon(self.reply)


def mock_transport(
    responses: dict[str, Any],
    calls: list[str] | None = None,
) -> httpx.MockTransport:
    """Build an httpx.MockTransport that returns preset responses keyed by path.

    Values may be an ``httpx.Response``, an exception to raise, or JSON data.
    Every requested path is appended to *calls* when given.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if calls is not None:
            calls.append(path)
        canned = responses.get(path)
        if canned is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(canned, Exception):
            raise canned
        if isinstance(canned, httpx.Response):
            return canned
        return httpx.Response(200, json=canned)

    return httpx.MockTransport(handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def store(backend: InMemoryStore) -> UsageStore:
    return UsageStore(backend)


@pytest.fixture
def sink() -> MemoryIconSink:
    return MemoryIconSink()


@pytest.fixture
def make_client() -> Callable[..., QuotaApiClient]:
    def factory(
        responses: dict[str, Any],
        calls: list[str] | None = None,
        cookies: dict[str, str] | None = None,
    ) -> QuotaApiClient:
        return QuotaApiClient(
            "https://claude.test",
            {"sessionKey": "sk-ant-test"} if cookies is None else cookies,
            transport=mock_transport(responses, calls),
        )

    return factory


@pytest.fixture
async def connected_client(
    make_client: Callable[..., QuotaApiClient],
) -> AsyncGenerator[QuotaApiClient, None]:
    client = make_client({f"/api/organizations/{ORG_ID}/usage": usage_payload()})
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
async def make_monitor(
    clock: FakeClock,
) -> AsyncGenerator[Callable[..., Awaitable[UsageMonitor]], None]:
    """Factory for monitors wired to a mock transport; started without the timer."""
    monitors: list[UsageMonitor] = []

    async def factory(
        responses: dict[str, Any],
        *,
        calls: list[str] | None = None,
        config: MonitorConfig | None = None,
        start: bool = True,
        **kwargs: Any,
    ) -> UsageMonitor:
        config = config or MonitorConfig(
            base_url="https://claude.test", session_key="sk-ant-test", org_id=ORG_ID
        )
        kwargs.setdefault("clock", clock)
        monitor = UsageMonitor.from_config(config, transport=mock_transport(responses, calls), **kwargs)
        monitors.append(monitor)
        if start:
            await monitor.start(schedule=False)
        return monitor

    yield factory
    for monitor in monitors:
        await monitor.close()
