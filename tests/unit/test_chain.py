"""Tests for fetch/chain.py: throttle, in-flight sharing and outcome records."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from pydantic import BaseModel

from conftest import ORG_ID, T0, FakeClock, FakeRenderer, mock_transport, usage_payload
from quotaring.core.constants import FetchSource, PayloadKind, StrategyStatus, UsageError
from quotaring.core.types import DeferredOutcome, StrategyResult, UsageSnapshot
from quotaring.events.bus import EventBus
from quotaring.events.models import FetchDeferred, FetchStarted, UsageDataUpdated
from quotaring.fetch.api_client import QuotaApiClient
from quotaring.fetch.chain import FetchStrategyChain
from quotaring.fetch.scrape_bridge import ScrapeBridge
from quotaring.fetch.strategies import (
    AttemptContext,
    DirectApiStrategy,
    IdentityDiscoveryStrategy,
    PassiveScrapeStrategy,
    Strategy,
)
from quotaring.storage.usage_store import UsageStore

USAGE = f"/api/organizations/{ORG_ID}/usage"
SCRAPED_PAGE = "<p>Current session 64% used</p><p>Weekly 31% used</p>"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@dataclass
class Rig:
    chain: FetchStrategyChain
    bridge: ScrapeBridge
    calls: list[str]
    events: list[BaseModel] = field(default_factory=list)

    def event_types(self) -> list[type]:
        return [type(e) for e in self.events]

    def updates(self) -> list[UsageSnapshot]:
        return [e.snapshot for e in self.events if isinstance(e, UsageDataUpdated)]


def _gated_transport(
    gate: asyncio.Event, calls: list[str], status: int = 200
) -> httpx.MockTransport:
    """Usage responses are held until *gate* is set."""

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        await gate.wait()
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json=usage_payload())

    return httpx.MockTransport(handler)


@pytest.fixture
async def build(
    store: UsageStore, clock: FakeClock
) -> AsyncGenerator[Callable[..., Awaitable[Rig]], None]:
    clients: list[QuotaApiClient] = []

    async def factory(
        responses: dict[str, Any] | None = None,
        *,
        renderer: FakeRenderer | None = None,
        deadline: float = 0.05,
        transport: httpx.AsyncBaseTransport | None = None,
        strategies: list[Strategy] | None = None,
    ) -> Rig:
        calls: list[str] = []
        client = QuotaApiClient(
            "https://claude.test",
            {"sessionKey": "sk-ant-test"},
            transport=transport or mock_transport(responses or {}, calls),
        )
        await client.connect()
        clients.append(client)

        bridge = ScrapeBridge(renderer, deadline_seconds=deadline)
        bus = EventBus()
        direct = DirectApiStrategy(client)
        chain = FetchStrategyChain(
            store,
            strategies
            or [direct, IdentityDiscoveryStrategy(client, store, direct), PassiveScrapeStrategy(bridge)],
            bridge=bridge,
            bus=bus,
            clock=clock,
        )
        rig = Rig(chain=chain, bridge=bridge, calls=calls)
        for event_type in (FetchStarted, UsageDataUpdated, FetchDeferred):
            bus.subscribe(event_type, rig.events.append)
        return rig

    yield factory
    for client in clients:
        await client.close()


async def _seed(store: UsageStore) -> UsageSnapshot:
    return await store.write_usage(
        UsageSnapshot(
            session_percentage=61,
            weekly_all_models_percentage=20,
            fetched_at=T0 - 60_000,
            source=FetchSource.API,
        )
    )


# ---------------------------------------------------------------------------
# Success
# ---------------------------------------------------------------------------


async def test_direct_success_writes_snapshot(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, clock: FakeClock
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: usage_payload()})

    result = await rig.chain.acquire_usage()

    assert isinstance(result, UsageSnapshot)
    assert result.source == FetchSource.API
    assert result.fetched_at == clock.now
    assert result.session_percentage == 42
    assert await store.get_usage() == result
    assert rig.event_types() == [FetchStarted, UsageDataUpdated]
    assert rig.chain.in_flight is False


async def test_discovery_then_success(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    rig = await build({"/api/organizations": [{"uuid": ORG_ID}], USAGE: usage_payload()})
    result = await rig.chain.acquire_usage()
    assert isinstance(result, UsageSnapshot)
    assert result.source == FetchSource.API
    assert (await store.get_organization()).discovered is True


# ---------------------------------------------------------------------------
# Throttle
# ---------------------------------------------------------------------------


async def test_two_calls_within_interval_make_one_attempt(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, clock: FakeClock
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: usage_payload()})

    first = await rig.chain.acquire_usage()
    clock.advance(10_000)
    second = await rig.chain.acquire_usage()

    assert rig.calls.count(USAGE) == 1
    assert rig.chain.attempts == 1
    assert second == first

    clock.advance(20_000)
    await rig.chain.acquire_usage()
    assert rig.calls.count(USAGE) == 2


async def test_throttle_is_stamped_on_failure(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, clock: FakeClock
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: httpx.Response(503)})

    assert isinstance(await rig.chain.acquire_usage(), DeferredOutcome)
    assert await store.last_attempt_at() == clock.now
    clock.advance(1_000)
    await rig.chain.acquire_usage()
    assert rig.calls.count(USAGE) == 1


async def test_throttle_applies_after_auth_error(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, clock: FakeClock
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: httpx.Response(401)})
    await rig.chain.acquire_usage()
    clock.advance(5_000)
    again = await rig.chain.acquire_usage()
    assert rig.calls.count(USAGE) == 1
    assert again.error == UsageError.NOT_AUTHENTICATED


# ---------------------------------------------------------------------------
# In-flight sharing
# ---------------------------------------------------------------------------


async def test_manual_refresh_joins_timer_fetch(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.merge_settings({"min_fetch_interval_ms": 0})
    await store.set_org_id(ORG_ID)
    gate = asyncio.Event()
    calls: list[str] = []
    rig = await build(transport=_gated_transport(gate, calls))

    timer = asyncio.ensure_future(rig.chain.acquire_usage("timer"))
    await asyncio.sleep(0.01)
    assert rig.chain.in_flight is True

    manual = asyncio.ensure_future(rig.chain.acquire_usage("manual"))
    await asyncio.sleep(0.01)
    gate.set()
    timer_result, manual_result = await asyncio.gather(timer, manual)

    assert calls == [USAGE]
    assert len(rig.updates()) == 1
    assert rig.event_types().count(FetchStarted) == 1
    assert manual_result == timer_result
    assert rig.chain.in_flight is False


async def test_concurrent_callers_share_result(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: usage_payload()})
    results = await asyncio.gather(*(rig.chain.acquire_usage() for _ in range(5)))
    assert rig.calls.count(USAGE) == 1
    assert all(r == results[0] for r in results)


async def test_cancelled_caller_does_not_cancel_attempt(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.set_org_id(ORG_ID)
    gate = asyncio.Event()
    calls: list[str] = []
    rig = await build(transport=_gated_transport(gate, calls))

    impatient = asyncio.ensure_future(rig.chain.acquire_usage())
    await asyncio.sleep(0.01)
    impatient.cancel()
    patient = asyncio.ensure_future(rig.chain.acquire_usage())
    await asyncio.sleep(0.01)
    gate.set()

    result = await patient
    assert isinstance(result, UsageSnapshot)
    assert calls == [USAGE]


# ---------------------------------------------------------------------------
# Error records
# ---------------------------------------------------------------------------


async def test_auth_error_keeps_last_good_data(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    seeded = await _seed(store)
    await store.set_org_id(ORG_ID)
    renderer = FakeRenderer()
    rig = await build({USAGE: httpx.Response(401)}, renderer=renderer)

    result = await rig.chain.acquire_usage()

    assert isinstance(result, UsageSnapshot)
    assert result.error == UsageError.NOT_AUTHENTICATED
    assert result.source == FetchSource.NONE
    assert result.session_percentage == seeded.session_percentage
    assert result.fetched_at == seeded.fetched_at
    assert renderer.requests == 0
    assert rig.updates()[-1].error == UsageError.NOT_AUTHENTICATED


async def test_needs_setup_when_org_unresolvable(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    rig = await build({})
    result = await rig.chain.acquire_usage()
    assert isinstance(result, UsageSnapshot)
    assert result.error == UsageError.NEEDS_SETUP
    assert (await store.get_usage()).error == UsageError.NEEDS_SETUP


async def test_transient_exhaustion_defers_without_writing(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    seeded = await _seed(store)
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: httpx.Response(500)})

    outcome = await rig.chain.acquire_usage()

    assert isinstance(outcome, DeferredOutcome)
    assert outcome.snapshot == seeded
    assert [f.status for f in outcome.failures] == [
        StrategyStatus.TRANSIENT_ERROR,
        StrategyStatus.UNAVAILABLE,
        StrategyStatus.UNAVAILABLE,
    ]
    assert await store.get_usage() == seeded
    assert rig.event_types() == [FetchStarted, FetchDeferred]


async def test_unparseable_api_payload_falls_through(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: {"limits": []}})
    outcome = await rig.chain.acquire_usage()
    assert isinstance(outcome, DeferredOutcome)
    assert outcome.failures[0].status == StrategyStatus.TRANSIENT_ERROR
    assert outcome.failures[0].strategy == "direct_api"


# ---------------------------------------------------------------------------
# Scrape fallback
# ---------------------------------------------------------------------------


async def test_scrape_fallback_after_api_failure(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.set_org_id(ORG_ID)
    rig: Rig
    renderer = FakeRenderer(
        reply=lambda: asyncio.ensure_future(rig.chain.accept_scraped({"html": SCRAPED_PAGE}))
    )
    rig = await build({USAGE: httpx.Response(502)}, renderer=renderer, deadline=1)

    result = await rig.chain.acquire_usage()

    assert isinstance(result, UsageSnapshot)
    assert result.source == FetchSource.SCRAPE
    assert (result.session_percentage, result.weekly_all_models_percentage) == (64, 31)
    assert len(rig.updates()) == 1


async def test_scrape_deadline_releases_in_flight(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, clock: FakeClock
) -> None:
    await store.set_org_id(ORG_ID)
    renderer = FakeRenderer()
    rig = await build({USAGE: httpx.Response(502)}, renderer=renderer, deadline=0.05)

    outcome = await rig.chain.acquire_usage()
    assert isinstance(outcome, DeferredOutcome)
    assert outcome.failures[-1].strategy == "passive_scrape"
    assert rig.chain.in_flight is False

    clock.advance(30_000)
    await rig.chain.acquire_usage()
    assert rig.chain.attempts == 2
    assert renderer.requests == 2


async def test_signed_out_scrape_is_auth_error(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    rig: Rig
    renderer = FakeRenderer(reply=lambda: rig.bridge.deliver({"error": "not_authenticated"}))
    rig = await build({}, renderer=renderer, deadline=1)
    result = await rig.chain.acquire_usage()
    assert isinstance(result, UsageSnapshot)
    assert result.error == UsageError.NOT_AUTHENTICATED


# ---------------------------------------------------------------------------
# Unsolicited scrape payloads
# ---------------------------------------------------------------------------


async def test_unsolicited_scrape_is_written(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, clock: FakeClock
) -> None:
    rig = await build({})
    written = await rig.chain.accept_scraped(SCRAPED_PAGE)
    assert written is not None
    assert written.source == FetchSource.SCRAPE
    assert written.fetched_at == clock.now
    assert await store.get_usage() == written
    assert await store.last_attempt_at() is None
    assert rig.event_types() == [UsageDataUpdated]


async def test_unsolicited_garbage_is_ignored(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    seeded = await _seed(store)
    rig = await build({})
    assert await rig.chain.accept_scraped({"nonsense": True}) is None
    assert await store.get_usage() == seeded
    assert rig.events == []
    assert rig.chain.in_flight is False


async def test_scrape_queued_behind_api_commit_is_dropped(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.set_org_id(ORG_ID)
    gate = asyncio.Event()
    calls: list[str] = []
    rig = await build(transport=_gated_transport(gate, calls))

    attempt = asyncio.ensure_future(rig.chain.acquire_usage())
    await asyncio.sleep(0.01)
    pushed = asyncio.ensure_future(rig.chain.accept_scraped(SCRAPED_PAGE))
    await asyncio.sleep(0.01)
    assert not pushed.done()

    gate.set()
    _, written = await asyncio.gather(attempt, pushed)
    assert written is None
    assert [s.source for s in rig.updates()] == [FetchSource.API]
    assert (await store.get_usage()).source == FetchSource.API


async def test_scrape_queued_behind_deferred_attempt_is_written(
    build: Callable[..., Awaitable[Rig]], store: UsageStore
) -> None:
    await store.set_org_id(ORG_ID)
    gate = asyncio.Event()
    calls: list[str] = []
    rig = await build(transport=_gated_transport(gate, calls, status=503))

    attempt = asyncio.ensure_future(rig.chain.acquire_usage())
    await asyncio.sleep(0.01)
    pushed = asyncio.ensure_future(rig.chain.accept_scraped(SCRAPED_PAGE))
    await asyncio.sleep(0.01)
    assert not pushed.done()

    gate.set()
    outcome, written = await asyncio.gather(attempt, pushed)
    assert isinstance(outcome, DeferredOutcome)
    assert written is not None
    assert written.source == FetchSource.SCRAPE
    assert (await store.get_usage()).source == FetchSource.SCRAPE


@pytest.mark.parametrize("payload", [{"nonsense": True}, SCRAPED_PAGE])
async def test_refresh_during_scrape_ingest_still_attempts(
    build: Callable[..., Awaitable[Rig]], store: UsageStore, payload: Any
) -> None:
    await store.set_org_id(ORG_ID)
    rig = await build({USAGE: usage_payload()})

    pushed = asyncio.ensure_future(rig.chain.accept_scraped(payload))
    manual = asyncio.ensure_future(rig.chain.acquire_usage("manual"))
    _, result = await asyncio.gather(pushed, manual)

    assert isinstance(result, UsageSnapshot)
    assert result.source == FetchSource.API
    assert rig.calls.count(USAGE) == 1
    assert rig.chain.attempts == 1
    assert (await store.get_usage()).source == FetchSource.API
    assert rig.chain.in_flight is False


# ---------------------------------------------------------------------------
# Unexpected failures
# ---------------------------------------------------------------------------


class ExplodingStrategy(Strategy):
    name = "exploding"

    async def attempt(self, ctx: AttemptContext) -> StrategyResult:
        raise RuntimeError("bug")


async def test_unexpected_error_propagates_and_releases(
    build: Callable[..., Awaitable[Rig]],
) -> None:
    rig = await build({}, strategies=[ExplodingStrategy()])
    with pytest.raises(RuntimeError, match="bug"):
        await rig.chain.acquire_usage()
    assert rig.chain.in_flight is False
    assert rig.event_types() == [FetchStarted, FetchDeferred]


class StaticStrategy(Strategy):
    name = "static"

    def __init__(self, result: StrategyResult) -> None:
        self.result = result

    async def attempt(self, ctx: AttemptContext) -> StrategyResult:
        return self.result


@pytest.mark.parametrize(
    "result",
    [
        StrategyResult.success("static", usage_payload(), PayloadKind.API),
        StrategyResult.auth_required("static", "HTTP 401"),
    ],
)
async def test_terminal_result_stops_chain(
    build: Callable[..., Awaitable[Rig]], result: StrategyResult
) -> None:
    rig = await build({}, strategies=[StaticStrategy(result), ExplodingStrategy()])
    written = await rig.chain.acquire_usage()
    assert isinstance(written, UsageSnapshot)
    assert rig.event_types() == [FetchStarted, UsageDataUpdated]
