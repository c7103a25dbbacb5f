"""Throttled, deduplicated usage acquisition.

:class:`FetchStrategyChain` is the only writer of the usage snapshot.  At
most one acquisition runs at a time; callers arriving while one is in
flight await the same task instead of starting another.  The throttle
guard is stamped at the start of every attempt that reaches the network,
whatever its outcome.

Unsolicited scrape payloads are ingested in their own task, never in the
acquisition slot.  Ingests and attempts do not overlap: an ingest waits for
the running attempt, and a new attempt waits for the running ingest.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any, Union

import structlog

from quotaring.core.constants import FetchSource, PayloadKind, StrategyStatus, UsageError
from quotaring.core.exceptions import AuthenticationError, ParseFailureError
from quotaring.core.types import DeferredOutcome, StrategyResult, UsageSnapshot, now_ms
from quotaring.events.bus import EventBus
from quotaring.events.models import FetchDeferred, FetchStarted, UsageDataUpdated
from quotaring.fetch.normalizer import ResponseNormalizer
from quotaring.fetch.scrape_bridge import ScrapeBridge
from quotaring.fetch.strategies import AttemptContext, Strategy
from quotaring.storage.usage_store import UsageStore

logger = structlog.get_logger(__name__)

AcquireResult = Union[UsageSnapshot, DeferredOutcome]


class FetchStrategyChain:
    """Runs the ordered strategies under throttle and in-flight discipline.

    Args:
        store: Persisted usage, settings, organization and throttle guard.
        strategies: Tried in order until one is terminal (success or auth).
        normalizer: Converts successful payloads to :class:`UsageSnapshot`.
        bridge: Receives scrape payloads; unsolicited ones are ingested here.
        bus: Receives :class:`FetchStarted`, :class:`UsageDataUpdated` and
            :class:`FetchDeferred`.
        clock: Epoch-millisecond clock (tests inject a fake one).
    """

    def __init__(
        self,
        store: UsageStore,
        strategies: Sequence[Strategy],
        *,
        normalizer: ResponseNormalizer | None = None,
        bridge: ScrapeBridge | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._strategies = tuple(strategies)
        self._normalizer = normalizer or ResponseNormalizer()
        self._bridge = bridge
        self._bus = bus or EventBus()
        self._clock = clock
        self._inflight: asyncio.Task[AcquireResult] | None = None
        self._ingest: asyncio.Task[UsageSnapshot | None] | None = None
        self._api_commits = 0
        self.attempts = 0

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    @property
    def strategies(self) -> tuple[Strategy, ...]:
        return self._strategies

    # ------------------------------------------------------------------ #
    # Acquisition
    # ------------------------------------------------------------------ #

    async def acquire_usage(self, trigger: str = "manual") -> AcquireResult:
        """Return fresh usage, the cached snapshot when throttled, or a deferral.

        Concurrent callers share one attempt and receive the same result.
        A caller arriving during a scrape ingest waits for it, then attempts.
        """
        await self._settle(lambda: self._ingest)
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run(trigger))
        else:
            logger.debug("fetch_joined", trigger=trigger)
        return await asyncio.shield(self._inflight)

    async def _run(self, trigger: str) -> AcquireResult:
        try:
            settings = await self._store.get_settings()
            now = self._clock()
            remaining = await self._store.throttle_remaining_ms(settings.min_fetch_interval_ms, now)
            if remaining > 0:
                logger.debug("fetch_throttled", trigger=trigger, remaining_ms=remaining)
                return await self._store.get_usage()

            await self._store.mark_attempt(now)
            self.attempts += 1
            logger.info("fetch_started", trigger=trigger)
            await self._bus.publish(FetchStarted(trigger=trigger))
            try:
                return await self._run_strategies()
            except Exception as exc:
                logger.error("fetch_failed", trigger=trigger, error=str(exc), exc_info=True)
                await self._defer(f"internal_error: {exc}", [])
                raise
        finally:
            self._inflight = None

    async def _run_strategies(self) -> AcquireResult:
        organization = await self._store.get_organization()
        ctx = AttemptContext(org_id=organization.org_id)
        failures: list[StrategyResult] = []

        for strategy in self._strategies:
            result = await strategy.attempt(ctx)
            logger.debug(
                "strategy_result",
                strategy=result.strategy,
                status=result.status,
                detail=result.detail,
            )
            if not result.is_terminal:
                failures.append(result)
                continue
            if result.status == StrategyStatus.AUTH_REQUIRED:
                return await self._write_error(UsageError.NOT_AUTHENTICATED)
            try:
                snapshot = self._normalizer.normalize(
                    result.payload, result.kind or PayloadKind.API, now=self._clock()
                )
            except AuthenticationError:
                return await self._write_error(UsageError.NOT_AUTHENTICATED)
            except ParseFailureError as exc:
                logger.warning("payload_unparseable", strategy=result.strategy, error=str(exc))
                failures.append(StrategyResult.transient(result.strategy, str(exc)))
                continue
            return await self._commit(snapshot)

        if not ctx.org_id:
            logger.warning("fetch_needs_setup", failures=len(failures))
            return await self._write_error(UsageError.NEEDS_SETUP)

        logger.warning(
            "fetch_exhausted",
            failures=[f"{f.strategy}:{f.status}" for f in failures],
        )
        return await self._defer("all_strategies_failed", failures)

    # ------------------------------------------------------------------ #
    # Unsolicited scrape payloads
    # ------------------------------------------------------------------ #

    async def accept_scraped(self, payload: Any) -> UsageSnapshot | None:
        """Handle a scrape payload pushed by the content renderer.

        If an attempt is waiting on the renderer the payload is handed to
        it.  Otherwise it is normalized and written once any running attempt
        or ingest has settled.  A payload that queued behind an attempt which
        committed API data is dropped, since the API reading is fresher.
        Returns the written snapshot, or ``None`` when the payload was
        consumed, superseded or could not be parsed.
        """
        if self._bridge is not None and self._bridge.deliver(payload):
            logger.debug("scrape_delivered_to_attempt")
            return None

        api_commits = self._api_commits
        while self._inflight is not None or self._ingest is not None:
            await self._settle(lambda: self._inflight)
            await self._settle(lambda: self._ingest)
        if self._api_commits != api_commits:
            logger.info("scrape_superseded")
            return None

        task = asyncio.ensure_future(self._ingest_scraped(payload))
        self._ingest = task
        return await asyncio.shield(task)

    async def _ingest_scraped(self, payload: Any) -> UsageSnapshot | None:
        try:
            try:
                snapshot = self._normalizer.normalize(payload, PayloadKind.SCRAPE, now=self._clock())
            except AuthenticationError:
                return await self._write_error(UsageError.NOT_AUTHENTICATED)
            except ParseFailureError as exc:
                logger.info("scrape_ignored", error=str(exc))
                return None
            return await self._commit(snapshot)
        finally:
            self._ingest = None

    @staticmethod
    async def _settle(current: Callable[[], asyncio.Task[Any] | None]) -> None:
        """Wait until the task slot read by *current* is empty."""
        task = current()
        while task is not None:
            try:
                await asyncio.shield(task)
            except Exception:  # noqa: BLE001
                pass  # surfaced to the caller that owns the task
            task = current()

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def _commit(self, snapshot: UsageSnapshot) -> UsageSnapshot:
        previous = await self._store.get_usage()
        written = await self._store.write_usage(snapshot)
        if written.source == FetchSource.API:
            self._api_commits += 1
        logger.info(
            "usage_updated",
            source=written.source,
            session=written.session_percentage,
            weekly=written.weekly_all_models_percentage,
        )
        await self._bus.publish(UsageDataUpdated(snapshot=written, previous=previous))
        return written

    async def _write_error(self, error: UsageError) -> UsageSnapshot:
        previous = await self._store.get_usage()
        written = await self._store.write_usage(previous.with_error(error))
        logger.warning("usage_error_recorded", error=error)
        await self._bus.publish(UsageDataUpdated(snapshot=written, previous=previous))
        return written

    async def _defer(self, reason: str, failures: list[StrategyResult]) -> DeferredOutcome:
        outcome = DeferredOutcome(
            reason=reason, snapshot=await self._store.get_usage(), failures=failures
        )
        await self._bus.publish(FetchDeferred(outcome=outcome))
        return outcome
