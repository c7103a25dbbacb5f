from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import httpx
import structlog

from quotaring.alerting.sinks import AlertSink, LogAlertSink
from quotaring.alerting.thresholds import ThresholdAlerter
from quotaring.core.config import MonitorConfig, Settings
from quotaring.core.constants import FIRST_TICK_DELAY_SECONDS, AnimationState
from quotaring.core.exceptions import ConfigurationError
from quotaring.core.types import UsageSnapshot, UsageView, now_ms
from quotaring.events.bus import EventBus
from quotaring.events.models import FetchDeferred, FetchStarted, UsageDataUpdated
from quotaring.fetch.api_client import QuotaApiClient
from quotaring.fetch.chain import AcquireResult, FetchStrategyChain
from quotaring.fetch.normalizer import ResponseNormalizer
from quotaring.fetch.scrape_bridge import ContentRenderer, ScrapeBridge
from quotaring.fetch.strategies import DirectApiStrategy, IdentityDiscoveryStrategy, PassiveScrapeStrategy
from quotaring.render.animation import AnimationController
from quotaring.render.icon import IconRenderer
from quotaring.render.sinks import IconSink, MemoryIconSink, PngDirectorySink
from quotaring.scheduling.scheduler import RefreshScheduler
from quotaring.storage.base import InMemoryStore, JsonFileStore
from quotaring.storage.usage_store import UsageStore
from quotaring.utils.formatting import format_reset, format_time_ago

logger = structlog.get_logger(__name__)


class UsageMonitor:
    """Top-level object wiring acquisition, storage, rendering and alerts.

    Build one from configuration and use it as an async context manager::

        async with UsageMonitor.from_config(MonitorConfig.from_env()) as monitor:
            await monitor.request_refresh()
            view = await monitor.get_usage_data()

    Entering the context calls :meth:`start`, which connects the HTTP
    client, persists default settings on first run, draws the stored
    snapshot and starts the refresh schedule.
    """

    def __init__(
        self,
        *,
        config: MonitorConfig,
        store: UsageStore,
        client: QuotaApiClient,
        sink: IconSink,
        renderer: ContentRenderer | None = None,
        alert_sinks: Iterable[AlertSink] | None = None,
        clock: Callable[[], int] = now_ms,
        first_tick_delay: float = FIRST_TICK_DELAY_SECONDS,
    ) -> None:
        self._config = config
        self._store = store
        self._client = client
        self._clock = clock
        self._bus = EventBus()
        self._bridge = ScrapeBridge(renderer, deadline_seconds=config.scrape_deadline_seconds)

        direct = DirectApiStrategy(client)
        self._chain = FetchStrategyChain(
            store,
            [
                direct,
                IdentityDiscoveryStrategy(client, store, direct),
                PassiveScrapeStrategy(self._bridge),
            ],
            normalizer=ResponseNormalizer(),
            bridge=self._bridge,
            bus=self._bus,
            clock=clock,
        )

        self._animation = AnimationController(IconRenderer(), sink)
        self._alerter = ThresholdAlerter()
        for alert_sink in alert_sinks if alert_sinks is not None else (LogAlertSink(),):
            self._alerter.add_sink(alert_sink)

        self._scheduler = RefreshScheduler(
            self._scheduled_refresh, self._interval_seconds, first_delay=first_tick_delay
        )
        self._started = False

    # ------------------------------------------------------------------ #
    # Factory
    # ------------------------------------------------------------------ #

    @classmethod
    def from_config(
        cls,
        config: MonitorConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> UsageMonitor:
        """Build a monitor from *config* (``MonitorConfig.from_env()`` when omitted).

        State goes to ``config.state_path`` when set, otherwise memory;
        icons go to ``config.icon_dir`` when set, otherwise memory.  Extra
        keyword arguments are passed to the constructor.
        """
        config = config or MonitorConfig.from_env()
        backend = JsonFileStore(config.state_path) if config.state_path else InMemoryStore()
        sink: IconSink = PngDirectorySink(config.icon_dir) if config.icon_dir else MemoryIconSink(keep=1)
        client = QuotaApiClient(
            config.base_url,
            config.cookie_jar(),
            timeout=config.timeout,
            transport=transport,
        )
        kwargs.setdefault("sink", sink)
        return cls(config=config, store=UsageStore(backend), client=client, **kwargs)

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def store(self) -> UsageStore:
        return self._store

    @property
    def client(self) -> QuotaApiClient:
        return self._client

    @property
    def bus(self) -> EventBus:
        """Subscribe here for :class:`UsageDataUpdated` and fetch lifecycle events."""
        return self._bus

    @property
    def chain(self) -> FetchStrategyChain:
        return self._chain

    @property
    def bridge(self) -> ScrapeBridge:
        return self._bridge

    @property
    def animation(self) -> AnimationController:
        return self._animation

    @property
    def alerter(self) -> ThresholdAlerter:
        return self._alerter

    @property
    def scheduler(self) -> RefreshScheduler:
        return self._scheduler

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, *, schedule: bool = True) -> None:
        if self._started:
            return
        await self._client.connect()

        settings = await self._store.ensure_settings()
        self._apply_settings(settings)

        if self._config.org_id and not (await self._store.get_organization()).is_known:
            await self._store.set_org_id(self._config.org_id, discovered=False)

        self._bus.subscribe(FetchStarted, self._animation.on_fetch_started)
        self._bus.subscribe(UsageDataUpdated, self._animation.on_usage_updated)
        self._bus.subscribe(FetchDeferred, self._animation.on_fetch_deferred)
        self._bus.subscribe(UsageDataUpdated, self._alerter.on_usage_updated)

        self._animation.settle(await self._store.get_usage())
        if schedule:
            self._scheduler.start()
        self._started = True
        logger.info("monitor_started", scheduled=schedule, has_credentials=self._client.has_credentials)

    async def close(self) -> None:
        await self._scheduler.stop()
        if self._started:
            self._bus.unsubscribe(FetchStarted, self._animation.on_fetch_started)
            self._bus.unsubscribe(UsageDataUpdated, self._animation.on_usage_updated)
            self._bus.unsubscribe(FetchDeferred, self._animation.on_fetch_deferred)
            self._bus.unsubscribe(UsageDataUpdated, self._alerter.on_usage_updated)
            self._animation.stop()
            self._started = False
        await self._client.close()
        logger.info("monitor_closed")

    async def __aenter__(self) -> UsageMonitor:
        await self.start()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def request_refresh(self, trigger: str = "manual") -> AcquireResult:
        """Acquire usage now (subject to the throttle)."""
        return await self._chain.acquire_usage(trigger)

    async def get_usage_data(self, now: int | None = None) -> UsageView:
        """Stored snapshot plus its age and human-readable labels."""
        snapshot = await self._store.get_usage()
        now = now if now is not None else self._clock()
        return UsageView(
            snapshot=snapshot,
            error=snapshot.error,
            age_ms=snapshot.age_ms(now),
            last_updated=format_time_ago(snapshot.fetched_at, now),
            session_resets=format_reset(snapshot.session_reset_at, now),
            weekly_resets=format_reset(snapshot.weekly_all_models_reset_at, now),
        )

    async def on_usage_scraped(self, payload: Any) -> UsageSnapshot | None:
        """Entry point for payloads pushed by the content renderer."""
        return await self._chain.accept_scraped(payload)

    def attach_renderer(self, renderer: ContentRenderer) -> None:
        self._bridge.attach(renderer)

    async def set_org_id(self, org_id: str) -> None:
        """Store a user-supplied organization id.

        Raises:
            ConfigurationError: *org_id* is blank.
        """
        org_id = org_id.strip()
        if not org_id:
            raise ConfigurationError("organization id must not be empty", code="EMPTY_ORG_ID")
        await self._store.set_org_id(org_id, discovered=False)

    async def reset_organization(self) -> None:
        """Forget the organization id so the next attempt rediscovers it."""
        await self._store.reset_organization()

    async def update_settings(self, patch: dict[str, Any]) -> Settings:
        """Merge *patch* into the stored settings and apply the result.

        Raises:
            pydantic.ValidationError: The merged settings are invalid; nothing
                is stored.
        """
        settings = await self._store.merge_settings(patch)
        self._apply_settings(settings)
        if self._started and self._animation.state != AnimationState.LOADING:
            self._animation.settle(await self._store.get_usage())
        return settings

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _apply_settings(self, settings: Settings) -> None:
        self._animation.apply_settings(settings)
        self._alerter.apply_settings(settings.notifications)

    async def _scheduled_refresh(self) -> AcquireResult:
        return await self._chain.acquire_usage("timer")

    async def _interval_seconds(self) -> float:
        settings = await self._store.get_settings()
        return settings.refresh_interval_minutes * 60.0
