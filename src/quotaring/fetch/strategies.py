"""Ordered acquisition strategies.

Each strategy converts whatever goes wrong into a tagged
:class:`~quotaring.core.types.StrategyResult`; only programming errors
escape as exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from quotaring.core.constants import PayloadKind
from quotaring.core.exceptions import AuthenticationError, NotConnectedError, QuotaRingError
from quotaring.core.types import StrategyResult
from quotaring.fetch.adapters import extract_org_id
from quotaring.fetch.api_client import BOOTSTRAP_PATHS, QuotaApiClient
from quotaring.fetch.scrape_bridge import ScrapeBridge
from quotaring.storage.usage_store import UsageStore

logger = structlog.get_logger(__name__)


@dataclass
class AttemptContext:
    """Mutable state shared by the strategies of one acquisition attempt."""

    org_id: str | None = None
    discovered: bool = False


class Strategy(ABC):
    name: str = ""

    @abstractmethod
    async def attempt(self, ctx: AttemptContext) -> StrategyResult: ...


class DirectApiStrategy(Strategy):
    """Per-organization usage endpoint; needs a known organization id."""

    name = "direct_api"

    def __init__(self, client: QuotaApiClient) -> None:
        self._client = client

    async def attempt(self, ctx: AttemptContext) -> StrategyResult:
        if not ctx.org_id:
            return StrategyResult.unavailable(self.name, "organization id unknown")
        try:
            payload = await self._client.fetch_usage(ctx.org_id)
        except AuthenticationError as exc:
            return StrategyResult.auth_required(self.name, str(exc))
        except QuotaRingError as exc:
            return StrategyResult.transient(self.name, str(exc))
        return StrategyResult.success(self.name, payload, PayloadKind.API)


class IdentityDiscoveryStrategy(Strategy):
    """Finds the organization id, persists it, then retries the direct API once.

    Cookie hints are checked before any request.  Bootstrap endpoints are
    then queried in order; the first response containing an id in a known
    shape wins.
    """

    name = "identity_discovery"

    def __init__(
        self,
        client: QuotaApiClient,
        store: UsageStore,
        direct: DirectApiStrategy,
    ) -> None:
        self._client = client
        self._store = store
        self._direct = direct

    async def attempt(self, ctx: AttemptContext) -> StrategyResult:
        if ctx.org_id:
            return StrategyResult.unavailable(self.name, "organization id already known")

        org_id = self._client.cookie_org_hint()
        shape = "cookie"
        saw_response = False
        if not org_id:
            for path in BOOTSTRAP_PATHS:
                try:
                    payload = await self._client.fetch_bootstrap(path)
                except AuthenticationError as exc:
                    return StrategyResult.auth_required(self.name, str(exc))
                except QuotaRingError as exc:
                    logger.debug("bootstrap_endpoint_failed", path=path, error=str(exc))
                    continue
                saw_response = True
                match = extract_org_id(payload)
                if match is not None:
                    org_id, shape = match.org_id, match.shape
                    break

        if not org_id:
            if saw_response:
                return StrategyResult.unavailable(self.name, "no organization id in bootstrap responses")
            return StrategyResult.transient(self.name, "every bootstrap endpoint failed")

        await self._store.set_org_id(org_id, discovered=True)
        ctx.org_id = org_id
        ctx.discovered = True
        logger.info("org_id_discovered", shape=shape)

        result = await self._direct.attempt(ctx)
        return result.model_copy(update={"strategy": f"{self.name}+{result.strategy}"})


class PassiveScrapeStrategy(Strategy):
    """Delegates to the content renderer and waits for its reply (deadline-bound)."""

    name = "passive_scrape"

    def __init__(self, bridge: ScrapeBridge) -> None:
        self._bridge = bridge

    async def attempt(self, ctx: AttemptContext) -> StrategyResult:
        if not self._bridge.available:
            return StrategyResult.unavailable(self.name, "no content renderer attached")
        try:
            payload = await self._bridge.request()
        except NotConnectedError as exc:
            return StrategyResult.unavailable(self.name, str(exc))
        except QuotaRingError as exc:
            return StrategyResult.transient(self.name, str(exc))
        return StrategyResult.success(self.name, payload, PayloadKind.SCRAPE)
