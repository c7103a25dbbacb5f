"""Events published on the :class:`~quotaring.events.bus.EventBus`."""

from __future__ import annotations

from pydantic import BaseModel

from quotaring.core.types import DeferredOutcome, UsageSnapshot


class FetchStarted(BaseModel):
    """An acquisition attempt passed the throttle and is about to hit the network."""

    trigger: str


class UsageDataUpdated(BaseModel):
    """A snapshot (success or error record) was written to the store."""

    snapshot: UsageSnapshot
    previous: UsageSnapshot | None = None


class FetchDeferred(BaseModel):
    """An attempt ended without writing anything; the stored snapshot is unchanged."""

    outcome: DeferredOutcome
