from __future__ import annotations

import math
import time
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from quotaring.core.constants import FetchSource, PayloadKind, StrategyStatus, UsageError


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def clamp_percentage(value: float) -> float:
    """Clamp *value* into ``[0, 100]``; NaN collapses to 0."""
    value = float(value)
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


class ModelQuota(BaseModel):
    """Weekly quota scoped to a single model tier (e.g. Opus)."""

    model_name: str
    percentage: float = 0.0
    reset_at: int | None = None

    @field_validator("percentage")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_percentage(value)


class UsageSnapshot(BaseModel):
    """Canonical usage report.

    Percentages are clamped on construction, so every instance that reaches
    the store is already within ``[0, 100]``.  A record carrying an error
    keeps the percentages of the last good report instead of zeroing them.

    Timestamps (``*_reset_at``, ``fetched_at``) are epoch milliseconds.
    """

    session_percentage: float = 0.0
    session_reset_at: int | None = None
    weekly_all_models_percentage: float = 0.0
    weekly_all_models_reset_at: int | None = None
    weekly_model_specific: ModelQuota | None = None
    fetched_at: int | None = None
    source: FetchSource = FetchSource.NONE
    error: UsageError = UsageError.NONE

    @field_validator("session_percentage", "weekly_all_models_percentage")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_percentage(value)

    @model_validator(mode="after")
    def _error_excludes_source(self) -> UsageSnapshot:
        if self.error != UsageError.NONE and self.source != FetchSource.NONE:
            raise ValueError("an error record cannot carry a successful source")
        return self

    @property
    def max_percentage(self) -> float:
        """Highest of the two ring values (session, weekly all-models)."""
        return max(self.session_percentage, self.weekly_all_models_percentage)

    @property
    def has_data(self) -> bool:
        return self.fetched_at is not None

    def age_ms(self, now: int | None = None) -> int | None:
        """Milliseconds since the last successful fetch, or ``None`` if never fetched."""
        if self.fetched_at is None:
            return None
        return max(0, (now if now is not None else now_ms()) - self.fetched_at)

    def with_error(self, error: UsageError) -> UsageSnapshot:
        """Return a stale-but-visible copy tagged with *error*."""
        return self.model_copy(update={"error": error, "source": FetchSource.NONE})


class OrganizationIdentity(BaseModel):
    """Identifier used to address the per-organization usage endpoint."""

    org_id: str | None = None
    discovered: bool = False
    """``True`` when found by identity discovery, ``False`` when user-supplied."""
    updated_at: int | None = None

    @property
    def is_known(self) -> bool:
        return bool(self.org_id)


class StrategyResult(BaseModel):
    """Tagged outcome of a single acquisition strategy."""

    status: StrategyStatus
    strategy: str
    payload: Any = None
    kind: PayloadKind | None = None
    detail: str | None = None

    @classmethod
    def success(cls, strategy: str, payload: Any, kind: PayloadKind) -> StrategyResult:
        return cls(status=StrategyStatus.SUCCESS, strategy=strategy, payload=payload, kind=kind)

    @classmethod
    def auth_required(cls, strategy: str, detail: str | None = None) -> StrategyResult:
        return cls(status=StrategyStatus.AUTH_REQUIRED, strategy=strategy, detail=detail)

    @classmethod
    def unavailable(cls, strategy: str, detail: str | None = None) -> StrategyResult:
        return cls(status=StrategyStatus.UNAVAILABLE, strategy=strategy, detail=detail)

    @classmethod
    def transient(cls, strategy: str, detail: str | None = None) -> StrategyResult:
        return cls(status=StrategyStatus.TRANSIENT_ERROR, strategy=strategy, detail=detail)

    @property
    def is_terminal(self) -> bool:
        """Success and auth failures stop the chain; everything else advances it."""
        return self.status in (StrategyStatus.SUCCESS, StrategyStatus.AUTH_REQUIRED)


class DeferredOutcome(BaseModel):
    """Returned when every strategy failed transiently.

    The stored snapshot was left untouched; ``snapshot`` is that stale record.
    """

    reason: str
    snapshot: UsageSnapshot
    failures: list[StrategyResult] = Field(default_factory=list)


class UsageView(BaseModel):
    """What the UI surface receives for ``getUsageData``.

    Always the most recent successful snapshot plus its age, overlaid with
    the current error tag, so staleness stays observable.
    """

    snapshot: UsageSnapshot
    error: UsageError = UsageError.NONE
    age_ms: int | None = None
    last_updated: str = "--"
    session_resets: str = "--"
    weekly_resets: str = "--"
