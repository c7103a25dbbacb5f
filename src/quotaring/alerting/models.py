"""Alert data models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from quotaring.core.types import now_ms


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class UsageAlert(BaseModel):
    """Raised once when a quota climbs across a notification threshold."""

    quota: str
    """``session``, ``weekly`` or ``weekly_<model>``."""
    threshold: int
    percentage: float
    severity: AlertSeverity = AlertSeverity.INFO
    reset_at: int | None = None
    created_at: int = Field(default_factory=now_ms)

    @property
    def title(self) -> str:
        return f"{self.quota.replace('_', ' ').title()} usage at {self.percentage:.0f}%"

    @property
    def message(self) -> str:
        if self.threshold >= 100:
            return f"{self.quota} quota exhausted"
        return f"{self.quota} quota passed {self.threshold}%"
