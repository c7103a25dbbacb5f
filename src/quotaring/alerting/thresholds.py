"""Threshold-crossing alerts for usage snapshots."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from quotaring.alerting.models import AlertSeverity, UsageAlert
from quotaring.alerting.sinks import AlertSink
from quotaring.core.config import NotificationSettings
from quotaring.core.constants import UsageError
from quotaring.core.types import UsageSnapshot
from quotaring.events.models import UsageDataUpdated

logger = structlog.get_logger(__name__)


def _severity(threshold: int) -> AlertSeverity:
    if threshold >= 100:
        return AlertSeverity.CRITICAL
    if threshold >= 90:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


class ThresholdAlerter:
    """Fires one alert per quota each time it climbs across a threshold.

    When several thresholds are crossed at once only the highest one is
    reported.  A threshold re-arms once usage drops back below it (after a
    quota reset).  Error records are ignored so that stale percentages do
    not re-fire.

    Uses the same builder style as the rest of the alerting package::

        alerter = ThresholdAlerter([75, 90, 100]).add_sink(LogAlertSink())
    """

    def __init__(self, thresholds: Iterable[int] = (75, 90, 100), *, enabled: bool = True) -> None:
        self._thresholds = sorted(set(thresholds))
        self._enabled = enabled
        self._sinks: list[AlertSink] = []
        self._fired: dict[str, set[int]] = {}

    def add_sink(self, sink: AlertSink) -> ThresholdAlerter:
        self._sinks.append(sink)
        return self

    def apply_settings(self, settings: NotificationSettings) -> None:
        self._enabled = settings.enabled
        self._thresholds = list(settings.thresholds)

    @property
    def thresholds(self) -> list[int]:
        return list(self._thresholds)

    @staticmethod
    def quotas(snapshot: UsageSnapshot) -> list[tuple[str, float, int | None]]:
        entries = [
            ("session", snapshot.session_percentage, snapshot.session_reset_at),
            ("weekly", snapshot.weekly_all_models_percentage, snapshot.weekly_all_models_reset_at),
        ]
        model = snapshot.weekly_model_specific
        if model is not None:
            entries.append((f"weekly_{model.model_name.lower()}", model.percentage, model.reset_at))
        return entries

    async def on_usage_updated(self, event: UsageDataUpdated) -> None:
        await self.evaluate(event.snapshot)

    async def evaluate(self, snapshot: UsageSnapshot) -> list[UsageAlert]:
        """Update crossing state from *snapshot* and dispatch new alerts.

        Returns:
            Alerts fired by this call.
        """
        if snapshot.error != UsageError.NONE or not snapshot.has_data:
            return []

        fired: list[UsageAlert] = []
        for quota, percentage, reset_at in self.quotas(snapshot):
            seen = self._fired.setdefault(quota, set())
            seen.difference_update({t for t in seen if percentage < t})
            crossed = [t for t in self._thresholds if percentage >= t and t not in seen]
            if not crossed:
                continue
            seen.update(crossed)
            if not self._enabled:
                continue
            top = crossed[-1]
            fired.append(
                UsageAlert(
                    quota=quota,
                    threshold=top,
                    percentage=percentage,
                    severity=_severity(top),
                    reset_at=reset_at,
                )
            )

        for alert in fired:
            await self._dispatch(alert)
        return fired

    async def _dispatch(self, alert: UsageAlert) -> None:
        for sink in self._sinks:
            try:
                await sink.send(alert)
            except Exception as exc:  # noqa: BLE001
                logger.error("alert_sink_error", sink=type(sink).__name__, error=str(exc))
