"""Tests for alerting/: threshold crossings and sinks."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from quotaring.alerting.models import AlertSeverity, UsageAlert
from quotaring.alerting.sinks import AlertSink, CallbackAlertSink, LogAlertSink, WebhookAlertSink
from quotaring.alerting.thresholds import ThresholdAlerter
from quotaring.core.config import NotificationSettings
from quotaring.core.constants import FetchSource, UsageError
from quotaring.core.types import ModelQuota, UsageSnapshot
from quotaring.events.models import UsageDataUpdated

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _snapshot(
    session: float = 0,
    weekly: float = 0,
    model: ModelQuota | None = None,
    error: UsageError = UsageError.NONE,
) -> UsageSnapshot:
    return UsageSnapshot(
        session_percentage=session,
        weekly_all_models_percentage=weekly,
        weekly_model_specific=model,
        fetched_at=1_000,
        source=FetchSource.API if error == UsageError.NONE else FetchSource.NONE,
        error=error,
    )


def _make_alert(threshold: int = 90) -> UsageAlert:
    return UsageAlert(quota="session", threshold=threshold, percentage=92, severity=AlertSeverity.WARNING)


class RecordingSink(AlertSink):
    """Sink that records all alerts for testing."""

    def __init__(self) -> None:
        self.alerts: list[UsageAlert] = []

    async def send(self, alert: UsageAlert) -> bool:
        self.alerts.append(alert)
        return True


class BrokenSink(AlertSink):
    """Sink that always raises."""

    async def send(self, alert: UsageAlert) -> bool:
        raise RuntimeError("sink exploded")


@pytest.fixture
def recorder() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def alerter(recorder: RecordingSink) -> ThresholdAlerter:
    return ThresholdAlerter([75, 90, 100]).add_sink(recorder)


# ---------------------------------------------------------------------------
# ThresholdAlerter
# ---------------------------------------------------------------------------


async def test_below_all_thresholds_is_silent(alerter: ThresholdAlerter, recorder: RecordingSink) -> None:
    assert await alerter.evaluate(_snapshot(session=50, weekly=10)) == []
    assert recorder.alerts == []


async def test_crossing_fires_once(alerter: ThresholdAlerter, recorder: RecordingSink) -> None:
    fired = await alerter.evaluate(_snapshot(session=80))
    assert [(a.quota, a.threshold, a.severity) for a in fired] == [("session", 75, AlertSeverity.INFO)]

    assert await alerter.evaluate(_snapshot(session=85)) == []
    assert len(recorder.alerts) == 1


async def test_jump_reports_highest_threshold(alerter: ThresholdAlerter) -> None:
    fired = await alerter.evaluate(_snapshot(weekly=100))
    assert len(fired) == 1
    assert fired[0].quota == "weekly"
    assert fired[0].threshold == 100
    assert fired[0].severity == AlertSeverity.CRITICAL
    # Lower thresholds were consumed by the jump.
    assert await alerter.evaluate(_snapshot(weekly=95)) == []


async def test_rearms_after_reset(alerter: ThresholdAlerter) -> None:
    await alerter.evaluate(_snapshot(session=92))
    await alerter.evaluate(_snapshot(session=5))
    fired = await alerter.evaluate(_snapshot(session=91))
    assert [a.threshold for a in fired] == [90]
    assert fired[0].severity == AlertSeverity.WARNING


async def test_partial_drop_rearms_only_higher(alerter: ThresholdAlerter) -> None:
    await alerter.evaluate(_snapshot(session=95))
    await alerter.evaluate(_snapshot(session=80))
    assert await alerter.evaluate(_snapshot(session=85)) == []
    assert [a.threshold for a in await alerter.evaluate(_snapshot(session=90))] == [90]


async def test_quotas_tracked_independently(alerter: ThresholdAlerter) -> None:
    model = ModelQuota(model_name="Opus", percentage=77)
    fired = await alerter.evaluate(_snapshot(session=76, weekly=91, model=model))
    assert sorted((a.quota, a.threshold) for a in fired) == [
        ("session", 75),
        ("weekly", 90),
        ("weekly_opus", 75),
    ]


async def test_error_records_are_ignored(alerter: ThresholdAlerter) -> None:
    snapshot = _snapshot(session=99, error=UsageError.NOT_AUTHENTICATED)
    assert await alerter.evaluate(snapshot) == []
    assert await alerter.evaluate(UsageSnapshot()) == []


async def test_disabled_tracks_without_sending(alerter: ThresholdAlerter, recorder: RecordingSink) -> None:
    alerter.apply_settings(NotificationSettings(enabled=False))
    assert await alerter.evaluate(_snapshot(session=80)) == []
    alerter.apply_settings(NotificationSettings(enabled=True))
    assert await alerter.evaluate(_snapshot(session=80)) == []
    assert recorder.alerts == []


async def test_apply_settings_thresholds(alerter: ThresholdAlerter) -> None:
    alerter.apply_settings(NotificationSettings(thresholds=[50]))
    assert alerter.thresholds == [50]
    assert [a.threshold for a in await alerter.evaluate(_snapshot(session=60))] == [50]


async def test_on_usage_updated(alerter: ThresholdAlerter, recorder: RecordingSink) -> None:
    await alerter.on_usage_updated(UsageDataUpdated(snapshot=_snapshot(session=100)))
    assert recorder.alerts[0].threshold == 100


async def test_broken_sink_does_not_block_others(recorder: RecordingSink) -> None:
    alerter = ThresholdAlerter([50]).add_sink(BrokenSink()).add_sink(recorder)
    await alerter.evaluate(_snapshot(session=60))
    assert len(recorder.alerts) == 1


# ---------------------------------------------------------------------------
# UsageAlert
# ---------------------------------------------------------------------------


def test_alert_text() -> None:
    alert = UsageAlert(quota="weekly_opus", threshold=100, percentage=100)
    assert alert.title == "Weekly Opus usage at 100%"
    assert alert.message == "weekly_opus quota exhausted"
    assert _make_alert(75).message == "session quota passed 75%"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


async def test_log_sink() -> None:
    assert await LogAlertSink().send(_make_alert()) is True


async def test_callback_sink_sync_and_async() -> None:
    seen: list[UsageAlert] = []
    assert await CallbackAlertSink(seen.append).send(_make_alert()) is True
    assert len(seen) == 1

    async_callback = AsyncMock(return_value=False)
    assert await CallbackAlertSink(async_callback).send(_make_alert()) is False
    async_callback.assert_awaited_once()


async def test_webhook_sink_posts_json() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    sink = WebhookAlertSink(
        "https://hooks.test/alerts",
        {"X-Token": "t"},
        transport=httpx.MockTransport(handler),
    )
    assert await sink.send(_make_alert()) is True
    body = json.loads(requests[0].content)
    assert body["quota"] == "session"
    assert body["threshold"] == 90
    assert body["title"] == "Session usage at 92%"
    assert requests[0].headers["x-token"] == "t"


async def test_webhook_sink_failure_status() -> None:
    sink = WebhookAlertSink(
        "https://hooks.test/alerts",
        transport=httpx.MockTransport(lambda r: httpx.Response(500)),
    )
    assert await sink.send(_make_alert()) is False


async def test_webhook_sink_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down")

    sink = WebhookAlertSink("https://hooks.test/alerts", transport=httpx.MockTransport(handler))
    assert await sink.send(_make_alert()) is False
