"""Alert sinks for delivering usage alerts."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from quotaring.alerting.models import UsageAlert

logger = structlog.get_logger(__name__)


class AlertSink(ABC):
    """Base class for alert delivery sinks."""

    @abstractmethod
    async def send(self, alert: UsageAlert) -> bool:
        """Send an alert. Return ``True`` on success, ``False`` on failure."""
        ...


class LogAlertSink(AlertSink):
    """Logs alerts via structlog."""

    async def send(self, alert: UsageAlert) -> bool:
        logger.warning(
            "usage_alert",
            quota=alert.quota,
            threshold=alert.threshold,
            percentage=alert.percentage,
            severity=alert.severity.value,
        )
        return True


class CallbackAlertSink(AlertSink):
    """Hands alerts to a sync or async callable (desktop notifier, UI bridge, ...)."""

    def __init__(self, callback: Callable[[UsageAlert], Awaitable[Any] | Any]) -> None:
        self._callback = callback

    async def send(self, alert: UsageAlert) -> bool:
        result = self._callback(alert)
        if inspect.isawaitable(result):
            result = await result
        return result is not False


class WebhookAlertSink(AlertSink):
    """POSTs alerts as JSON using httpx."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._transport = transport

    async def send(self, alert: UsageAlert) -> bool:
        payload = {**alert.model_dump(mode="json"), "title": alert.title, "message": alert.message}
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(self._url, json=payload, headers=self._headers, timeout=10.0)
                return resp.status_code < 400  # noqa: PLR2004
        except httpx.HTTPError as exc:
            logger.error("webhook_sink_error", url=self._url, error=str(exc))
            return False
