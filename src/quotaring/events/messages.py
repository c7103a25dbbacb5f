"""Wire messages exchanged with the UI surface and the content renderer.

Inbound messages are dicts with a ``type`` field (``getUsageData``,
``requestRefresh``, ``usageDataScraped``); every reply is
``{"success": bool, "data": ..., "error": ...}``.  Outbound
``usageDataUpdated`` messages are pushed on every snapshot write.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from quotaring.core.constants import MessageType
from quotaring.core.exceptions import QuotaRingError
from quotaring.core.types import DeferredOutcome
from quotaring.events.bus import EventBus
from quotaring.events.models import UsageDataUpdated

if TYPE_CHECKING:
    from quotaring.monitor import UsageMonitor

logger = structlog.get_logger(__name__)


class GetUsageData(BaseModel):
    type: Literal["getUsageData"]


class RequestRefresh(BaseModel):
    type: Literal["requestRefresh"]


class UsageScraped(BaseModel):
    type: Literal["usageDataScraped"]
    data: Any = None


InboundMessage = Annotated[
    Union[GetUsageData, RequestRefresh, UsageScraped],
    Field(discriminator="type"),
]
_inbound = TypeAdapter(InboundMessage)


class MessageReply(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None


def usage_updated_message(event: UsageDataUpdated) -> dict[str, Any]:
    return {"type": MessageType.USAGE_DATA_UPDATED.value, "data": event.snapshot.model_dump(mode="json")}


class MessageRouter:
    """Dispatches inbound messages to a :class:`~quotaring.monitor.UsageMonitor`."""

    def __init__(self, monitor: UsageMonitor) -> None:
        self._monitor = monitor

    async def handle(self, message: dict[str, Any]) -> dict[str, Any]:
        try:
            parsed = _inbound.validate_python(message)
        except ValidationError:
            logger.warning("unknown_message", type=message.get("type") if isinstance(message, dict) else None)
            return MessageReply(success=False, error="Unknown message type").model_dump(mode="json")

        try:
            reply = await self._dispatch(parsed)
        except QuotaRingError as exc:
            logger.error("message_failed", type=parsed.type, error=str(exc))
            reply = MessageReply(success=False, error=str(exc))
        return reply.model_dump(mode="json")

    async def _dispatch(self, message: GetUsageData | RequestRefresh | UsageScraped) -> MessageReply:
        if isinstance(message, GetUsageData):
            view = await self._monitor.get_usage_data()
            return MessageReply(success=True, data=view.model_dump(mode="json"))

        if isinstance(message, RequestRefresh):
            result = await self._monitor.request_refresh()
            view = await self._monitor.get_usage_data()
            if isinstance(result, DeferredOutcome):
                return MessageReply(success=False, data=view.model_dump(mode="json"), error=result.reason)
            return MessageReply(success=True, data=view.model_dump(mode="json"))

        snapshot = await self._monitor.on_usage_scraped(message.data)
        return MessageReply(
            success=True,
            data=snapshot.model_dump(mode="json") if snapshot is not None else None,
        )

    @staticmethod
    def forward_updates(
        bus: EventBus,
        send: Callable[[dict[str, Any]], Awaitable[Any] | Any],
    ) -> Callable[[UsageDataUpdated], Awaitable[None]]:
        """Push a ``usageDataUpdated`` message through *send* on every write.

        Returns the subscribed handler so the caller can unsubscribe it.
        """

        async def handler(event: UsageDataUpdated) -> None:
            result = send(usage_updated_message(event))
            if inspect.isawaitable(result):
                await result

        bus.subscribe(UsageDataUpdated, handler)
        return handler
