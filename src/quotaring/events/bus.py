"""In-process publish/subscribe for acquisition events."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

E = TypeVar("E", bound=BaseModel)
Handler = Callable[[Any], Awaitable[Any] | Any]


class EventBus:
    """Dispatches events to handlers registered for their exact type.

    Handlers may be plain functions or coroutines.  Errors from individual
    handlers are logged but never propagated, so a faulty subscriber cannot
    break the writer that published the event.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[BaseModel], list[Handler]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> None:
        """Remove a previously subscribed handler.

        Raises:
            ValueError: If the handler was not subscribed to *event_type*.
        """
        self._handlers.get(event_type, []).remove(handler)

    def handler_count(self, event_type: type[BaseModel]) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: BaseModel) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "event_handler_error",
                    event_type=type(event).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
