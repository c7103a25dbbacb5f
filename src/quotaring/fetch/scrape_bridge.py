"""Round trip to the out-of-process content renderer.

The renderer is asked to re-render the usage page; it answers later with a
``usageDataScraped`` message that the monitor routes to
:meth:`ScrapeBridge.deliver`.  :meth:`ScrapeBridge.request` pairs the two and
bounds the wait with a deadline.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

import structlog

from quotaring.core.constants import SCRAPE_DEADLINE_SECONDS
from quotaring.core.exceptions import NotConnectedError, ScrapeTimeoutError, TransientNetworkError
from quotaring.utils.async_helpers import with_timeout

logger = structlog.get_logger(__name__)


@runtime_checkable
class ContentRenderer(Protocol):
    """Anything that can be told to re-render the usage page.

    ``request_refresh`` must return right after dispatching; the scraped
    payload arrives separately.
    """

    async def request_refresh(self) -> None: ...


class ScrapeBridge:
    def __init__(
        self,
        renderer: ContentRenderer | None = None,
        *,
        deadline_seconds: float = SCRAPE_DEADLINE_SECONDS,
    ) -> None:
        self._renderer = renderer
        self._deadline = deadline_seconds
        self._pending: asyncio.Future[Any] | None = None

    def attach(self, renderer: ContentRenderer) -> None:
        self._renderer = renderer

    def detach(self) -> None:
        self._renderer = None

    @property
    def available(self) -> bool:
        return self._renderer is not None

    @property
    def waiting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    @property
    def deadline_seconds(self) -> float:
        return self._deadline

    async def request(self) -> Any:
        """Dispatch a refresh request and wait for the scraped payload.

        Raises:
            NotConnectedError: No renderer is attached.
            ScrapeTimeoutError: No answer before the deadline.
            TransientNetworkError: The renderer failed to accept the request.
        """
        renderer = self._renderer
        if renderer is None:
            raise NotConnectedError("no content renderer attached", code="NO_RENDERER")

        pending: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending = pending

        async def round_trip() -> Any:
            try:
                await renderer.request_refresh()
            except Exception as exc:  # noqa: BLE001
                raise TransientNetworkError(
                    f"content renderer rejected the refresh request: {exc}",
                    code="RENDERER_FAILED",
                ) from exc
            logger.debug("scrape_requested", deadline_seconds=self._deadline)
            return await pending

        try:
            return await with_timeout(round_trip(), self._deadline)
        except asyncio.TimeoutError as exc:
            logger.warning("scrape_deadline_expired", deadline_seconds=self._deadline)
            raise ScrapeTimeoutError(
                f"content renderer did not answer within {self._deadline:g}s",
                code="SCRAPE_TIMEOUT",
            ) from exc
        finally:
            if self._pending is pending:
                self._pending = None

    def deliver(self, payload: Any) -> bool:
        """Hand an inbound scraped payload to the waiting request.

        Returns:
            ``True`` if a request was waiting and consumed the payload,
            ``False`` if the payload is unsolicited.
        """
        if self._pending is None or self._pending.done():
            return False
        self._pending.set_result(payload)
        return True
