"""Periodic refresh trigger."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from quotaring.core.constants import FIRST_TICK_DELAY_SECONDS, REFRESH_INTERVAL_MINUTES

logger = structlog.get_logger(__name__)

_FALLBACK_INTERVAL_SECONDS = REFRESH_INTERVAL_MINUTES * 60.0
_MIN_INTERVAL_SECONDS = 0.01


class RefreshScheduler:
    """Calls *trigger* shortly after start, then every refresh interval.

    The interval is re-read from *interval_provider* (seconds) after every
    tick, so settings changes apply from the next period on.  A failing tick
    is logged and the schedule continues.

    Example::

        scheduler = RefreshScheduler(chain.acquire_usage, interval_seconds)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        trigger: Callable[[], Awaitable[Any]],
        interval_provider: Callable[[], Awaitable[float]],
        *,
        first_delay: float = FIRST_TICK_DELAY_SECONDS,
    ) -> None:
        self._trigger = trigger
        self._interval_provider = interval_provider
        self._first_delay = first_delay
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="quotaring-refresh")
        logger.info("scheduler_started", first_delay=self._first_delay)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _next_delay(self) -> float:
        try:
            return max(_MIN_INTERVAL_SECONDS, float(await self._interval_provider()))
        except Exception as exc:  # noqa: BLE001
            logger.warning("refresh_interval_unavailable", error=str(exc))
            return _FALLBACK_INTERVAL_SECONDS

    async def _loop(self) -> None:
        delay = self._first_delay
        while True:
            await asyncio.sleep(delay)
            self.ticks += 1
            try:
                await self._trigger()
            except Exception as exc:  # noqa: BLE001
                logger.warning("refresh_tick_failed", tick=self.ticks, error=str(exc))
            delay = await self._next_delay()
