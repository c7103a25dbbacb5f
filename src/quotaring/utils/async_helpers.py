from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Coroutine, TypeVar

T = TypeVar("T")


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine from synchronous code (scripts, tray callbacks).

    Args:
        coro: The coroutine to run.

    Returns:
        The value returned by *coro*.

    Raises:
        RuntimeError: If called from inside a running event loop; await the
            coroutine there instead.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    coro.close()
    raise RuntimeError("run_sync() cannot be used inside a running event loop")


async def with_timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """Await *awaitable* with a deadline.

    Args:
        awaitable: Coroutine or future to wait on.  A future is cancelled
            when the deadline passes.
        seconds: Maximum number of seconds to wait.

    Raises:
        asyncio.TimeoutError: If the deadline passes first.
    """
    return await asyncio.wait_for(awaitable, timeout=seconds)
