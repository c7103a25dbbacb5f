"""Human-readable labels for reset countdowns and data age."""

from __future__ import annotations

from quotaring.core.types import now_ms

_MINUTE_MS = 60_000


def format_countdown(reset_at: int | None, now: int | None = None) -> str:
    """Format the time left until *reset_at* (epoch ms), e.g. ``"4h 39min"``.

    Returns ``"--"`` when unknown and ``"Now"`` once the instant has passed.
    """
    if not reset_at:
        return "--"
    diff = reset_at - (now if now is not None else now_ms())
    if diff <= 0:
        return "Now"

    minutes = diff // _MINUTE_MS
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}min"
    return f"{minutes}min"


def format_reset(reset_at: int | None, now: int | None = None) -> str:
    if not reset_at:
        return "--"
    return f"Resets in {format_countdown(reset_at, now)}"


def format_time_ago(timestamp: int | None, now: int | None = None) -> str:
    """Format how long ago *timestamp* (epoch ms) was, e.g. ``"5 minutes ago"``."""
    if not timestamp:
        return "--"
    minutes = max(0, (now if now is not None else now_ms()) - timestamp) // _MINUTE_MS
    hours = minutes // 60

    if minutes < 1:
        return "just now"
    if minutes == 1:
        return "1 minute ago"
    if minutes < 60:
        return f"{minutes} minutes ago"
    if hours == 1:
        return "1 hour ago"
    return f"{hours} hours ago"
