"""Color-band lookup for the icon rings."""

from __future__ import annotations

import re
from collections.abc import Sequence

from quotaring.core.config import DEFAULT_COLOR_BANDS, ColorBand
from quotaring.core.types import clamp_percentage

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")


def color_for(percentage: float, bands: Sequence[ColorBand] = DEFAULT_COLOR_BANDS) -> str:
    """Return the hex color of the band containing *percentage*.

    Bands partition ``[0, 100]``: a value belongs to the first band whose
    ``upper_bound`` it is strictly below, and the last band also owns 100.
    """
    value = clamp_percentage(percentage)
    for band in bands:
        if value < band.upper_bound:
            return band.color
    return bands[-1].color


def band_index(percentage: float, bands: Sequence[ColorBand] = DEFAULT_COLOR_BANDS) -> int:
    value = clamp_percentage(percentage)
    for index, band in enumerate(bands):
        if value < band.upper_bound:
            return index
    return len(bands) - 1


def hex_to_rgb(color: str) -> tuple[int, int, int]:
    """``"#22c55e"`` → ``(34, 197, 94)``; malformed input yields black."""
    match = _HEX_RE.match(color)
    if match is None:
        return (0, 0, 0)
    r, g, b = (int(part, 16) for part in match.groups())
    return (r, g, b)


def with_alpha(color: str, alpha: float) -> tuple[int, int, int, int]:
    r, g, b = hex_to_rgb(color)
    return (r, g, b, max(0, min(255, round(alpha * 255))))
