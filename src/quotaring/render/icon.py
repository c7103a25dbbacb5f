"""Dual concentric progress-ring icons, drawn with Pillow.

The outer ring shows the session quota and the inner ring the weekly
(all-models) quota.  Arcs start at 12 o'clock and sweep clockwise.
Drawing happens on a supersampled canvas that is downscaled once, which
keeps the thin rings at 16 px legible.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from PIL import Image, ImageDraw

from quotaring.core.config import DEFAULT_COLOR_BANDS, ColorBand
from quotaring.core.constants import ICON_SIZES, Palette
from quotaring.core.types import clamp_percentage
from quotaring.render.colors import color_for, with_alpha

SPINNER_ARC = math.pi * 0.6
_TRANSPARENT = (0, 0, 0, 0)


@dataclass(frozen=True)
class RingGeometry:
    outer_width: float
    outer_radius: float
    inner_width: float
    inner_radius: float


def ring_geometry(size: int) -> RingGeometry:
    outer_width = max(2, size // 8)
    outer_radius = size / 2 - outer_width / 2 - 1
    inner_width = max(1.5, size // 10)
    inner_radius = outer_radius - outer_width - max(1, size / 16)
    return RingGeometry(outer_width, outer_radius, inner_width, inner_radius)


def arc_angles(percentage: float, offset: float = 0.0) -> tuple[float, float]:
    """Start and end angles in degrees for Pillow's clockwise ``arc``.

    Args:
        percentage: Quota used, clamped to ``[0, 100]``.
        offset: Rotation in radians added to the 12 o'clock start.
    """
    start = -90.0 + math.degrees(offset)
    return start, start + clamp_percentage(percentage) / 100 * 360


class IconRenderer:
    """Produces RGBA icons for every requested size.

    Args:
        bands: Color bands used for both rings.
        sizes: Pixel sizes produced by :meth:`render_all`.
        supersample: Drawing scale before the final downscale.
    """

    def __init__(
        self,
        bands: Sequence[ColorBand] = DEFAULT_COLOR_BANDS,
        sizes: Iterable[int] = ICON_SIZES,
        *,
        supersample: int = 4,
    ) -> None:
        self._bands = tuple(bands)
        self._sizes = tuple(sizes)
        self._scale = max(1, supersample)

    @property
    def sizes(self) -> tuple[int, ...]:
        return self._sizes

    def set_bands(self, bands: Sequence[ColorBand]) -> None:
        self._bands = tuple(bands)

    def _stroke(
        self,
        draw: ImageDraw.ImageDraw,
        size: int,
        radius: float,
        width: float,
        start: float,
        end: float,
        fill: str | tuple[int, int, int, int],
    ) -> None:
        # Pillow strokes inward from the bounding box; center the stroke on radius.
        k = self._scale
        center = size * k / 2
        outer = (radius + width / 2) * k
        box = (center - outer, center - outer, center + outer, center + outer)
        draw.arc(box, start, end, fill=fill, width=max(1, round(width * k)))

    def draw_dual_ring(
        self,
        size: int,
        session: float,
        weekly: float,
        *,
        rotation_offset: float = 0.0,
        glow_intensity: float = 0.0,
        show_spinner: bool = False,
        spin_offset: float = 0.0,
    ) -> Image.Image:
        """Draw one icon.

        Args:
            size: Edge length in pixels.
            session: Session percentage (outer ring).
            weekly: Weekly all-models percentage (inner ring).
            rotation_offset: Radians added to the outer start angle and
                subtracted from the inner one.
            glow_intensity: ``0..1``; widens a translucent halo under the
                outer arc.  Never changes the arc extent.
            show_spinner: Draw the loading spinner instead of progress.
            spin_offset: Spinner position in radians.
        """
        geo = ring_geometry(size)
        canvas = size * self._scale
        image = Image.new("RGBA", (canvas, canvas), _TRANSPARENT)
        draw = ImageDraw.Draw(image)

        self._stroke(draw, size, geo.outer_radius, geo.outer_width, 0, 360, Palette.RING_BACKGROUND)
        self._stroke(draw, size, geo.inner_radius, geo.inner_width, 0, 360, Palette.RING_BACKGROUND)

        if show_spinner:
            start = math.degrees(spin_offset)
            end = start + math.degrees(SPINNER_ARC)
            self._stroke(draw, size, geo.outer_radius, geo.outer_width, start, end, Palette.ACCENT)
        else:
            session = clamp_percentage(session)
            weekly = clamp_percentage(weekly)
            if session > 0:
                start, end = arc_angles(session, rotation_offset)
                color = color_for(session, self._bands)
                if glow_intensity > 0:
                    glow = Image.new("RGBA", image.size, _TRANSPARENT)
                    self._stroke(
                        ImageDraw.Draw(glow),
                        size,
                        geo.outer_radius,
                        geo.outer_width * (1 + glow_intensity * 0.8),
                        start,
                        end,
                        with_alpha(color, 0.5 * glow_intensity),
                    )
                    image = Image.alpha_composite(image, glow)
                    draw = ImageDraw.Draw(image)
                self._stroke(draw, size, geo.outer_radius, geo.outer_width, start, end, color)
            if weekly > 0:
                start, end = arc_angles(weekly, -rotation_offset)
                color = color_for(weekly, self._bands)
                self._stroke(draw, size, geo.inner_radius, geo.inner_width, start, end, color)

        if self._scale == 1:
            return image
        return image.resize((size, size), Image.Resampling.LANCZOS)

    def render_all(self, session: float, weekly: float, **options: Any) -> dict[int, Image.Image]:
        """Draw the icon at every configured size (same options for each)."""
        return {
            size: self.draw_dual_ring(size, session, weekly, **options)
            for size in self._sizes
        }
