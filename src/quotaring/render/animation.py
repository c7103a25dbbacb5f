"""Icon animation state machine.

``idle`` shows a static icon.  ``loading`` spins an accent arc while an
acquisition is in flight.  ``warning`` slowly counter-rotates both rings
when usage is at or above the warn threshold.  Frames are driven by a
repeating ``loop.call_later`` timer that only exists outside ``idle``.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence

import structlog
from PIL import Image

from quotaring.core.config import ColorBand, Settings
from quotaring.core.constants import ANIMATION_FPS, PULSE_SPEED, SPIN_SPEED, AnimationState, UsageError
from quotaring.core.types import UsageSnapshot
from quotaring.events.models import FetchDeferred, FetchStarted, UsageDataUpdated
from quotaring.render.icon import IconRenderer
from quotaring.render.sinks import IconSink

logger = structlog.get_logger(__name__)


class AnimationController:
    """Owns the animation state, the committed percentages and the frame timer.

    Args:
        renderer: Draws icon sets.
        sink: Receives every drawn icon set.
        warn_threshold: Percentage at which a successful fetch enters ``warning``.
        fps: Frame rate while animating.
        loop: Event loop for the frame timer (defaults to the running loop).
    """

    def __init__(
        self,
        renderer: IconRenderer,
        sink: IconSink,
        *,
        warn_threshold: float = 90,
        fps: int = ANIMATION_FPS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._renderer = renderer
        self._sink = sink
        self._warn_threshold = warn_threshold
        self._interval = 1.0 / fps
        self._loop = loop
        self._timer: asyncio.TimerHandle | None = None
        self._state = AnimationState.IDLE
        self._phase = 0.0
        self._session = 0.0
        self._weekly = 0.0
        self.frames_drawn = 0
        self.static_draws = 0

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> AnimationState:
        return self._state

    @property
    def animating(self) -> bool:
        return self._timer is not None

    @property
    def percentages(self) -> tuple[float, float]:
        """Last committed ``(session, weekly)`` percentages."""
        return self._session, self._weekly

    @property
    def warn_threshold(self) -> float:
        return self._warn_threshold

    def apply_settings(self, settings: Settings) -> None:
        self._warn_threshold = settings.warn_threshold
        self.set_bands(settings.color_bands)

    def set_bands(self, bands: Sequence[ColorBand]) -> None:
        self._renderer.set_bands(bands)

    # ------------------------------------------------------------------ #
    # Event handlers
    # ------------------------------------------------------------------ #

    def on_fetch_started(self, event: FetchStarted) -> None:
        self.start(AnimationState.LOADING)

    def on_usage_updated(self, event: UsageDataUpdated) -> None:
        self.settle(event.snapshot)

    def on_fetch_deferred(self, event: FetchDeferred) -> None:
        self.settle(event.outcome.snapshot, failed=True)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def settle(self, snapshot: UsageSnapshot, *, failed: bool = False) -> AnimationState:
        """Leave ``loading`` according to how the acquisition ended."""
        if snapshot.error == UsageError.NOT_AUTHENTICATED:
            self._commit(0.0, 0.0)
            self.stop()
        elif failed or snapshot.error != UsageError.NONE:
            self._commit(snapshot.session_percentage, snapshot.weekly_all_models_percentage)
            self.stop()
        else:
            self._commit(snapshot.session_percentage, snapshot.weekly_all_models_percentage)
            if snapshot.max_percentage >= self._warn_threshold:
                self.start(AnimationState.WARNING)
            else:
                self.stop()
        return self._state

    def start(self, state: AnimationState) -> None:
        """Enter an animated state and (re)start the frame timer."""
        if state == AnimationState.IDLE:
            self.stop()
            return
        self._cancel_timer()
        self._state = state
        self._phase = 0.0
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._schedule()
        logger.debug("animation_started", state=state)

    def stop(self) -> None:
        """Cancel the frame timer and draw the committed percentages once.

        No frame callback runs after this returns.
        """
        was = self._state
        self._cancel_timer()
        self._state = AnimationState.IDLE
        self._push(self._renderer.render_all(self._session, self._weekly, glow_intensity=0.0))
        self.static_draws += 1
        if was != AnimationState.IDLE:
            logger.debug("animation_stopped", previous=was)

    # ------------------------------------------------------------------ #
    # Frame loop
    # ------------------------------------------------------------------ #

    def frame(self) -> None:
        """Advance the phase one step and draw the current state."""
        if self._state == AnimationState.LOADING:
            self._phase += SPIN_SPEED
            images = self._renderer.render_all(0, 0, show_spinner=True, spin_offset=self._phase)
        elif self._state == AnimationState.WARNING:
            self._phase += PULSE_SPEED
            images = self._renderer.render_all(
                self._session,
                self._weekly,
                rotation_offset=self._phase,
                glow_intensity=0.5 + 0.5 * math.sin(self._phase * 4),
            )
        else:
            return
        self._push(images)
        self.frames_drawn += 1

    def _schedule(self) -> None:
        assert self._loop is not None
        self._timer = self._loop.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        self._timer = None
        if self._state == AnimationState.IDLE:
            return
        try:
            self.frame()
        except Exception as exc:  # noqa: BLE001
            logger.warning("animation_frame_failed", state=self._state, error=str(exc))
        # The sink may have called stop() while the frame was pushed.
        if self._state != AnimationState.IDLE and self._timer is None:
            self._schedule()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _commit(self, session: float, weekly: float) -> None:
        self._session = session
        self._weekly = weekly

    def _push(self, images: dict[int, Image.Image]) -> None:
        try:
            self._sink.set_icon(images)
        except Exception as exc:  # noqa: BLE001
            logger.warning("icon_sink_failed", error=str(exc))
