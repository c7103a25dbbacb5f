from __future__ import annotations

from enum import StrEnum


class FetchSource(StrEnum):
    API = "api"
    SCRAPE = "scrape"
    NONE = "none"


class UsageError(StrEnum):
    NONE = "none"
    NOT_AUTHENTICATED = "not_authenticated"
    NEEDS_SETUP = "needs_setup"


class StrategyStatus(StrEnum):
    SUCCESS = "success"
    AUTH_REQUIRED = "auth_required"
    UNAVAILABLE = "unavailable"
    TRANSIENT_ERROR = "transient_error"


class PayloadKind(StrEnum):
    API = "api"
    SCRAPE = "scrape"


class AnimationState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    WARNING = "warning"


class MessageType(StrEnum):
    # Wire names shared with the UI surface and the content renderer
    USAGE_DATA_SCRAPED = "usageDataScraped"
    REQUEST_REFRESH = "requestRefresh"
    GET_USAGE_DATA = "getUsageData"
    USAGE_DATA_UPDATED = "usageDataUpdated"


class StoreKey(StrEnum):
    USAGE = "usage"
    SETTINGS = "settings"
    ORGANIZATION = "organization"
    LAST_ATTEMPT = "last_attempt_at"


DEFAULT_BASE_URL = "https://claude.ai"
USAGE_PAGE_PATH = "/settings/usage"

REFRESH_INTERVAL_MINUTES = 5
MIN_FETCH_INTERVAL_MS = 30_000
SCRAPE_DEADLINE_SECONDS = 15.0
FIRST_TICK_DELAY_SECONDS = 6.0  # 0.1 minute

ICON_SIZES: tuple[int, ...] = (16, 19, 32, 38, 48)

ANIMATION_FPS = 30
PULSE_SPEED = 0.05  # radians per frame, warning rotation
SPIN_SPEED = 0.15  # radians per frame, loading spinner


class Palette:
    """Icon palette (dark theme)."""

    ACCENT = "#a855f7"
    RING_BACKGROUND = "#27272a"
    LOW = "#22c55e"
    MEDIUM = "#eab308"
    HIGH = "#f97316"
    CRITICAL = "#ef4444"
