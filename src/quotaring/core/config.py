from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from quotaring.core.constants import (
    DEFAULT_BASE_URL,
    MIN_FETCH_INTERVAL_MS,
    REFRESH_INTERVAL_MINUTES,
    SCRAPE_DEADLINE_SECONDS,
    Palette,
)


class ColorBand(BaseModel):
    """Percentages below ``upper_bound`` use ``color`` (the last band includes 100)."""

    upper_bound: float = Field(gt=0, le=100)
    color: str = Field(pattern=r"^#[0-9a-fA-F]{6}$")


DEFAULT_COLOR_BANDS: tuple[ColorBand, ...] = (
    ColorBand(upper_bound=50, color=Palette.LOW),
    ColorBand(upper_bound=75, color=Palette.MEDIUM),
    ColorBand(upper_bound=90, color=Palette.HIGH),
    ColorBand(upper_bound=100, color=Palette.CRITICAL),
)


class NotificationSettings(BaseModel):
    enabled: bool = True
    thresholds: list[int] = Field(default_factory=lambda: [75, 90, 100])

    @field_validator("thresholds")
    @classmethod
    def _sorted_unique(cls, value: list[int]) -> list[int]:
        for threshold in value:
            if not 0 < threshold <= 100:
                raise ValueError(f"notification threshold {threshold} outside (0, 100]")
        return sorted(set(value))


class Settings(BaseModel):
    """User-tunable settings, persisted and merge-updated.

    ``warn_threshold`` is the single authoritative threshold for the
    warning animation; ``color_bands`` drive the ring colors.
    """

    refresh_interval_minutes: int = Field(default=REFRESH_INTERVAL_MINUTES, ge=1, le=1440)
    min_fetch_interval_ms: int = Field(default=MIN_FETCH_INTERVAL_MS, ge=0)
    warn_threshold: int = Field(default=90, ge=0, le=100)
    color_bands: list[ColorBand] = Field(default_factory=lambda: list(DEFAULT_COLOR_BANDS))
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @field_validator("color_bands")
    @classmethod
    def _bands_partition(cls, bands: list[ColorBand]) -> list[ColorBand]:
        if not bands:
            raise ValueError("color_bands must not be empty")
        previous = 0.0
        for band in bands:
            if band.upper_bound <= previous:
                raise ValueError("color band bounds must be strictly increasing")
            previous = band.upper_bound
        if bands[-1].upper_bound != 100:
            raise ValueError("the last color band must end at 100")
        return bands


class MonitorConfig(BaseModel):
    """Process-level configuration (credentials, endpoints, paths, logging)."""

    base_url: str = DEFAULT_BASE_URL
    session_key: str | None = None
    """Value of the ``sessionKey`` cookie."""
    cookies: str | None = None
    """Raw ``Cookie`` header (``k=v; k2=v2``); merged with ``session_key``."""
    org_id: str | None = None
    """Seed organization id; used only when none is persisted yet."""
    state_path: Path | None = None
    """JSON state file; ``None`` keeps state in memory."""
    icon_dir: Path | None = None
    """Directory to write rendered icons to; ``None`` keeps them in memory."""
    timeout: float = Field(default=15.0, gt=0, le=300)
    scrape_deadline_seconds: float = Field(default=SCRAPE_DEADLINE_SECONDS, gt=0, le=300)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True

    def cookie_jar(self) -> dict[str, str]:
        """Parse ``cookies`` into a dict and overlay ``session_key``.

        A bare value without ``=`` is treated as the session key itself.
        """
        jar: dict[str, str] = {}
        raw = (self.cookies or "").strip()
        if raw and "=" not in raw:
            jar["sessionKey"] = raw
        else:
            for part in raw.split(";"):
                name, sep, value = part.strip().partition("=")
                if sep and name.strip():
                    jar[name.strip()] = value.strip()
        if self.session_key:
            jar["sessionKey"] = self.session_key
        return jar

    @classmethod
    def from_env(cls) -> MonitorConfig:
        """Create a :class:`MonitorConfig` from ``QUOTARING_*`` environment variables.

        Reads the following env vars (all optional):

        * ``QUOTARING_BASE_URL`` → ``base_url``
        * ``QUOTARING_SESSION_KEY`` → ``session_key``
        * ``QUOTARING_COOKIES`` → ``cookies``
        * ``QUOTARING_ORG_ID`` → ``org_id``
        * ``QUOTARING_STATE_PATH`` → ``state_path``
        * ``QUOTARING_ICON_DIR`` → ``icon_dir``
        * ``QUOTARING_TIMEOUT`` → ``timeout`` (seconds)
        * ``QUOTARING_SCRAPE_DEADLINE`` → ``scrape_deadline_seconds``
        * ``QUOTARING_LOG_LEVEL`` → ``log_level``
        * ``QUOTARING_LOG_JSON`` → ``log_json`` (``0``/``false``/``no`` disable)

        Any variable that is not set or is empty is left at its default value.
        """
        kwargs: dict[str, Any] = {}

        for env_name, field in (
            ("QUOTARING_BASE_URL", "base_url"),
            ("QUOTARING_SESSION_KEY", "session_key"),
            ("QUOTARING_COOKIES", "cookies"),
            ("QUOTARING_ORG_ID", "org_id"),
            ("QUOTARING_LOG_LEVEL", "log_level"),
        ):
            value = os.environ.get(env_name)
            if value:
                kwargs[field] = value

        for env_name, field in (
            ("QUOTARING_STATE_PATH", "state_path"),
            ("QUOTARING_ICON_DIR", "icon_dir"),
        ):
            value = os.environ.get(env_name)
            if value:
                kwargs[field] = Path(value).expanduser()

        timeout_str = os.environ.get("QUOTARING_TIMEOUT")
        if timeout_str:
            kwargs["timeout"] = float(timeout_str)

        deadline_str = os.environ.get("QUOTARING_SCRAPE_DEADLINE")
        if deadline_str:
            kwargs["scrape_deadline_seconds"] = float(deadline_str)

        log_json = os.environ.get("QUOTARING_LOG_JSON")
        if log_json:
            kwargs["log_json"] = log_json.strip().lower() not in ("0", "false", "no")

        return cls(**kwargs)
