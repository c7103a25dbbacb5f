"""Best-effort extraction of usage figures from a rendered usage page.

Everything in this module is heuristic.  Results are always labeled
``source=scrape`` by the normalizer and are never required for
correctness: when the page layout changes the extractor returns ``None``
and the caller treats that as a parse failure.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta, tzinfo
from typing import Any

import structlog
from bs4 import BeautifulSoup, Tag

from quotaring.core.exceptions import ParseFailureError
from quotaring.core.types import ModelQuota, UsageSnapshot, now_ms
from quotaring.fetch.adapters import UsageResponseV1Adapter

logger = structlog.get_logger(__name__)

_NUMBER = r"(?<![\d.,])(\d{1,3}(?:[.,]\d+)?)"

# Tier 1: "42% used", "42% of limit", and localized equivalents.
_USED_PHRASE_RE = re.compile(
    _NUMBER
    + r"\s*%\s*(?:"
    r"used|of\s+(?:your\s+|the\s+)?(?:usage\s+)?limit"
    r"|utilis[ée]e?s?|usados?|utilizados?|utilizzat[oi]|verwendet|genutzt|verbraucht"
    r"|gebruikt|użyt[oy]|использовано|使用済み|已使用"
    r")",
    re.IGNORECASE,
)
# Tier 2: inline width declarations on progress-bar-like elements.
_WIDTH_RE = re.compile(r"(?:^|;)\s*width\s*:\s*(\d{1,3}(?:\.\d+)?)%", re.IGNORECASE)
_PROGRESS_HINT_RE = re.compile(r"progress|bar|meter|fill|gauge", re.IGNORECASE)
# Tier 3: any percentage-shaped token.
_PERCENT_RE = re.compile(_NUMBER + r"\s*%")

# A round value seen more often than this is treated as decoration.
NOISE_REPEAT_LIMIT = 3
_LAYOUT_ROUND_STEP = 5

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_DURATION_RESET_RE = re.compile(
    r"resets?\s+in\s+"
    r"(?:(?P<days>\d+)\s*d(?:ays?)?\s*)?"
    r"(?:(?P<hours>\d+)\s*h(?:ours?|rs?)?\s*)?"
    r"(?:(?P<minutes>\d+)\s*m(?:in(?:utes?)?)?)?",
    re.IGNORECASE,
)
_WEEKDAY_RESET_RE = re.compile(
    r"resets?\s+(?:on\s+)?(?P<day>" + "|".join(_WEEKDAYS) + r")"
    r"(?:\s+at\s+(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<ampm>[ap]\.?m\.?)?)?",
    re.IGNORECASE,
)
_MODEL_NAME_RE = re.compile(r"\b(Opus|Sonnet|Haiku)\b", re.IGNORECASE)


def _to_float(token: str) -> float:
    return float(token.replace(",", "."))


def _in_range(values: list[float]) -> list[float]:
    return [v for v in values if 0 <= v <= 100]


def parse_reset_hints(text: str, now: int | None = None, tz: tzinfo | None = None) -> list[int]:
    """Return reset instants (epoch ms) for every reset phrase in *text*, in order.

    Understands ``"Resets in 4h 39min"``, ``"Resets in 12 min"``,
    ``"Resets in 2 days"`` and ``"Resets Friday at 10:00 AM"`` (the next
    occurrence of that weekday and time, in *tz* or local time).
    """
    reference_ms = now if now is not None else now_ms()
    reference = datetime.fromtimestamp(reference_ms / 1000, tz=tz).astimezone(tz)
    hits: list[tuple[int, int]] = []

    for match in _DURATION_RESET_RE.finditer(text):
        days, hours, minutes = (match.group(g) for g in ("days", "hours", "minutes"))
        if days is None and hours is None and minutes is None:
            continue
        delta = timedelta(days=int(days or 0), hours=int(hours or 0), minutes=int(minutes or 0))
        hits.append((match.start(), reference_ms + int(delta.total_seconds() * 1000)))

    for match in _WEEKDAY_RESET_RE.finditer(text):
        weekday = _WEEKDAYS.index(match.group("day").lower())
        hour = int(match.group("hour") or 0)
        minute = int(match.group("minute") or 0)
        ampm = (match.group("ampm") or "").replace(".", "").lower()
        if ampm == "pm" and hour < 12:
            hour += 12
        elif ampm == "am" and hour == 12:
            hour = 0
        if hour > 23 or minute > 59:
            continue
        target = reference.replace(hour=hour, minute=minute, second=0, microsecond=0)
        target += timedelta(days=(weekday - reference.weekday()) % 7)
        if target <= reference:
            target += timedelta(days=7)
        hits.append((match.start(), round(target.timestamp() * 1000)))

    return [stamp for _, stamp in sorted(hits)]


class BestEffortExtractor(ABC):
    """Capability interface for low-confidence usage extraction."""

    @abstractmethod
    def extract(self, document: str, now: int | None = None) -> UsageSnapshot | None:
        """Return a snapshot (without source/fetched_at) or ``None`` if nothing was found."""


class HtmlUsageExtractor(BestEffortExtractor):
    """Tiered extraction from the usage settings page.

    Tier 0 reads embedded ``__NEXT_DATA__`` JSON when it carries the API
    shape.  Tiers 1-3 are text heuristics with strict precedence: the first
    tier yielding any value wins, and its values are assigned in document
    order to session, weekly (all models) and weekly (model-specific).
    """

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz
        self._api_adapter = UsageResponseV1Adapter()

    # -- tiers --------------------------------------------------------------

    def _embedded_usage(self, soup: BeautifulSoup) -> UsageSnapshot | None:
        script = soup.find("script", id="__NEXT_DATA__")
        if not isinstance(script, Tag):
            return None
        try:
            data: Any = json.loads(script.get_text())
        except json.JSONDecodeError:
            return None
        page_props = (data.get("props") or {}).get("pageProps") if isinstance(data, dict) else None
        usage = page_props.get("usage") if isinstance(page_props, dict) else None
        if not self._api_adapter.matches(usage):
            return None
        try:
            return self._api_adapter.adapt(usage)
        except ParseFailureError:
            return None

    @staticmethod
    def tier_used_phrases(text: str) -> list[float]:
        return _in_range([_to_float(m.group(1)) for m in _USED_PHRASE_RE.finditer(text)])

    @staticmethod
    def tier_progress_widths(soup: BeautifulSoup) -> list[float]:
        values: list[float] = []
        for element in soup.find_all(True):
            if element.get("role") == "progressbar" and element.get("aria-valuenow"):
                try:
                    current = float(element["aria-valuenow"])
                    maximum = float(element.get("aria-valuemax") or 100)
                except ValueError:
                    continue
                if maximum > 0:
                    values.append(round(current / maximum * 100, 2))
                continue
            style = element.get("style")
            if not style:
                continue
            match = _WIDTH_RE.search(style)
            if match and _looks_like_progress(element):
                values.append(float(match.group(1)))
        return _in_range(values)

    @staticmethod
    def tier_all_percentages(text: str) -> list[float]:
        values = _in_range([_to_float(m.group(1)) for m in _PERCENT_RE.finditer(text)])
        counts = Counter(values)
        return [
            v
            for v in values
            if not (v % _LAYOUT_ROUND_STEP == 0 and counts[v] > NOISE_REPEAT_LIMIT)
        ]

    # -- entry point --------------------------------------------------------

    def extract(self, document: str, now: int | None = None) -> UsageSnapshot | None:
        soup = BeautifulSoup(document, "html.parser")

        embedded = self._embedded_usage(soup)
        if embedded is not None:
            logger.debug("scrape_tier_hit", tier=0)
            return embedded

        for hidden in soup(["script", "style", "noscript", "template"]):
            hidden.decompose()
        text = soup.get_text(" ")

        tiers = (
            (1, lambda: self.tier_used_phrases(text)),
            (2, lambda: self.tier_progress_widths(soup)),
            (3, lambda: self.tier_all_percentages(text)),
        )
        for tier, run in tiers:
            values = run()
            if values:
                logger.debug("scrape_tier_hit", tier=tier, values=values)
                return self._assign(values, text, now)
        return None

    def _assign(self, values: list[float], text: str, now: int | None) -> UsageSnapshot:
        resets = parse_reset_hints(text, now=now, tz=self._tz)
        padded = resets + [None] * 3

        model_quota: ModelQuota | None = None
        if len(values) > 2:
            name_match = _MODEL_NAME_RE.search(text)
            model_quota = ModelQuota(
                model_name=name_match.group(1).capitalize() if name_match else "Model",
                percentage=values[2],
                reset_at=padded[2],
            )

        return UsageSnapshot(
            session_percentage=values[0],
            session_reset_at=padded[0],
            weekly_all_models_percentage=values[1] if len(values) > 1 else 0.0,
            weekly_all_models_reset_at=padded[1],
            weekly_model_specific=model_quota,
        )


def _looks_like_progress(element: Tag) -> bool:
    node: Any = element
    for _ in range(3):
        if not isinstance(node, Tag):
            return False
        classes = " ".join(node.get("class") or [])
        if node.get("role") == "progressbar" or _PROGRESS_HINT_RE.search(classes):
            return True
        node = node.parent
    return False
