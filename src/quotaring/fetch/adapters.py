"""Named, versioned adapters for every payload shape the monitor understands.

Each adapter either recognizes its shape completely or raises
:class:`~quotaring.core.exceptions.ParseFailureError`; nothing silently
defaults a missing field to zero.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, NamedTuple

from quotaring.core.exceptions import ParseFailureError
from quotaring.core.types import ModelQuota, UsageSnapshot, clamp_percentage

# Flagship, mid-tier, low-tier.
MODEL_FIELD_PRIORITY: tuple[str, ...] = (
    "seven_day_opus",
    "seven_day_sonnet",
    "seven_day_haiku",
)
MODEL_FIELD_PREFIX = "seven_day_"
_MODEL_FIELD_RE = re.compile(r"^seven_day_([a-z0-9_]+)$")
# Weekly buckets that share the prefix but are not model tiers.
_NON_MODEL_BUCKETS = frozenset({"seven_day_oauth_apps", "seven_day_cowork"})


def parse_reset_at(value: Any) -> int | None:
    """Parse an ISO-8601 instant into epoch milliseconds.

    Naive timestamps are taken as UTC.  Returns ``None`` for missing or
    unparseable values.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return round(parsed.timestamp() * 1000)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _quota_window(payload: dict[str, Any], field: str) -> tuple[float, int | None]:
    window = payload.get(field)
    if not isinstance(window, dict) or not _is_number(window.get("utilization")):
        raise ParseFailureError(
            f"usage payload field '{field}' is missing or has no numeric utilization",
            code="UNEXPECTED_SHAPE",
            details={"field": field},
        )
    return clamp_percentage(window["utilization"]), parse_reset_at(window.get("resets_at"))


def model_name_from_field(field: str) -> str:
    """``"seven_day_opus"`` → ``"Opus"``; ``"seven_day_sonnet_4"`` → ``"Sonnet 4"``."""
    remainder = field[len(MODEL_FIELD_PREFIX):].replace("_", " ").strip()
    return remainder[:1].upper() + remainder[1:]


def select_model_field(payload: dict[str, Any]) -> str | None:
    """Pick the weekly model-specific field by tier priority.

    Fields set to ``null`` or lacking a numeric utilization are skipped.
    """

    def usable(field: str) -> bool:
        window = payload.get(field)
        return isinstance(window, dict) and _is_number(window.get("utilization"))

    for field in MODEL_FIELD_PRIORITY:
        if usable(field):
            return field
    for field in payload:
        if field in _NON_MODEL_BUCKETS or field in MODEL_FIELD_PRIORITY:
            continue
        if _MODEL_FIELD_RE.match(field) and usable(field):
            return field
    return None


class PayloadAdapter(ABC):
    """Converts one known payload shape into a :class:`UsageSnapshot`.

    The returned snapshot has no ``source`` or ``fetched_at``; the
    normalizer stamps those.
    """

    name: str = ""
    version: int = 1

    @abstractmethod
    def matches(self, payload: Any) -> bool:
        """Cheap structural check used to route a payload to this adapter."""

    @abstractmethod
    def adapt(self, payload: Any) -> UsageSnapshot:
        """Convert *payload*; raise :class:`ParseFailureError` on any mismatch."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version})"


class UsageResponseV1Adapter(PayloadAdapter):
    """``GET /api/organizations/{org}/usage`` response.

    Shape::

        {"five_hour": {"utilization": 42, "resets_at": "..."},
         "seven_day": {"utilization": 10, "resets_at": "..."},
         "seven_day_opus": {...} | null, "seven_day_sonnet": {...} | null, ...}
    """

    name = "usage_response"
    version = 1

    def matches(self, payload: Any) -> bool:
        return isinstance(payload, dict) and "five_hour" in payload and "seven_day" in payload

    def adapt(self, payload: Any) -> UsageSnapshot:
        if not isinstance(payload, dict):
            raise ParseFailureError("usage payload is not a JSON object", code="UNEXPECTED_SHAPE")
        session, session_reset = _quota_window(payload, "five_hour")
        weekly, weekly_reset = _quota_window(payload, "seven_day")

        model_quota: ModelQuota | None = None
        field = select_model_field(payload)
        if field is not None:
            percentage, reset_at = _quota_window(payload, field)
            model_quota = ModelQuota(
                model_name=model_name_from_field(field),
                percentage=percentage,
                reset_at=reset_at,
            )

        return UsageSnapshot(
            session_percentage=session,
            session_reset_at=session_reset,
            weekly_all_models_percentage=weekly,
            weekly_all_models_reset_at=weekly_reset,
            weekly_model_specific=model_quota,
        )


class LegacyScrapeAdapter(PayloadAdapter):
    """Pre-normalized dict sent by older content renderers.

    Shape::

        {"currentSession": {"percentage": 12, "resetTimestamp": 1700000000000},
         "weeklyLimits": {"allModels": {...}, "sonnetOnly": {...}}}
    """

    name = "legacy_scrape"
    version = 1

    def matches(self, payload: Any) -> bool:
        return isinstance(payload, dict) and isinstance(payload.get("currentSession"), dict)

    @staticmethod
    def _section(section: Any, label: str) -> tuple[float, int | None]:
        if not isinstance(section, dict) or not _is_number(section.get("percentage")):
            raise ParseFailureError(
                f"scraped section '{label}' has no numeric percentage",
                code="UNEXPECTED_SHAPE",
                details={"section": label},
            )
        reset = section.get("resetTimestamp")
        return clamp_percentage(section["percentage"]), int(reset) if _is_number(reset) else None

    def adapt(self, payload: Any) -> UsageSnapshot:
        if not self.matches(payload):
            raise ParseFailureError("not a legacy scrape payload", code="UNEXPECTED_SHAPE")
        session, session_reset = self._section(payload["currentSession"], "currentSession")

        weekly_limits = payload.get("weeklyLimits")
        if not isinstance(weekly_limits, dict):
            raise ParseFailureError("scraped payload has no weeklyLimits", code="UNEXPECTED_SHAPE")
        weekly, weekly_reset = self._section(weekly_limits.get("allModels"), "allModels")

        model_quota: ModelQuota | None = None
        sonnet = weekly_limits.get("sonnetOnly")
        if isinstance(sonnet, dict) and _is_number(sonnet.get("percentage")):
            percentage, reset_at = self._section(sonnet, "sonnetOnly")
            model_quota = ModelQuota(model_name="Sonnet", percentage=percentage, reset_at=reset_at)

        return UsageSnapshot(
            session_percentage=session,
            session_reset_at=session_reset,
            weekly_all_models_percentage=weekly,
            weekly_all_models_reset_at=weekly_reset,
            weekly_model_specific=model_quota,
        )


# ---------------------------------------------------------------------------
# Organization identity shapes
# ---------------------------------------------------------------------------


class OrgIdMatch(NamedTuple):
    org_id: str
    shape: str


def _entity_id(entity: Any) -> str | None:
    if isinstance(entity, dict):
        for key in ("uuid", "id"):
            value = entity.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def _first(items: Any) -> Any:
    return items[0] if isinstance(items, list) and items else None


def _org_list(payload: Any) -> str | None:
    return _entity_id(_first(payload)) if isinstance(payload, list) else None


def _flat_field(payload: Any) -> str | None:
    if isinstance(payload, dict):
        for key in ("organization_id", "org_id", "organizationId", "organization_uuid"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def _nested_organizations(payload: Any) -> str | None:
    if isinstance(payload, dict):
        return _entity_id(_first(payload.get("organizations")))
    return None


def _account_memberships(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    account = payload.get("account")
    memberships = account.get("memberships") if isinstance(account, dict) else payload.get("memberships")
    membership = _first(memberships)
    if isinstance(membership, dict):
        return _entity_id(membership.get("organization"))
    return None


# Priority order: the first shape that yields an id wins.
ORG_ID_SHAPES: tuple[tuple[str, Callable[[Any], str | None]], ...] = (
    ("organization_list", _org_list),
    ("flat_field", _flat_field),
    ("nested_organizations", _nested_organizations),
    ("account_memberships", _account_memberships),
)


def extract_org_id(payload: Any) -> OrgIdMatch | None:
    """Return the organization id found in a bootstrap/account payload, if any."""
    for shape, extractor in ORG_ID_SHAPES:
        org_id = extractor(payload)
        if org_id:
            return OrgIdMatch(org_id=org_id, shape=shape)
    return None
