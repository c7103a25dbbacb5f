"""Turn raw API and scrape payloads into the canonical :class:`UsageSnapshot`."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from quotaring.core.constants import FetchSource, PayloadKind, UsageError
from quotaring.core.exceptions import AuthenticationError, ParseFailureError
from quotaring.core.types import UsageSnapshot, now_ms
from quotaring.fetch.adapters import LegacyScrapeAdapter, PayloadAdapter, UsageResponseV1Adapter
from quotaring.fetch.scrape import BestEffortExtractor, HtmlUsageExtractor

logger = structlog.get_logger(__name__)


class ResponseNormalizer:
    """Routes a payload to the adapter that recognizes its shape.

    Args:
        extractor: Heuristic extractor for scraped HTML.
        api_adapters: Adapters tried, in order, for ``kind=api`` payloads.
        scrape_adapters: Adapters tried, in order, for structured
            ``kind=scrape`` payloads (HTML goes to *extractor*).
    """

    def __init__(
        self,
        extractor: BestEffortExtractor | None = None,
        *,
        api_adapters: Sequence[PayloadAdapter] | None = None,
        scrape_adapters: Sequence[PayloadAdapter] | None = None,
    ) -> None:
        self._extractor = extractor or HtmlUsageExtractor()
        self._api_adapters = tuple(api_adapters or (UsageResponseV1Adapter(),))
        self._scrape_adapters = tuple(
            scrape_adapters or (UsageResponseV1Adapter(), LegacyScrapeAdapter())
        )

    def normalize(self, raw: Any, kind: PayloadKind, *, now: int | None = None) -> UsageSnapshot:
        """Normalize *raw* into a snapshot stamped with ``source`` and ``fetched_at``.

        Raises:
            ParseFailureError: No adapter recognizes the payload.
            AuthenticationError: A scrape payload reports a signed-out page.
        """
        fetched_at = now if now is not None else now_ms()
        if kind == PayloadKind.API:
            snapshot = self._adapt(raw, self._api_adapters)
            source = FetchSource.API
        else:
            snapshot = self._from_scrape(raw, fetched_at)
            source = FetchSource.SCRAPE
        return snapshot.model_copy(
            update={"source": source, "fetched_at": fetched_at, "error": UsageError.NONE}
        )

    @staticmethod
    def _adapt(raw: Any, adapters: Sequence[PayloadAdapter]) -> UsageSnapshot:
        for adapter in adapters:
            if adapter.matches(raw):
                logger.debug("payload_adapter_selected", adapter=adapter.name, version=adapter.version)
                return adapter.adapt(raw)
        raise ParseFailureError(
            "payload matches no known response shape",
            code="UNKNOWN_SHAPE",
            details={"type": type(raw).__name__},
        )

    def _from_scrape(self, raw: Any, now: int) -> UsageSnapshot:
        if isinstance(raw, dict):
            if raw.get("error") == UsageError.NOT_AUTHENTICATED:
                raise AuthenticationError("usage page reports a signed-out session", code="SIGNED_OUT")
            if isinstance(raw.get("html"), str):
                raw = raw["html"]
            else:
                return self._adapt(raw, self._scrape_adapters)
        if not isinstance(raw, str):
            raise ParseFailureError("scrape payload is neither HTML nor a known dict shape", code="UNKNOWN_SHAPE")

        snapshot = self._extractor.extract(raw, now=now)
        if snapshot is None:
            raise ParseFailureError("no usage figures found in the scraped page", code="SCRAPE_EMPTY")
        return snapshot


_default_normalizer = ResponseNormalizer()


def normalize(raw: Any, kind: PayloadKind | str, *, now: int | None = None) -> UsageSnapshot:
    """Normalize *raw* with the default adapters and extractor."""
    return _default_normalizer.normalize(raw, PayloadKind(kind), now=now)
