from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from quotaring.core.constants import DEFAULT_BASE_URL, USAGE_PAGE_PATH
from quotaring.core.exceptions import (
    AuthenticationError,
    NotConnectedError,
    ParseFailureError,
    TransientNetworkError,
)

logger = structlog.get_logger(__name__)

USAGE_PATH = "/api/organizations/{org_id}/usage"

# Account-bootstrap endpoints, queried in order during identity discovery.
BOOTSTRAP_PATHS: tuple[str, ...] = (
    "/api/organizations",
    "/api/bootstrap",
    "/api/auth/current_account",
    "/api/account",
)

# Cookies that already name the active organization.
ORG_COOKIE_HINTS: tuple[str, ...] = ("lastActiveOrg", "routingHint")

_DEFAULT_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


class QuotaApiClient:
    """HTTP client for the remote quota API.

    Requests carry the user's ambient session cookies.  Failures are mapped
    onto the acquisition taxonomy:

    * HTTP 401/403 → :class:`AuthenticationError`
    * transport errors, other non-2xx, non-JSON bodies → :class:`TransientNetworkError`
    * JSON of the wrong top-level type → :class:`ParseFailureError`
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        cookies: dict[str, str] | None = None,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a QuotaApiClient.

        Args:
            base_url: Site root, e.g. ``"https://claude.ai"``.
            cookies: Session cookies (at least ``sessionKey``).
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests pass a ``MockTransport``).
        """
        self._base_url = base_url.rstrip("/")
        self._cookies = dict(cookies or {})
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Create the underlying :class:`httpx.AsyncClient`."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={**_DEFAULT_HEADERS, "Referer": f"{self._base_url}{USAGE_PAGE_PATH}"},
            cookies=self._cookies,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=False,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> QuotaApiClient:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def has_credentials(self) -> bool:
        return bool(self._cookies)

    def cookie_org_hint(self) -> str | None:
        """Organization id carried by a session cookie, if any."""
        for name in ORG_COOKIE_HINTS:
            value = self._cookies.get(name)
            if value:
                return value
        return None

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    async def get_json(self, path: str) -> Any:
        """``GET`` *path* and return the decoded JSON body.

        Raises:
            NotConnectedError: :meth:`connect` was not called.
            AuthenticationError: HTTP 401 or 403.
            TransientNetworkError: Transport failure, other error status or
                a body that is not JSON.
        """
        if self._client is None:
            raise NotConnectedError("QuotaApiClient not connected. Call await client.connect() first.")

        try:
            resp = await self._client.get(path)
        except httpx.RequestError as exc:
            raise TransientNetworkError(
                f"GET {path} failed: {exc}", code="REQUEST_FAILED"
            ) from exc

        logger.debug("api_response", path=path, status=resp.status_code)

        if resp.status_code in (401, 403):
            raise AuthenticationError(
                f"GET {path} rejected with HTTP {resp.status_code}",
                code=f"HTTP_{resp.status_code}",
                status_code=resp.status_code,
            )
        if resp.status_code >= 300:
            raise TransientNetworkError(
                f"GET {path} returned HTTP {resp.status_code}",
                code=f"HTTP_{resp.status_code}",
                status_code=resp.status_code,
                details={"body": resp.text[:200]},
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise TransientNetworkError(
                f"GET {path} returned a body that is not JSON",
                code="MALFORMED_BODY",
                status_code=resp.status_code,
            ) from exc

    async def fetch_usage(self, org_id: str) -> dict[str, Any]:
        """Fetch the raw usage document for *org_id*."""
        data = await self.get_json(USAGE_PATH.format(org_id=quote(org_id, safe="")))
        if not isinstance(data, dict):
            raise ParseFailureError(
                "usage endpoint did not return a JSON object", code="UNEXPECTED_SHAPE"
            )
        return data

    async def fetch_bootstrap(self, path: str) -> Any:
        """Fetch one account-bootstrap document (object or list)."""
        return await self.get_json(path)
