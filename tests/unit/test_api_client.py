"""Tests for fetch/api_client.py: QuotaApiClient."""
from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from conftest import ORG_ID, usage_payload
from quotaring.core.exceptions import (
    AuthenticationError,
    NotConnectedError,
    ParseFailureError,
    TransientNetworkError,
)
from quotaring.fetch.api_client import QuotaApiClient

USAGE = f"/api/organizations/{ORG_ID}/usage"

# ---------------------------------------------------------------------------
# Constructor / properties
# ---------------------------------------------------------------------------


def test_base_url_strips_trailing_slash() -> None:
    assert QuotaApiClient("https://claude.test/").base_url == "https://claude.test"


def test_has_credentials() -> None:
    assert QuotaApiClient(cookies={"sessionKey": "x"}).has_credentials is True
    assert QuotaApiClient().has_credentials is False


def test_cookie_org_hint() -> None:
    assert QuotaApiClient(cookies={"lastActiveOrg": "org-5"}).cookie_org_hint() == "org-5"
    assert QuotaApiClient(cookies={"sessionKey": "x"}).cookie_org_hint() is None


async def test_not_connected_raises() -> None:
    with pytest.raises(NotConnectedError):
        await QuotaApiClient().fetch_usage(ORG_ID)


# ---------------------------------------------------------------------------
# fetch_usage
# ---------------------------------------------------------------------------


async def test_fetch_usage_success(connected_client: QuotaApiClient) -> None:
    data = await connected_client.fetch_usage(ORG_ID)
    assert data["five_hour"]["utilization"] == 42


async def test_sends_cookies_and_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=usage_payload())

    async with QuotaApiClient(
        "https://claude.test",
        {"sessionKey": "sk-ant-test"},
        transport=httpx.MockTransport(handler),
    ) as client:
        await client.fetch_usage(ORG_ID)

    request = seen[0]
    assert "sessionKey=sk-ant-test" in request.headers["cookie"]
    assert request.headers["referer"] == "https://claude.test/settings/usage"
    assert request.url.path == USAGE


async def test_org_id_is_path_escaped() -> None:
    raw_paths: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raw_paths.append(request.url.raw_path)
        return httpx.Response(200, json=usage_payload())

    async with QuotaApiClient("https://claude.test", transport=httpx.MockTransport(handler)) as client:
        await client.fetch_usage("org/../x")
    assert raw_paths == [b"/api/organizations/org%2F..%2Fx/usage"]


@pytest.mark.parametrize("status", [401, 403])
async def test_auth_statuses(make_client: Callable[..., QuotaApiClient], status: int) -> None:
    async with make_client({USAGE: httpx.Response(status, json={})}) as client:
        with pytest.raises(AuthenticationError) as excinfo:
            await client.fetch_usage(ORG_ID)
    assert excinfo.value.status_code == status
    assert excinfo.value.is_retryable is False


@pytest.mark.parametrize("status", [404, 429, 500, 502, 302])
async def test_other_statuses_are_transient(
    make_client: Callable[..., QuotaApiClient], status: int
) -> None:
    async with make_client({USAGE: httpx.Response(status, text="nope")}) as client:
        with pytest.raises(TransientNetworkError) as excinfo:
            await client.fetch_usage(ORG_ID)
    assert excinfo.value.code == f"HTTP_{status}"
    assert excinfo.value.is_retryable is True


async def test_transport_error_is_transient(make_client: Callable[..., QuotaApiClient]) -> None:
    async with make_client({USAGE: httpx.ConnectError("connection refused")}) as client:
        with pytest.raises(TransientNetworkError) as excinfo:
            await client.fetch_usage(ORG_ID)
    assert excinfo.value.code == "REQUEST_FAILED"


async def test_non_json_body_is_transient(make_client: Callable[..., QuotaApiClient]) -> None:
    async with make_client({USAGE: httpx.Response(200, text="<html>login</html>")}) as client:
        with pytest.raises(TransientNetworkError) as excinfo:
            await client.fetch_usage(ORG_ID)
    assert excinfo.value.code == "MALFORMED_BODY"


async def test_non_object_usage_is_parse_failure(make_client: Callable[..., QuotaApiClient]) -> None:
    async with make_client({USAGE: [1, 2, 3]}) as client:
        with pytest.raises(ParseFailureError):
            await client.fetch_usage(ORG_ID)


async def test_fetch_bootstrap_returns_lists(make_client: Callable[..., QuotaApiClient]) -> None:
    async with make_client({"/api/organizations": [{"uuid": "org-1"}]}) as client:
        assert await client.fetch_bootstrap("/api/organizations") == [{"uuid": "org-1"}]


async def test_close_is_idempotent(make_client: Callable[..., QuotaApiClient]) -> None:
    client = make_client({})
    await client.connect()
    await client.close()
    await client.close()
    with pytest.raises(NotConnectedError):
        await client.get_json("/api/organizations")
