"""
Tests for UpstreamClient response classification.
"""

import httpx
import pytest

from marketfeed.services import FailureKind, UpstreamClient
from marketfeed.services.client import classify_status, parse_retry_after


def make_client(handler) -> UpstreamClient:
    return UpstreamClient(timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_json_success():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["ids"] == "bitcoin"
        return httpx.Response(200, json={"bitcoin": {"usd": 50000}})

    async with make_client(handler) as client:
        result = await client.fetch_json(
            "coingecko", "https://api.example.com/price", params={"ids": "bitcoin"}
        )

    assert result.ok
    assert result.value == {"bitcoin": {"usd": 50000}}


@pytest.mark.asyncio
async def test_429_is_rate_limited_with_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "12"}, text="slow down")

    async with make_client(handler) as client:
        result = await client.fetch_json("coingecko", "https://api.example.com/x")

    assert not result.ok
    assert result.failure.kind == FailureKind.RATE_LIMITED
    assert result.failure.retry_after == 12.0
    assert result.failure.service_id == "coingecko"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, kind",
    [
        (503, FailureKind.TRANSIENT),
        (500, FailureKind.TRANSIENT),
        (408, FailureKind.TRANSIENT),
        (404, FailureKind.FATAL),
        (400, FailureKind.FATAL),
    ],
)
async def test_status_classification(status, kind):
    async with make_client(lambda request: httpx.Response(status)) as client:
        result = await client.fetch_json("svc", "https://api.example.com/x")

    assert result.failure.kind == kind


@pytest.mark.asyncio
async def test_invalid_json_is_fatal():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    async with make_client(handler) as client:
        result = await client.fetch_json("svc", "https://api.example.com/x")

    assert result.failure.kind == FailureKind.FATAL


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        result = await client.fetch_json("svc", "https://api.example.com/x")

    assert result.failure.kind == FailureKind.TRANSIENT


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    async with make_client(handler) as client:
        result = await client.fetch_json("svc", "https://api.example.com/x")

    assert result.failure.kind == FailureKind.TRANSIENT


@pytest.mark.asyncio
async def test_service_headers_are_sent():
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        client.set_service_headers("cryptocompare", {"authorization": "Apikey abc"})
        await client.fetch_json(
            "cryptocompare", "https://api.example.com/x", headers={"x-extra": "1"}
        )

    assert seen["authorization"] == "Apikey abc"
    assert seen["x-extra"] == "1"
    assert seen["user-agent"].startswith("marketfeed/")


@pytest.mark.asyncio
async def test_headers_are_per_service():
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        client.set_service_headers("cryptocompare", {"authorization": "Apikey abc"})
        await client.fetch_json("coingecko", "https://api.example.com/x")

    assert "authorization" not in seen


def test_parse_retry_after():
    assert parse_retry_after(None) is None
    assert parse_retry_after("") is None
    assert parse_retry_after("30") == 30.0
    assert parse_retry_after("-5") == 0.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert parse_retry_after("soon") is None


def test_classify_status():
    assert classify_status(200) is None
    assert classify_status(304) is None
    assert classify_status(429) == FailureKind.RATE_LIMITED
    assert classify_status(502) == FailureKind.TRANSIENT
    assert classify_status(401) == FailureKind.FATAL
