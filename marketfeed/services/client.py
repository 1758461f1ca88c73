"""
UpstreamClient - async HTTP access to market data providers.

Turns every response into a tagged FetchResult so fetch functions handed
to ReadThroughCache report their own failure kind:
- 429: RATE_LIMITED (Retry-After honoured)
- 408, 5xx, timeouts, connection errors: TRANSIENT
- other 4xx, undecodable bodies: FATAL
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from loguru import logger

from marketfeed.services.errors import FailureKind
from marketfeed.services.result import FetchResult

DEFAULT_USER_AGENT = "marketfeed/0.1"


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def classify_status(status_code: int) -> FailureKind | None:
    """Failure kind for an HTTP status, None for success."""
    if status_code < 400:
        return None
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code == 408 or status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


class UpstreamClient:
    """
    Shared httpx client for all data sources.

    Usage:
        async with UpstreamClient(timeout=10.0) as client:
            result = await client.fetch_json(
                "coingecko",
                "https://api.coingecko.com/api/v3/simple/price",
                params={"ids": "bitcoin", "vs_currencies": "usd"},
            )
            if result.ok:
                prices = result.value
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._headers: dict[str, dict[str, str]] = {}
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    def set_service_headers(self, service_id: str, headers: dict[str, str]) -> None:
        """Headers sent with every request to ``service_id`` (API keys etc)."""
        self._headers[service_id] = dict(headers)

    async def fetch_json(
        self,
        service_id: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult[Any]:
        """
        GET ``url`` and decode the JSON body.

        Never raises for upstream problems; the failure is returned tagged.
        """
        client = await self._get_http_client()

        req_headers = dict(self._headers.get(service_id, {}))
        if headers:
            req_headers.update(headers)

        try:
            response = await client.get(url, params=params, headers=req_headers)
        except httpx.TimeoutException as e:
            return FetchResult.fail(
                FailureKind.TRANSIENT,
                f"Timed out after {self._timeout}s: {e}",
                service_id=service_id,
            )
        except httpx.RequestError as e:
            return FetchResult.fail(
                FailureKind.TRANSIENT,
                f"{type(e).__name__}: {e}",
                service_id=service_id,
            )

        kind = classify_status(response.status_code)
        if kind is not None:
            logger.debug(f"{service_id} answered HTTP {response.status_code} for {url}")
            return FetchResult.fail(
                kind,
                f"HTTP {response.status_code}: {response.text[:200]}",
                service_id=service_id,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        try:
            return FetchResult.success(response.json())
        except ValueError as e:
            return FetchResult.fail(
                FailureKind.FATAL,
                f"Invalid JSON from {url}: {e}",
                service_id=service_id,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("UpstreamClient closed")

    async def __aenter__(self) -> "UpstreamClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
