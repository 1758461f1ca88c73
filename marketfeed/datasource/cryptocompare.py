"""
CryptoCompare API data source for OHLCV candles and crypto news.

API Documentation: https://min-api.cryptocompare.com/documentation
The free tier shares one small quota across every endpoint, so all calls
go through a single global gate and are paced.

CryptoCompare reports most errors, rate limits included, as HTTP 200 with
``{"Response": "Error", "Message": ...}``.
"""

from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, ConfigDict

from marketfeed.datasource.base import BaseDataSource
from marketfeed.services.client import UpstreamClient
from marketfeed.services.errors import FailureKind
from marketfeed.services.gate import GateScope
from marketfeed.services.read_through import ProviderConfig, ReadThroughCache
from marketfeed.services.result import FetchResult
from marketfeed.services.retry import RetryPolicy
from marketfeed.services.throttle import PacingThrottle, Throttle
from marketfeed.services.ttl import TTLPolicy


class OhlcvPoint(BaseModel):
    """One candle."""

    model_config = ConfigDict(frozen=True)

    time: int  # Unix seconds
    open: float
    high: float
    low: float
    close: float
    volume: float


class NewsArticle(BaseModel):
    """News article from the CryptoCompare feed."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    summary: str = ""
    content: str = ""
    image_url: str = ""
    source: str = ""
    url: str = ""
    is_featured: bool = False
    published_at: datetime


# Candle period -> (endpoint, number of candles)
PERIOD_ENDPOINTS = {
    "1m": ("histominute", 1440),
    "5m": ("histominute", 1000),
    "1h": ("histohour", 720),
    "1d": ("histoday", 500),
}
DEFAULT_PERIOD_ENDPOINT = ("histoday", 500)

SYMBOLS = {
    "bitcoin": "BTC",
    "ethereum": "ETH",
    "solana": "SOL",
    "cardano": "ADA",
    "ripple": "XRP",
}

FEATURED_COUNT = 5
LOOKUP_WINDOW = 50


def symbol_for(coin_id: str) -> str:
    coin_id = coin_id.strip().lower()
    return SYMBOLS.get(coin_id, coin_id.upper())


def check_payload(payload: Any, service_id: str) -> FetchResult[Any]:
    """Turn an in-band CryptoCompare error into a tagged failure."""
    if isinstance(payload, dict) and payload.get("Response") == "Error":
        message = payload.get("Message") or "Unknown CryptoCompare error"
        kind = (
            FailureKind.RATE_LIMITED
            if "rate limit" in message.lower()
            else FailureKind.FATAL
        )
        return FetchResult.fail(kind, message, service_id=service_id)
    return FetchResult.success(payload)


def _candles(payload: dict[str, Any]) -> list[OhlcvPoint]:
    rows = ((payload or {}).get("Data") or {}).get("Data") or []
    return [
        OhlcvPoint(
            time=row["time"],
            open=row["open"],
            high=row["high"],
            low=row["low"],
            close=row["close"],
            volume=row.get("volumeto", 0),
        )
        for row in rows
    ]


def _articles(payload: dict[str, Any]) -> list[NewsArticle]:
    return [
        NewsArticle(
            id=str(item["id"]),
            title=item.get("title") or "",
            summary=item.get("body") or "",
            content=item.get("body") or "",
            image_url=item.get("imageurl") or "",
            source=(item.get("source_info") or {}).get("name") or "",
            url=item.get("url") or "",
            published_at=datetime.fromtimestamp(
                item.get("published_on", 0), tz=timezone.utc
            ),
        )
        for item in (payload or {}).get("Data") or []
    ]


class CryptoCompareSource(BaseDataSource):
    """
    CryptoCompare data source for charts and news.

    Uses one global gate for the provider plus a pacing delay after every
    call, trading concurrency for quota safety.
    """

    BASE_URL = "https://min-api.cryptocompare.com/data/v2"
    SERVICE_ID = "cryptocompare"

    def __init__(
        self,
        cache: ReadThroughCache,
        client: UpstreamClient,
        api_key: str = "",
        pacing_delay: float = 1.0,
        retry_policy: RetryPolicy | None = None,
        throttle: Throttle | None = None,
    ):
        self.api_key = api_key
        self.retry_policy = retry_policy
        self.throttle = throttle or PacingThrottle(pacing_delay)
        super().__init__(cache, client)
        if api_key:
            client.set_service_headers(
                self.SERVICE_ID, {"authorization": f"Apikey {api_key}"}
            )

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            service_id=self.SERVICE_ID,
            gate_scope=GateScope.GLOBAL,
            retry_policy=self.retry_policy,
            throttle=self.throttle,
        )

    def is_configured(self) -> bool:
        """Works keyless on the free tier, with a lower quota."""
        return True

    def _fetcher(self, url: str, params: dict[str, Any], transform: Callable):
        async def fetch() -> FetchResult[Any]:
            result = await self.client.fetch_json(self.SERVICE_ID, url, params=params)
            if not result.ok:
                return result
            return check_payload(result.value, self.SERVICE_ID).map(transform)

        return fetch

    async def get_ohlcv(self, coin_id: str, period: str = "1d") -> list[OhlcvPoint]:
        """
        Fetch candles for a coin.

        Args:
            coin_id: CoinGecko style id ("bitcoin") or a ticker symbol
            period: 1m, 5m, 1h or 1d (default)
        """
        symbol = symbol_for(coin_id)
        period = period.strip().lower()
        endpoint, limit = PERIOD_ENDPOINTS.get(period, DEFAULT_PERIOD_ENDPOINT)

        fetch = self._fetcher(
            f"{self.BASE_URL}/{endpoint}",
            {"fsym": symbol, "tsym": "USD", "limit": limit},
            _candles,
        )
        result = await self._cached(
            "ohlcv", fetch, TTLPolicy.REALTIME, symbol=symbol, period=period
        )
        if not result.available:
            logger.error(f"Failed to fetch OHLCV for {symbol}: {result.error}")
            return []
        return result.value

    async def _get_feed(self) -> list[NewsArticle] | None:
        """Whole English news feed, cached once and paginated locally."""
        fetch = self._fetcher(f"{self.BASE_URL}/news/", {"lang": "EN"}, _articles)
        result = await self._cached("news", fetch, TTLPolicy.EXTENDED, lang="en")
        if not result.available:
            logger.error(f"Failed to fetch news from CryptoCompare: {result.error}")
            return None
        return result.value

    async def get_news(self, page: int = 1, limit: int = 20) -> list[NewsArticle]:
        feed = await self._get_feed()
        if not feed:
            return []
        start = max(page - 1, 0) * limit
        return feed[start : start + limit]

    async def get_featured_news(self) -> list[NewsArticle]:
        news = await self.get_news(1, FEATURED_COUNT)
        return [article.model_copy(update={"is_featured": True}) for article in news]

    async def get_news_by_id(self, article_id: str) -> NewsArticle | None:
        news = await self.get_news(1, LOOKUP_WINDOW)
        return next((a for a in news if a.id == str(article_id)), None)
