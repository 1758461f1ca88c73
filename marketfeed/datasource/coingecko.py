"""
CoinGecko API data source for cryptocurrency prices and market data.

API Documentation: https://www.coingecko.com/en/api/documentation
Free tier: 10-30 calls/minute (demo API key optional)
"""

from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict

from marketfeed.datasource.base import BaseDataSource
from marketfeed.services.client import UpstreamClient
from marketfeed.services.gate import GateScope
from marketfeed.services.read_through import ProviderConfig, ReadThroughCache
from marketfeed.services.result import FetchResult
from marketfeed.services.retry import RetryPolicy
from marketfeed.services.ttl import TTLPolicy


class Coin(BaseModel):
    """Coin summary, shared read-only across callers once cached."""

    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    name: str
    image: str = ""
    current_price: float = 0.0
    price_change_percentage_24h: float = 0.0
    market_cap: float = 0.0
    market_cap_rank: int | None = None
    description: str | None = None
    last_updated: datetime | None = None


class PriceHistory(BaseModel):
    """One point of a price chart."""

    model_config = ConfigDict(frozen=True)

    coin_id: str
    timestamp: datetime
    price: float


class MarketStats(BaseModel):
    """Market statistics for a single coin."""

    model_config = ConfigDict(frozen=True)

    coin_id: str
    current_price: float = 0.0
    market_cap: float = 0.0
    market_cap_rank: int | None = None
    total_volume: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    circulating_supply: float = 0.0
    total_supply: float = 0.0
    max_supply: float | None = None
    price_change_percentage_24h: float = 0.0


class MarketOverview(BaseModel):
    """Global market snapshot."""

    model_config = ConfigDict(frozen=True)

    total_market_cap: float = 0.0
    total_volume: float = 0.0
    btc_dominance: float = 0.0
    btc_price: float = 0.0
    eth_price: float = 0.0
    timestamp: datetime


# Chart period -> days of history
PERIOD_DAYS = {
    "1h": 1,
    "24h": 1,
    "7d": 7,
    "30d": 30,
    "1y": 365,
}

MOVERS_UNIVERSE = 250  # Top coins by market cap ranked for gainers/losers


def _num(value: Any) -> float:
    """CoinGecko sends null for unknown figures."""
    return float(value) if value is not None else 0.0


def _usd(mapping: dict[str, Any] | None) -> float:
    return _num((mapping or {}).get("usd"))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _coin_from_market(item: dict[str, Any]) -> Coin:
    return Coin(
        id=item["id"],
        symbol=(item.get("symbol") or "").upper(),
        name=item.get("name") or "",
        image=item.get("image") or "",
        current_price=_num(item.get("current_price")),
        price_change_percentage_24h=_num(item.get("price_change_percentage_24h")),
        market_cap=_num(item.get("market_cap")),
        market_cap_rank=item.get("market_cap_rank"),
        last_updated=_now(),
    )


def _coins_from_markets(data: list[dict[str, Any]] | None) -> list[Coin]:
    return [_coin_from_market(item) for item in data or []]


def _coin_from_detail(data: dict[str, Any], with_description: bool = False) -> Coin:
    md = data.get("market_data") or {}
    description = None
    if with_description:
        description = (data.get("description") or {}).get("en") or None

    return Coin(
        id=data["id"],
        symbol=(data.get("symbol") or "").upper(),
        name=data.get("name") or "",
        image=(data.get("image") or {}).get("large") or "",
        current_price=_usd(md.get("current_price")),
        price_change_percentage_24h=_num(md.get("price_change_percentage_24h")),
        market_cap=_usd(md.get("market_cap")),
        market_cap_rank=md.get("market_cap_rank"),
        description=description,
        last_updated=_now(),
    )


def _stats_from_detail(data: dict[str, Any]) -> MarketStats:
    md = data.get("market_data") or {}
    max_supply = md.get("max_supply")
    return MarketStats(
        coin_id=data["id"],
        current_price=_usd(md.get("current_price")),
        market_cap=_usd(md.get("market_cap")),
        market_cap_rank=md.get("market_cap_rank"),
        total_volume=_usd(md.get("total_volume")),
        high_24h=_usd(md.get("high_24h")),
        low_24h=_usd(md.get("low_24h")),
        circulating_supply=_num(md.get("circulating_supply")),
        total_supply=_num(md.get("total_supply")),
        max_supply=float(max_supply) if max_supply is not None else None,
        price_change_percentage_24h=_num(md.get("price_change_percentage_24h")),
    )


class CoinGeckoSource(BaseDataSource):
    """
    CoinGecko API data source.

    Every call is cached per key with its own single-flight slot; the
    free-tier quota is wide enough that per-key concurrency is safe.
    """

    BASE_URL = "https://api.coingecko.com/api/v3"
    SERVICE_ID = "coingecko"

    DETAIL_PARAMS = {
        "localization": "false",
        "tickers": "false",
        "market_data": "true",
        "community_data": "false",
        "developer_data": "false",
        "sparkline": "false",
    }

    def __init__(
        self,
        cache: ReadThroughCache,
        client: UpstreamClient,
        api_key: str = "",
        retry_policy: RetryPolicy | None = None,
    ):
        self.api_key = api_key
        self.retry_policy = retry_policy
        super().__init__(cache, client)
        if api_key:
            client.set_service_headers(self.SERVICE_ID, {"x-cg-demo-api-key": api_key})

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            service_id=self.SERVICE_ID,
            gate_scope=GateScope.PER_KEY,
            retry_policy=self.retry_policy,
        )

    def is_configured(self) -> bool:
        """CoinGecko free tier doesn't require API key."""
        return True

    async def get_coins(self, page: int = 1, per_page: int = 100) -> list[Coin]:
        """Coins ordered by market cap, one page at a time."""
        fetch = self._json_fetcher(
            f"{self.BASE_URL}/coins/markets",
            params={
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": per_page,
                "page": page,
                "price_change_percentage": "24h",
            },
            transform=_coins_from_markets,
        )
        result = await self._cached(
            "coins_list", fetch, TTLPolicy.SHORT, page=page, per_page=per_page
        )
        if not result.available:
            logger.error(f"Failed to fetch coin list page {page}: {result.error}")
            return []
        return result.value

    async def get_live_coins(self, per_page: int = 100) -> list[Coin]:
        return await self.get_coins(1, per_page)

    async def get_coin(self, coin_id: str) -> Coin | None:
        """Basic coin data, or None if unknown / unavailable."""
        coin_id = coin_id.strip().lower()
        fetch = self._json_fetcher(
            f"{self.BASE_URL}/coins/{coin_id}",
            params=self.DETAIL_PARAMS,
            transform=_coin_from_detail,
        )
        result = await self._cached("coin_basic", fetch, TTLPolicy.SHORT, id=coin_id)
        if not result.available:
            logger.error(f"Failed to fetch coin {coin_id}: {result.error}")
            return None
        return result.value

    async def get_coin_details(self, coin_id: str) -> Coin | None:
        """Coin data including the English description."""
        coin_id = coin_id.strip().lower()
        fetch = self._json_fetcher(
            f"{self.BASE_URL}/coins/{coin_id}",
            params=self.DETAIL_PARAMS,
            transform=lambda data: _coin_from_detail(data, with_description=True),
        )
        result = await self._cached(
            "coin_full_details", fetch, TTLPolicy.MEDIUM, id=coin_id
        )
        if not result.available:
            logger.error(f"Failed to fetch details for {coin_id}: {result.error}")
            return None
        return result.value

    async def get_market_stats(self, coin_id: str) -> MarketStats | None:
        coin_id = coin_id.strip().lower()
        fetch = self._json_fetcher(
            f"{self.BASE_URL}/coins/{coin_id}",
            params=self.DETAIL_PARAMS,
            transform=_stats_from_detail,
        )
        result = await self._cached("market_stats", fetch, TTLPolicy.SHORT, id=coin_id)
        if not result.available:
            logger.error(f"Failed to fetch market stats for {coin_id}: {result.error}")
            return None
        return result.value

    async def get_price_history(self, coin_id: str, days: int = 7) -> list[PriceHistory]:
        """
        Fetch historical prices for a coin.

        Args:
            coin_id: CoinGecko coin ID
            days: Number of days of data (1, 7, 14, 30, 90, 180, 365)
        """
        coin_id = coin_id.strip().lower()

        def transform(data: dict[str, Any]) -> list[PriceHistory]:
            return [
                PriceHistory(
                    coin_id=coin_id,
                    timestamp=datetime.fromtimestamp(ts / 1000, tz=timezone.utc),
                    price=float(price),
                )
                for ts, price in (data or {}).get("prices", [])
            ]

        fetch = self._json_fetcher(
            f"{self.BASE_URL}/coins/{coin_id}/market_chart",
            params={"vs_currency": "usd", "days": str(days)},
            transform=transform,
        )
        result = await self._cached(
            "history", fetch, TTLPolicy.MEDIUM, id=coin_id, days=days
        )
        if not result.available:
            logger.error(f"Failed to fetch price history for {coin_id}: {result.error}")
            return []
        return result.value

    async def get_price_history_by_period(
        self, coin_id: str, period: str
    ) -> list[PriceHistory]:
        days = PERIOD_DAYS.get(period.strip().lower(), 7)
        return await self.get_price_history(coin_id, days)

    async def search_coins(self, query: str) -> list[Coin]:
        query = query.strip().lower()

        def transform(data: dict[str, Any]) -> list[Coin]:
            return [
                Coin(
                    id=item["id"],
                    symbol=(item.get("symbol") or "").upper(),
                    name=item.get("name") or "",
                    image=item.get("thumb") or "",
                    market_cap_rank=item.get("market_cap_rank"),
                )
                for item in (data or {}).get("coins", [])
            ]

        fetch = self._json_fetcher(
            f"{self.BASE_URL}/search", params={"query": query}, transform=transform
        )
        result = await self._cached("search", fetch, TTLPolicy.LONG, query=query)
        if not result.available:
            logger.error(f"Failed to search coins for '{query}': {result.error}")
            return []
        return result.value

    async def get_trending_coins(self, limit: int | None = None) -> list[Coin]:
        """
        Trending coins enriched with market data (two upstream calls).

        The full trending list is cached once; ``limit`` is applied afterwards.
        """

        async def fetch() -> FetchResult[list[Coin]]:
            trending = await self.client.fetch_json(
                self.SERVICE_ID, f"{self.BASE_URL}/search/trending"
            )
            if not trending.ok:
                return trending

            ids = [
                entry["item"]["id"]
                for entry in (trending.value or {}).get("coins", [])
                if entry.get("item", {}).get("id")
            ]
            if not ids:
                return FetchResult.success([])

            markets = await self.client.fetch_json(
                self.SERVICE_ID,
                f"{self.BASE_URL}/coins/markets",
                params={
                    "vs_currency": "usd",
                    "ids": ",".join(ids),
                    "order": "market_cap_desc",
                    "sparkline": "false",
                },
            )
            return markets.map(_coins_from_markets)

        result = await self._cached("trending_coins_full", fetch, TTLPolicy.SHORT)
        if not result.available:
            logger.error(f"Failed to fetch trending coins: {result.error}")
            return []
        if limit is not None:
            return result.value[:limit]
        return result.value

    async def get_market_overview(self) -> MarketOverview | None:
        """Global market cap, volume, BTC dominance and BTC/ETH prices."""

        async def fetch() -> FetchResult[MarketOverview]:
            global_res = await self.client.fetch_json(
                self.SERVICE_ID, f"{self.BASE_URL}/global"
            )
            if not global_res.ok:
                return global_res

            price_res = await self.client.fetch_json(
                self.SERVICE_ID,
                f"{self.BASE_URL}/simple/price",
                params={"ids": "bitcoin,ethereum", "vs_currencies": "usd"},
            )
            if not price_res.ok:
                return price_res

            data = (global_res.value or {}).get("data") or {}
            prices = price_res.value or {}
            return FetchResult.success(
                MarketOverview(
                    total_market_cap=_usd(data.get("total_market_cap")),
                    total_volume=_usd(data.get("total_volume")),
                    btc_dominance=_num(
                        (data.get("market_cap_percentage") or {}).get("btc")
                    ),
                    btc_price=_usd(prices.get("bitcoin")),
                    eth_price=_usd(prices.get("ethereum")),
                    timestamp=_now(),
                )
            )

        result = await self._cached("market_overview", fetch, TTLPolicy.SHORT)
        if not result.available:
            logger.error(f"Failed to fetch market overview: {result.error}")
            return None
        return result.value

    async def get_top_gainers(self, limit: int = 10) -> list[Coin]:
        coins = await self.get_coins(1, MOVERS_UNIVERSE)
        ranked = sorted(coins, key=lambda c: c.price_change_percentage_24h, reverse=True)
        return ranked[:limit]

    async def get_top_losers(self, limit: int = 10) -> list[Coin]:
        coins = await self.get_coins(1, MOVERS_UNIVERSE)
        ranked = sorted(coins, key=lambda c: c.price_change_percentage_24h)
        return ranked[:limit]

    async def get_price(self, coin_id: str, currency: str = "usd") -> float | None:
        """Spot price of ``coin_id`` in ``currency``, None if unknown."""
        coin_id = coin_id.strip().lower()
        currency = currency.strip().lower()

        def transform(data: dict[str, Any]) -> float | None:
            price = (data or {}).get(coin_id, {}).get(currency)
            return float(price) if price is not None else None

        fetch = self._json_fetcher(
            f"{self.BASE_URL}/simple/price",
            params={"ids": coin_id, "vs_currencies": currency},
            transform=transform,
        )
        result = await self._cached(
            "price", fetch, TTLPolicy.SHORT, id=coin_id, currency=currency
        )
        if not result.available:
            logger.error(f"Failed to fetch {coin_id}/{currency} price: {result.error}")
            return None
        return result.value

    async def convert_currency(
        self, coin_id: str, currency: str, amount: float
    ) -> float:
        """Value of ``amount`` coins in ``currency``; 0 when no price is known."""
        price = await self.get_price(coin_id, currency)
        if price is None:
            return 0.0
        return price * amount

    async def compare_coins(self, ids: str) -> list[Coin]:
        """Market data for a comma separated list of coin ids."""
        clean_ids = [s.strip().lower() for s in ids.split(",") if s.strip()]
        if not clean_ids:
            return []

        fetch = self._json_fetcher(
            f"{self.BASE_URL}/coins/markets",
            params={
                "vs_currency": "usd",
                "ids": ",".join(clean_ids),
                "order": "market_cap_desc",
                "sparkline": "false",
            },
            transform=_coins_from_markets,
        )
        result = await self._cached("compare", fetch, TTLPolicy.MEDIUM, ids=clean_ids)
        if not result.available:
            logger.error(f"Failed to compare coins {clean_ids}: {result.error}")
            return []
        return result.value
