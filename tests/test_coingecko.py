"""
Tests for CoinGeckoSource against a mocked CoinGecko API.
"""

from collections import Counter

import httpx
import pytest

from marketfeed.datasource import Coin, CoinGeckoSource
from marketfeed.services import CacheStatus, RetryPolicy, UpstreamClient

MARKETS = [
    {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": "https://img/btc.png",
        "current_price": 50000,
        "price_change_percentage_24h": 2.5,
        "market_cap": 1_000_000_000,
        "market_cap_rank": 1,
    },
    {
        "id": "ethereum",
        "symbol": "eth",
        "name": "Ethereum",
        "current_price": 3000,
        "price_change_percentage_24h": -4.0,
        "market_cap": 400_000_000,
        "market_cap_rank": 2,
    },
    {
        "id": "solana",
        "symbol": "sol",
        "name": "Solana",
        "current_price": 150,
        "price_change_percentage_24h": 9.1,
        "market_cap": None,
        "market_cap_rank": 5,
    },
]

DETAIL = {
    "id": "bitcoin",
    "symbol": "btc",
    "name": "Bitcoin",
    "image": {"large": "https://img/btc-large.png"},
    "description": {"en": "Peer-to-peer electronic cash."},
    "market_data": {
        "current_price": {"usd": 50000},
        "market_cap": {"usd": 1_000_000_000},
        "market_cap_rank": 1,
        "total_volume": {"usd": 30_000_000},
        "high_24h": {"usd": 51000},
        "low_24h": {"usd": 49000},
        "circulating_supply": 19_500_000,
        "total_supply": 21_000_000,
        "max_supply": 21_000_000,
        "price_change_percentage_24h": 2.5,
    },
}


class FakeCoinGecko:
    """Routes requests by path and counts them."""

    def __init__(self):
        self.calls: Counter[str] = Counter()
        self.fail_next: list[int] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v3")
        self.calls[path] += 1

        if self.fail_next:
            return httpx.Response(self.fail_next.pop(0))

        if path == "/coins/markets":
            ids = request.url.params.get("ids")
            if ids:
                wanted = ids.split(",")
                return httpx.Response(
                    200, json=[m for m in MARKETS if m["id"] in wanted]
                )
            return httpx.Response(200, json=MARKETS)
        if path == "/coins/bitcoin":
            return httpx.Response(200, json=DETAIL)
        if path == "/coins/bitcoin/market_chart":
            return httpx.Response(
                200,
                json={"prices": [[1700000000000, 35000.5], [1700003600000, 35100.0]]},
            )
        if path == "/search":
            return httpx.Response(
                200,
                json={
                    "coins": [
                        {
                            "id": "bitcoin",
                            "symbol": "btc",
                            "name": "Bitcoin",
                            "thumb": "t.png",
                            "market_cap_rank": 1,
                        }
                    ]
                },
            )
        if path == "/search/trending":
            return httpx.Response(
                200,
                json={"coins": [{"item": {"id": "solana"}}, {"item": {"id": "bitcoin"}}]},
            )
        if path == "/global":
            return httpx.Response(
                200,
                json={
                    "data": {
                        "total_market_cap": {"usd": 2.5e12},
                        "total_volume": {"usd": 9e10},
                        "market_cap_percentage": {"btc": 52.1},
                    }
                },
            )
        if path == "/simple/price":
            return httpx.Response(
                200,
                json={
                    "bitcoin": {"usd": 50000, "eur": 46000},
                    "ethereum": {"usd": 3000},
                },
            )
        return httpx.Response(404, json={"error": "coin not found"})


@pytest.fixture
def api() -> FakeCoinGecko:
    return FakeCoinGecko()


@pytest.fixture
def source(read_through, api) -> CoinGeckoSource:
    client = UpstreamClient(transport=httpx.MockTransport(api))
    policy = RetryPolicy(max_retries=2, base_delay=0.1, attempt_timeout=None)
    return CoinGeckoSource(read_through, client, retry_policy=policy)


@pytest.mark.asyncio
async def test_get_coins_normalizes_and_caches(source, api):
    coins = await source.get_coins()

    assert [c.id for c in coins] == ["bitcoin", "ethereum", "solana"]
    assert coins[0].symbol == "BTC"
    assert coins[0].current_price == 50000.0
    assert coins[2].market_cap == 0.0
    assert all(isinstance(c, Coin) for c in coins)

    again = await source.get_coins()
    assert again == coins
    assert api.calls["/coins/markets"] == 1


@pytest.mark.asyncio
async def test_live_coins_share_the_first_page(source, api):
    live = await source.get_live_coins(per_page=100)
    page = await source.get_coins(1, 100)

    assert live == page
    assert api.calls["/coins/markets"] == 1


@pytest.mark.asyncio
async def test_get_coin_and_details_use_separate_keys(source, api):
    coin = await source.get_coin("Bitcoin ")
    details = await source.get_coin_details("bitcoin")

    assert coin.description is None
    assert details.description == "Peer-to-peer electronic cash."
    assert details.image == "https://img/btc-large.png"
    assert api.calls["/coins/bitcoin"] == 2


@pytest.mark.asyncio
async def test_unknown_coin_returns_none_without_retrying(source, api):
    assert await source.get_coin("doesnotexist") is None
    assert api.calls["/coins/doesnotexist"] == 1


@pytest.mark.asyncio
async def test_market_stats(source):
    stats = await source.get_market_stats("bitcoin")

    assert stats.coin_id == "bitcoin"
    assert stats.total_volume == 30_000_000
    assert stats.high_24h == 51000
    assert stats.max_supply == 21_000_000


@pytest.mark.asyncio
async def test_price_history(source):
    history = await source.get_price_history("bitcoin", days=1)

    assert len(history) == 2
    assert history[0].price == 35000.5
    assert history[0].timestamp.year == 2023


@pytest.mark.asyncio
async def test_price_history_by_period(source, api):
    await source.get_price_history_by_period("bitcoin", "24h")
    await source.get_price_history("bitcoin", 1)
    assert api.calls["/coins/bitcoin/market_chart"] == 1


@pytest.mark.asyncio
async def test_search(source):
    results = await source.search_coins("  BTC ")
    assert results[0].id == "bitcoin"
    assert results[0].image == "t.png"


@pytest.mark.asyncio
async def test_trending_coins_join_market_data(source, api):
    trending = await source.get_trending_coins()

    assert {c.id for c in trending} == {"solana", "bitcoin"}
    assert api.calls["/search/trending"] == 1
    assert api.calls["/coins/markets"] == 1


@pytest.mark.asyncio
async def test_trending_limit_is_applied_after_the_cache(source, api):
    top = await source.get_trending_coins(limit=1)
    everything = await source.get_trending_coins()

    assert len(top) == 1
    assert top[0] == everything[0]
    assert len(everything) == 2
    assert api.calls["/search/trending"] == 1


@pytest.mark.asyncio
async def test_market_overview(source):
    overview = await source.get_market_overview()

    assert overview.total_market_cap == 2.5e12
    assert overview.btc_dominance == 52.1
    assert overview.btc_price == 50000
    assert overview.eth_price == 3000


@pytest.mark.asyncio
async def test_gainers_and_losers_share_one_fetch(source, api):
    gainers = await source.get_top_gainers(limit=2)
    losers = await source.get_top_losers(limit=1)

    assert [c.id for c in gainers] == ["solana", "bitcoin"]
    assert [c.id for c in losers] == ["ethereum"]
    assert api.calls["/coins/markets"] == 1


@pytest.mark.asyncio
async def test_price_and_conversion(source):
    assert await source.get_price("bitcoin", "EUR") == 46000.0
    assert await source.convert_currency("bitcoin", "usd", 0.5) == 25000.0
    assert await source.convert_currency("bitcoin", "jpy", 1) == 0.0


@pytest.mark.asyncio
async def test_compare_coins_sanitizes_ids(source, api):
    coins = await source.compare_coins(" Bitcoin, ETHEREUM ,, ")

    assert {c.id for c in coins} == {"bitcoin", "ethereum"}
    assert await source.compare_coins(" , ") == []
    assert api.calls["/coins/markets"] == 1


@pytest.mark.asyncio
async def test_transient_errors_are_retried(source, api, sleeper):
    api.fail_next = [503, 502]

    coins = await source.get_coins()

    assert len(coins) == 3
    assert api.calls["/coins/markets"] == 3
    assert sleeper.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_outage_serves_stale(source, api, clock, read_through):
    await source.get_coins()
    clock.advance(minutes=10)
    api.fail_next = [503] * 10

    coins = await source.get_coins()

    assert [c.id for c in coins] == ["bitcoin", "ethereum", "solana"]
    assert read_through.get_health_status()["results"][CacheStatus.STALE.value] == 1


@pytest.mark.asyncio
async def test_outage_without_stale_is_empty(source, api):
    api.fail_next = [503] * 10
    assert await source.get_coins() == []


@pytest.mark.asyncio
async def test_api_key_header(read_through):
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return httpx.Response(200, json=[])

    client = UpstreamClient(transport=httpx.MockTransport(handler))
    source = CoinGeckoSource(read_through, client, api_key="demo-key")

    assert await source.get_coins() == []
    assert seen["x-cg-demo-api-key"] == "demo-key"
