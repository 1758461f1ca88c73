"""
marketfeed entry point.
Builds the cache stack, warms the most requested keys and keeps refreshing
them until interrupted.
"""

import asyncio
import sys

from loguru import logger

from marketfeed.datasource import CoinGeckoSource, CryptoCompareSource
from marketfeed.services import (
    CacheSweeper,
    ReadThroughCache,
    RetryExecutor,
    TieredCache,
    UpstreamClient,
)
from marketfeed.settings import global_settings


async def warm(coingecko: CoinGeckoSource, cryptocompare: CryptoCompareSource) -> None:
    coins, overview, news, candles = await asyncio.gather(
        coingecko.get_coins(1, 50),
        coingecko.get_market_overview(),
        cryptocompare.get_news(1, 20),
        cryptocompare.get_ohlcv("bitcoin", "1h"),
    )
    logger.info(
        f"Warmed cache: {len(coins)} coins, overview={'yes' if overview else 'no'}, "
        f"{len(news)} articles, {len(candles)} BTC candles"
    )


async def main() -> None:
    """Main loop."""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)
    logger.info("Starting marketfeed...")

    cache = TieredCache(debug=global_settings.cache_debug)
    read_through = ReadThroughCache(
        cache,
        executor=RetryExecutor(global_settings.retry_policy()),
        ttl_policies=global_settings.ttl_policies(),
        stale_ttl=global_settings.stale_retention,
        debug=global_settings.cache_debug,
    )
    client = UpstreamClient(timeout=global_settings.request_timeout)
    sweeper = CacheSweeper(cache, global_settings.sweep_interval_seconds)

    coingecko = CoinGeckoSource(
        read_through, client, api_key=global_settings.coingecko_api_key
    )
    cryptocompare = CryptoCompareSource(
        read_through,
        client,
        api_key=global_settings.cryptocompare_api_key,
        pacing_delay=global_settings.cryptocompare_pacing_delay,
    )

    try:
        sweeper.start()

        logger.info("Performing initial warm-up...")
        await warm(coingecko, cryptocompare)

        logger.info("marketfeed is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(global_settings.ttl_short)
            await warm(coingecko, cryptocompare)
            logger.info(f"Health: {read_through.get_health_status()}")

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        sweeper.stop()
        await client.close()
        logger.info("marketfeed stopped")


if __name__ == "__main__":
    asyncio.run(main())
