"""
Market data sources built on the read-through cache.
"""

from marketfeed.datasource.base import BaseDataSource
from marketfeed.datasource.coingecko import (
    Coin,
    CoinGeckoSource,
    MarketOverview,
    MarketStats,
    PriceHistory,
)
from marketfeed.datasource.cryptocompare import (
    CryptoCompareSource,
    NewsArticle,
    OhlcvPoint,
)

__all__ = [
    "BaseDataSource",
    "CoinGeckoSource",
    "Coin",
    "MarketOverview",
    "MarketStats",
    "PriceHistory",
    "CryptoCompareSource",
    "NewsArticle",
    "OhlcvPoint",
]
