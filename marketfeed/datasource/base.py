"""
Base data source interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, TypeVar

from marketfeed.services.cache import make_cache_key
from marketfeed.services.client import UpstreamClient
from marketfeed.services.read_through import (
    CacheResult,
    ProviderConfig,
    ReadThroughCache,
)
from marketfeed.services.result import FetchResult
from marketfeed.services.ttl import TTLPolicy

T = TypeVar("T")


class BaseDataSource(ABC):
    """
    Abstract base class for all data sources.

    All data sources should:
    - Go through ReadThroughCache for every upstream read
    - Normalize responses into pydantic models inside the fetch function,
      before anything reaches the cache
    - Fall back to empty results only when the cache reports UNAVAILABLE
    """

    def __init__(self, cache: ReadThroughCache, client: UpstreamClient):
        self.cache = cache
        self.client = client
        self.cache.register_provider(self.provider_config())

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this data source."""
        ...

    @abstractmethod
    def provider_config(self) -> ProviderConfig:
        """Gate scope, retry policy and throttle for this provider."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the data source is properly configured."""
        ...

    async def _cached(
        self,
        operation: str,
        fetch_fn: Callable[[], Awaitable[FetchResult[T]]],
        ttl: TTLPolicy,
        **params: Any,
    ) -> CacheResult[T]:
        key = make_cache_key(f"{self.service_id}:{operation}", **params)
        return await self.cache.get(
            key, fetch_fn, fresh_ttl=ttl, provider=self.service_id
        )

    def _json_fetcher(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        transform: Callable[[Any], T] | None = None,
    ) -> Callable[[], Awaitable[FetchResult[T]]]:
        """Fetch function for a single GET, normalized by ``transform``."""

        async def fetch() -> FetchResult[T]:
            result = await self.client.fetch_json(self.service_id, url, params=params)
            return result.map(transform) if transform else result

        return fetch
