"""
Service layer infrastructure - resilient read-through caching for upstream APIs.

Provides:
- TieredCache: Fresh and stale in-memory namespaces with lazy TTL expiry
- SingleFlightGate: One in-flight fetch per key (or per provider)
- RetryExecutor: Classified retries with exponential backoff
- PacingThrottle / TokenBucketThrottle: Quota pacing for shared providers
- CircuitBreaker: Skips upstream calls to a provider that keeps failing
- ReadThroughCache: The entry point combining all of the above
- UpstreamClient: httpx client returning tagged FetchResults
"""

from marketfeed.services.errors import (
    CacheUnavailableError,
    CircuitOpenError,
    FailureKind,
    FatalError,
    RateLimitError,
    RequestTimeoutError,
    RetriesExhaustedError,
    ServiceError,
    TransientError,
)
from marketfeed.services.result import FetchFailure, FetchResult
from marketfeed.services.ttl import DEFAULT_STALE_TTL, DEFAULT_TTLS, TTLPolicy
from marketfeed.services.cache import (
    CacheEntry,
    CacheStore,
    TieredCache,
    make_cache_key,
)
from marketfeed.services.gate import GateScope, SingleFlightGate
from marketfeed.services.throttle import PacingThrottle, Throttle, TokenBucketThrottle
from marketfeed.services.retry import RetryExecutor, RetryPolicy, classify_error
from marketfeed.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from marketfeed.services.read_through import (
    CacheResult,
    CacheStatus,
    ProviderConfig,
    ReadThroughCache,
)
from marketfeed.services.client import UpstreamClient
from marketfeed.services.sweeper import CacheSweeper

__all__ = [
    # Errors
    "ServiceError",
    "FailureKind",
    "FatalError",
    "TransientError",
    "RequestTimeoutError",
    "RateLimitError",
    "RetriesExhaustedError",
    "CircuitOpenError",
    "CacheUnavailableError",
    # Results
    "FetchResult",
    "FetchFailure",
    # Cache
    "TTLPolicy",
    "DEFAULT_TTLS",
    "DEFAULT_STALE_TTL",
    "CacheEntry",
    "CacheStore",
    "TieredCache",
    "make_cache_key",
    "CacheSweeper",
    # Gate / retry / throttle
    "GateScope",
    "SingleFlightGate",
    "RetryExecutor",
    "RetryPolicy",
    "classify_error",
    "Throttle",
    "PacingThrottle",
    "TokenBucketThrottle",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Orchestrator
    "ReadThroughCache",
    "ProviderConfig",
    "CacheResult",
    "CacheStatus",
    # Client
    "UpstreamClient",
]
