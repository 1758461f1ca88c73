"""
ReadThroughCache - the entry point every data source goes through.

Flow for ``get(key, fetch_fn)``:
1. Unexpired fresh entry: return it, no gate, no upstream call
2. Enter the provider's single-flight gate
3. Re-check the fresh tier (another caller may have just filled it)
4. Run the retry executor around the fetch function
5. Success: write fresh and stale tiers, return the value
6. Failure: leave the gate, serve the stale tier (expired or not), or
   report UNAVAILABLE
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar

from loguru import logger

from marketfeed.services.cache import CacheEntry, TieredCache
from marketfeed.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from marketfeed.services.errors import (
    CacheUnavailableError,
    CircuitOpenError,
    ServiceError,
)
from marketfeed.services.gate import GateScope, SingleFlightGate
from marketfeed.services.result import FetchResult
from marketfeed.services.retry import RetryExecutor, RetryPolicy
from marketfeed.services.throttle import Throttle
from marketfeed.services.ttl import (
    DEFAULT_STALE_TTL,
    DEFAULT_TTLS,
    TTLLike,
    TTLPolicy,
    to_timedelta,
)

T = TypeVar("T")

FetchFn = Callable[[], Awaitable[FetchResult[T] | T]]


class CacheStatus(str, Enum):
    """Where a result came from."""

    HIT = "HIT"  # Fresh tier
    FETCHED = "FETCHED"  # Upstream, just now
    STALE = "STALE"  # Stale tier fallback
    UNAVAILABLE = "UNAVAILABLE"  # No data could be produced


@dataclass
class CacheResult(Generic[T]):
    """Outcome of a read-through lookup."""

    key: str
    status: CacheStatus
    value: T | None = None
    stored_at: datetime | None = None
    error: ServiceError | None = None

    @property
    def available(self) -> bool:
        return self.status != CacheStatus.UNAVAILABLE

    @property
    def is_stale(self) -> bool:
        return self.status == CacheStatus.STALE

    def unwrap(self) -> T:
        """Return the value, or raise CacheUnavailableError."""
        if not self.available:
            raise CacheUnavailableError(self.key, self.error)
        return self.value

    @classmethod
    def from_entry(
        cls,
        key: str,
        status: CacheStatus,
        entry: CacheEntry[T],
        error: ServiceError | None = None,
    ) -> "CacheResult[T]":
        return cls(
            key=key,
            status=status,
            value=entry.value,
            stored_at=entry.stored_at,
            error=error,
        )


@dataclass
class ProviderConfig:
    """How calls to one upstream provider are governed."""

    service_id: str
    gate_scope: GateScope = GateScope.PER_KEY
    retry_policy: RetryPolicy | None = None
    throttle: Throttle | None = None
    use_circuit_breaker: bool = True
    circuit_breaker_config: CircuitBreakerConfig | None = None
    stale_ttl: timedelta | None = None


@dataclass
class ReadThroughStats:
    """Counters per result status."""

    counts: dict[str, int] = field(
        default_factory=lambda: {status.value: 0 for status in CacheStatus}
    )

    def record(self, status: CacheStatus) -> None:
        self.counts[status.value] += 1

    def to_dict(self) -> dict[str, Any]:
        return dict(self.counts)


class ReadThroughCache:
    """
    Resilient read-through cache over upstream fetch functions.

    Usage:
        rtc = ReadThroughCache(TieredCache())
        rtc.register_provider(ProviderConfig(service_id="coingecko"))

        result = await rtc.get(
            make_cache_key("coin", id="bitcoin"),
            fetch_bitcoin,
            fresh_ttl=TTLPolicy.SHORT,
            provider="coingecko",
        )
        if result.available:
            coin = result.value
    """

    def __init__(
        self,
        cache: TieredCache,
        executor: RetryExecutor | None = None,
        gate: SingleFlightGate | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
        ttl_policies: Mapping[TTLPolicy, timedelta] | None = None,
        stale_ttl: timedelta = DEFAULT_STALE_TTL,
        debug: bool = False,
    ):
        self._cache = cache
        self._executor = executor or RetryExecutor()
        self._gate = gate or SingleFlightGate(debug=debug)
        self._circuit_breakers = circuit_breakers or CircuitBreakerRegistry()
        self._ttl_policies = dict(ttl_policies or DEFAULT_TTLS)
        self._stale_ttl = stale_ttl
        self._debug = debug
        self._providers: dict[str, ProviderConfig] = {}
        self._stats = ReadThroughStats()

    @property
    def cache(self) -> TieredCache:
        return self._cache

    def register_provider(self, config: ProviderConfig) -> None:
        """Register how calls to a provider are gated, retried and paced."""
        self._providers[config.service_id] = config
        logger.debug(
            f"Registered provider: {config.service_id} ({config.gate_scope.value})"
        )

    def get_provider_config(self, service_id: str) -> ProviderConfig | None:
        return self._providers.get(service_id)

    async def get(
        self,
        key: str,
        fetch_fn: FetchFn[T],
        fresh_ttl: TTLLike = TTLPolicy.SHORT,
        stale_ttl: TTLLike | None = None,
        provider: str | None = None,
    ) -> CacheResult[T]:
        """
        Return data for ``key``, fetching through ``fetch_fn`` on a miss.

        Args:
            key: Cache key, see ``make_cache_key``
            fetch_fn: Zero-argument async upstream call
            fresh_ttl: Fresh-tier TTL (policy, timedelta or seconds)
            stale_ttl: Stale-tier TTL, defaults to the provider's or the
                global stale retention
            provider: Registered provider id, selects gate scope, retry
                policy, throttle and circuit breaker

        Returns:
            CacheResult; upstream failures never raise, they end as STALE
            or UNAVAILABLE
        """
        config = self._provider(provider)
        fresh = to_timedelta(fresh_ttl, self._ttl_policies)
        stale = (
            to_timedelta(stale_ttl, self._ttl_policies)
            if stale_ttl is not None
            else config.stale_ttl or self._stale_ttl
        )
        if stale <= fresh:
            raise ValueError(
                f"Stale TTL ({stale}) must be longer than fresh TTL ({fresh})"
            )

        entry = await self._cache.get_fresh(key)
        if entry is not None:
            return self._finish(CacheResult.from_entry(key, CacheStatus.HIT, entry))

        gate_key = (
            key
            if config.gate_scope == GateScope.PER_KEY
            else f"provider:{config.service_id}"
        )

        try:
            result = await self._gate.run(
                gate_key,
                lambda: self._refresh(key, fetch_fn, fresh, stale, config),
            )
        except ServiceError as e:
            result = await self._fallback(key, e)

        return self._finish(result)

    async def get_or_raise(
        self,
        key: str,
        fetch_fn: FetchFn[T],
        fresh_ttl: TTLLike = TTLPolicy.SHORT,
        stale_ttl: TTLLike | None = None,
        provider: str | None = None,
    ) -> T:
        """Like ``get`` but returns the bare value or raises CacheUnavailableError."""
        result = await self.get(key, fetch_fn, fresh_ttl, stale_ttl, provider)
        return result.unwrap()

    async def _refresh(
        self,
        key: str,
        fetch_fn: FetchFn[T],
        fresh_ttl: timedelta,
        stale_ttl: timedelta,
        config: ProviderConfig,
    ) -> CacheResult[T]:
        """Runs inside the gate."""
        entry = await self._cache.get_fresh(key)
        if entry is not None:
            self._log(f"FILLED WHILE WAITING: {key[:50]}")
            return CacheResult.from_entry(key, CacheStatus.HIT, entry)

        breaker = None
        if config.use_circuit_breaker:
            breaker = self._circuit_breakers.get(
                config.service_id, config.circuit_breaker_config
            )
            if not breaker.can_request():
                raise CircuitOpenError(
                    config.service_id, breaker.get_time_until_reset() or 0
                )

        self._log(f"FETCH: {key[:50]}")
        try:
            value = await self._executor.run(
                fetch_fn,
                policy=config.retry_policy,
                service_id=config.service_id,
                throttle=config.throttle,
            )
        except ServiceError as e:
            if breaker:
                breaker.record_failure(e)
            raise

        if breaker:
            breaker.record_success()

        entry = await self._cache.store(key, value, fresh_ttl, stale_ttl)
        return CacheResult.from_entry(key, CacheStatus.FETCHED, entry)

    async def _fallback(self, key: str, error: ServiceError) -> CacheResult[Any]:
        entry = await self._cache.get_stale(key)
        if entry is not None:
            logger.warning(f"Fetch for {key[:50]} failed, returning stale data: {error}")
            return CacheResult.from_entry(key, CacheStatus.STALE, entry, error=error)

        logger.error(f"No stale data available for {key[:50]}: {error}")
        return CacheResult(key=key, status=CacheStatus.UNAVAILABLE, error=error)

    def _provider(self, service_id: str | None) -> ProviderConfig:
        service_id = service_id or "default"
        config = self._providers.get(service_id)
        if config is None:
            config = ProviderConfig(service_id=service_id)
            self._providers[service_id] = config
        return config

    def _finish(self, result: CacheResult[T]) -> CacheResult[T]:
        self._stats.record(result.status)
        return result

    async def invalidate(self, pattern: str) -> int:
        """Drop fresh and stale entries whose key contains ``pattern``."""
        return await self._cache.invalidate(pattern)

    async def clear(self) -> None:
        await self._cache.clear()

    def reset_circuit(self, service_id: str) -> bool:
        return self._circuit_breakers.reset(service_id)

    def get_health_status(self) -> dict[str, Any]:
        return {
            "results": self._stats.to_dict(),
            "cache": self._cache.get_stats(),
            "gate": self._gate.get_stats().to_dict(),
            "circuit_breakers": self._circuit_breakers.get_all_status(),
            "open_circuits": self._circuit_breakers.get_open_circuits(),
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ReadThroughCache] {message}")
