"""
Dual-tier in-memory cache.

Features:
- Fresh tier: short TTL, authoritative while unexpired
- Stale tier: long TTL, read only as a fallback
- Lazy expiry, evaluated at read time
- Immutable entries replaced atomically under an asyncio lock
"""

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

Clock = Callable[[], datetime]

MAX_KEY_LENGTH = 200


def make_cache_key(operation: str, **params: Any) -> str:
    """
    Build a deterministic cache key.

    Identifiers are lower-cased and stripped, parameters sorted by name and
    ``None`` values dropped, so ``("Coin", id="BTC ")`` and
    ``("coin", id="btc")`` map to the same key.
    """
    op = operation.strip().lower()
    parts = []
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip().lower()
        elif isinstance(value, (list, tuple)):
            value = ",".join(str(v).strip().lower() for v in value)
        parts.append(f"{name}={value}")

    full_key = f"{op}:{'&'.join(parts)}" if parts else op

    # Hash long keys
    if len(full_key) > MAX_KEY_LENGTH:
        hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
        return f"{op}:{hash_val}"

    return full_key


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Never mutated, only replaced."""

    value: T
    stored_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def age(self, now: datetime) -> timedelta:
        return now - self.stored_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    writes: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "writes": self.writes,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class CacheStore:
    """
    One cache namespace with TTL entries.

    Usage:
        store = CacheStore("fresh")

        entry = await store.get("coin:id=bitcoin")
        if entry:
            return entry.value

        await store.set("coin:id=bitcoin", coin, ttl=timedelta(minutes=2))
    """

    def __init__(
        self,
        name: str,
        clock: Clock = datetime.now,
        debug: bool = False,
    ):
        self.name = name
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(
        self, key: str, include_expired: bool = False
    ) -> CacheEntry[Any] | None:
        """
        Get an entry.

        Expired entries are reported as missing unless ``include_expired``
        is set. They are left in place either way; only a newer write or
        ``cleanup_expired`` removes them.
        """
        async with self._lock:
            entry = self._memory.get(key)

            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_expired(self._clock()) and not include_expired:
                self._stats.misses += 1
                self._stats.expired += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry

    async def set(self, key: str, value: Any, ttl: timedelta) -> CacheEntry[Any]:
        """Store a new entry, replacing any previous one for the key."""
        if ttl <= timedelta(0):
            raise ValueError(f"TTL must be positive, got {ttl}")

        now = self._clock()
        entry = CacheEntry(value=value, stored_at=now, expires_at=now + ttl)

        async with self._lock:
            self._memory[key] = entry
            self._stats.writes += 1
            self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

        return entry

    async def invalidate(self, pattern: str) -> int:
        """Remove all keys containing ``pattern``. Returns the count removed."""
        async with self._lock:
            keys_to_delete = [k for k in self._memory if pattern in k]
            for key in keys_to_delete:
                del self._memory[key]

            if keys_to_delete:
                self._log(
                    f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'"
                )

            return len(keys_to_delete)

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def __len__(self) -> int:
        return len(self._memory)

    def get_stats(self) -> CacheStats:
        self._stats.size = len(self._memory)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheStore:{self.name}] {message}")


class TieredCache:
    """
    Fresh and stale namespaces for the read-through cache.

    Constructed once per process and handed to ``ReadThroughCache``.
    """

    def __init__(self, clock: Clock = datetime.now, debug: bool = False):
        self.fresh = CacheStore("fresh", clock=clock, debug=debug)
        self.stale = CacheStore("stale", clock=clock, debug=debug)

    async def get_fresh(self, key: str) -> CacheEntry[Any] | None:
        return await self.fresh.get(key)

    async def get_stale(self, key: str) -> CacheEntry[Any] | None:
        """Stale entries are returned even past their own expiry."""
        return await self.stale.get(key, include_expired=True)

    async def store(
        self,
        key: str,
        value: Any,
        fresh_ttl: timedelta,
        stale_ttl: timedelta,
    ) -> CacheEntry[Any]:
        """Write a fetched value to both tiers. Returns the fresh entry."""
        entry = await self.fresh.set(key, value, fresh_ttl)
        await self.stale.set(key, value, stale_ttl)
        return entry

    async def invalidate(self, pattern: str) -> int:
        removed = await self.fresh.invalidate(pattern)
        removed += await self.stale.invalidate(pattern)
        return removed

    async def clear(self) -> None:
        await self.fresh.clear()
        await self.stale.clear()

    async def cleanup_expired(self) -> int:
        removed = await self.fresh.cleanup_expired()
        removed += await self.stale.cleanup_expired()
        return removed

    def get_stats(self) -> dict[str, Any]:
        return {
            "fresh": self.fresh.get_stats().to_dict(),
            "stale": self.stale.get_stats().to_dict(),
        }
