"""
SingleFlightGate - serializes upstream work per key.

At most one holder runs per key at a time. Waiters queue on the same
lock and, once admitted, are expected to re-check the cache themselves:
the gate gives mutual exclusion, not result broadcast.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class GateScope(str, Enum):
    """Serialization granularity for a provider."""

    PER_KEY = "PER_KEY"  # One in-flight fetch per cache key
    GLOBAL = "GLOBAL"  # One in-flight fetch per provider (shared quota)


@dataclass
class _Slot:
    """In-flight record for a gate key. Lives while anyone holds or waits."""

    key: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SingleFlightGate:
    """
    Per-key mutual exclusion for async work.

    The protected function runs in its own task. If the caller is cancelled
    while it runs, the task keeps going and releases the slot when it ends,
    so the next waiter never overlaps with it.

    Usage:
        gate = SingleFlightGate()

        async def refresh():
            entry = await cache.get_fresh(key)
            if entry:
                return entry.value
            return await fetch_and_store()

        value = await gate.run(key, refresh)
    """

    def __init__(self, debug: bool = False):
        self._slots: dict[str, _Slot] = {}
        self._debug = debug
        self._stats = GateStats()

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` while holding the slot for ``key``.

        Args:
            key: Gate key (a cache key, or a provider name for global scope)
            fn: Async function to execute exclusively

        Returns:
            Whatever ``fn`` returns; its exceptions propagate unchanged
        """
        slot = self._slots.get(key)
        if slot is None:
            slot = _Slot(key=key)
            self._slots[key] = slot
        slot.users += 1

        if slot.lock.locked():
            self._stats.contended += 1
            self._log(f"WAIT: {key[:50]}")

        try:
            await slot.lock.acquire()
        except BaseException:
            self._leave(slot)
            raise

        self._stats.acquired += 1
        self._log(f"ACQUIRED: {key[:50]}")
        task = asyncio.create_task(self._run_and_release(slot, fn))
        task.add_done_callback(_consume_exception)
        return await asyncio.shield(task)

    async def _run_and_release(
        self,
        slot: _Slot,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await fn()
        finally:
            slot.lock.release()
            self._leave(slot)
            self._log(f"RELEASED: {slot.key[:50]}")

    def _leave(self, slot: _Slot) -> None:
        slot.users -= 1
        if slot.users == 0 and self._slots.get(slot.key) is slot:
            del self._slots[slot.key]

    def get_in_flight_count(self) -> int:
        """Number of keys currently held or waited on."""
        return len(self._slots)

    def get_in_flight_keys(self) -> list[str]:
        return list(self._slots.keys())

    def get_stats(self) -> "GateStats":
        self._stats.in_flight = len(self._slots)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[SingleFlightGate] {message}")


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    # A shielded task whose caller was cancelled has nobody awaiting it.
    if not task.cancelled():
        task.exception()


class GateStats:
    """Statistics for the single-flight gate."""

    def __init__(self):
        self.acquired: int = 0  # Times a holder entered
        self.contended: int = 0  # Callers that had to wait
        self.in_flight: int = 0  # Keys currently held or waited on

    @property
    def contention_rate(self) -> float:
        if self.acquired == 0:
            return 0.0
        return self.contended / self.acquired

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "acquired": self.acquired,
            "contended": self.contended,
            "in_flight": self.in_flight,
            "contention_rate": f"{self.contention_rate:.2%}",
        }
