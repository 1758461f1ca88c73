"""
Throttles that pace upstream calls for providers with a shared quota.

The retry executor calls ``before_call``/``after_call`` around every
attempt. Attempts run inside the provider's gate, so a pacing delay is
paid while the gate is still held and the aggregate call rate stays under
quota.
"""

import asyncio
import time
from typing import Awaitable, Callable

from loguru import logger


class Throttle:
    """No-op throttle. Subclasses pace calls before or after each attempt."""

    async def before_call(self) -> None:
        return None

    async def after_call(self) -> None:
        return None


class PacingThrottle(Throttle):
    """Fixed delay after every completed call, success or failure."""

    def __init__(
        self,
        delay: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if delay < 0:
            raise ValueError("Pacing delay must be >= 0")
        self.delay = delay
        self._sleep = sleep

    async def after_call(self) -> None:
        if self.delay > 0:
            await self._sleep(self.delay)


class TokenBucketThrottle(Throttle):
    """Token bucket acquired before every call."""

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError("Token bucket rate must be > 0")
        self.rate = rate
        self.burst = max(1, burst)
        self._tokens = float(self.burst)
        self._clock = clock
        self._sleep = sleep
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    async def before_call(self) -> None:
        while True:
            async with self._lock:
                now = self._clock()
                elapsed = max(0.0, now - self._updated_at)
                self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
                self._updated_at = now

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return

                wait = (1.0 - self._tokens) / self.rate

            logger.debug(f"[TokenBucketThrottle] Waiting {wait:.3f}s for a token")
            await self._sleep(max(wait, 0.001))
