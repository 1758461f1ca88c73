import asyncio
from datetime import datetime, timedelta

import pytest

from marketfeed.services import ReadThroughCache, RetryExecutor, RetryPolicy, TieredCache


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Records requested delays instead of waiting them out."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=0.5, attempt_timeout=None)


@pytest.fixture
def tiered_cache(clock) -> TieredCache:
    return TieredCache(clock=clock)


@pytest.fixture
def executor(policy, sleeper) -> RetryExecutor:
    return RetryExecutor(policy, sleep=sleeper)


@pytest.fixture
def read_through(tiered_cache, executor) -> ReadThroughCache:
    return ReadThroughCache(tiered_cache, executor=executor)
