"""
RetryExecutor - bounded retries with exponential backoff.

Failures are classified as rate-limited, transient or fatal:
- RATE_LIMITED: retried with a longer base delay and its own, larger budget
- TRANSIENT: retried up to ``max_retries`` times
- FATAL: raised immediately
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from marketfeed.services.errors import (
    FailureKind,
    FatalError,
    RequestTimeoutError,
    RetriesExhaustedError,
    ServiceError,
    TransientError,
)
from marketfeed.services.result import FetchResult
from marketfeed.services.throttle import Throttle

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry tuning for one provider."""

    max_retries: int = 3
    max_rate_limit_retries: int = 6
    base_delay: float = 0.5  # Seconds before the first transient retry
    rate_limit_base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0  # Fraction of the delay added at random, 0 disables
    attempt_timeout: float | None = 10.0  # Per-attempt bound, None disables

    def delay_for(self, kind: FailureKind, retry_index: int) -> float:
        """Backoff before retry ``retry_index + 1`` of failures of this kind."""
        base = (
            self.rate_limit_base_delay
            if kind == FailureKind.RATE_LIMITED
            else self.base_delay
        )
        return min(base * self.multiplier**retry_index, self.max_delay)


@dataclass
class FetchAttempt:
    """Ephemeral retry state, passed to the ``on_retry`` hook."""

    attempt_number: int
    next_delay: float
    error: ServiceError


def classify_error(error: BaseException, service_id: str | None = None) -> ServiceError:
    """Map an exception raised by a fetch function to a tagged ServiceError."""
    if isinstance(error, ServiceError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return RequestTimeoutError(service_id, 0)
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return TransientError(str(error) or type(error).__name__, service_id=service_id)
    return FatalError(f"{type(error).__name__}: {error}", service_id=service_id)


class RetryExecutor:
    """
    Runs a fetch function until it succeeds, fails fatally or runs out of
    retries.

    Usage:
        executor = RetryExecutor(RetryPolicy(max_retries=3))

        value = await executor.run(fetch_prices, service_id="coingecko")
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        on_retry: Callable[[FetchAttempt], None] | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._on_retry = on_retry

    async def run(
        self,
        fetch_fn: Callable[[], Awaitable[FetchResult[T] | T]],
        policy: RetryPolicy | None = None,
        service_id: str | None = None,
        throttle: Throttle | None = None,
    ) -> T:
        """
        Execute ``fetch_fn`` under the retry policy.

        The fetch function may return a ``FetchResult`` (preferred), a bare
        value, or raise; raised exceptions go through ``classify_error``.
        When a throttle is given its hooks run around every attempt.

        Raises:
            FatalError: on the first fatal failure
            RetriesExhaustedError: when the retry budget for the failure
                kind is used up
        """
        policy = policy or self.policy
        transient_failures = 0
        rate_limited_failures = 0
        attempt = 0

        while True:
            attempt += 1
            outcome = await self._attempt(fetch_fn, policy, service_id, throttle)
            if isinstance(outcome, FetchResult):
                return outcome.value

            error = outcome
            if error.kind == FailureKind.FATAL:
                logger.warning(f"Fatal upstream failure, not retrying: {error}")
                raise error

            if error.kind == FailureKind.RATE_LIMITED:
                rate_limited_failures += 1
                retry_index = rate_limited_failures - 1
                budget_used = rate_limited_failures > policy.max_rate_limit_retries
            else:
                transient_failures += 1
                retry_index = transient_failures - 1
                budget_used = transient_failures > policy.max_retries

            if budget_used:
                logger.warning(
                    f"Retries exhausted after {attempt} attempts"
                    f" ({service_id or 'upstream'}): {error}"
                )
                raise RetriesExhaustedError(error, attempt) from error

            delay = self._next_delay(policy, error, retry_index)
            logger.warning(
                f"Upstream call failed ({error.kind.value}),"
                f" retry {attempt} in {delay:.2f}s: {error}"
            )
            if self._on_retry:
                self._on_retry(FetchAttempt(attempt, delay, error))
            await self._sleep(delay)

    async def _attempt(
        self,
        fetch_fn,
        policy: RetryPolicy,
        service_id: str | None,
        throttle: Throttle | None,
    ):
        """Run one attempt. Returns a successful FetchResult or a ServiceError."""
        if throttle:
            await throttle.before_call()
        try:
            if policy.attempt_timeout:
                outcome = await asyncio.wait_for(fetch_fn(), policy.attempt_timeout)
            else:
                outcome = await fetch_fn()
        except asyncio.TimeoutError:
            return RequestTimeoutError(service_id, policy.attempt_timeout or 0)
        except Exception as e:
            return classify_error(e, service_id)
        finally:
            if throttle:
                await throttle.after_call()

        if not isinstance(outcome, FetchResult):
            return FetchResult.success(outcome)
        if outcome.failure is not None:
            return outcome.failure.to_error()
        return outcome

    def _next_delay(
        self, policy: RetryPolicy, error: ServiceError, retry_index: int
    ) -> float:
        delay = policy.delay_for(error.kind, retry_index)
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = min(max(delay, retry_after), policy.max_delay)
        if policy.jitter > 0:
            delay += random.uniform(0, delay * policy.jitter)
        return delay
