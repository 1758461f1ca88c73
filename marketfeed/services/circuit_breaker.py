"""
CircuitBreaker - stops calling a provider that keeps failing.

States:
- CLOSED: Normal operation, fetches go upstream
- OPEN: Provider is failing, the orchestrator serves stale data directly
- HALF_OPEN: One trial fetch is let through to test recovery

Only fetches that exhausted their retries count as failures; fatal errors
say nothing about provider health and are ignored, except that a fatal
answer to the half-open trial shows the provider is reachable again.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger

from marketfeed.services.errors import FailureKind, ServiceError


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Exhausted fetches before opening
    reset_timeout: timedelta = timedelta(seconds=30)  # Time before half-open
    half_open_max_requests: int = 1


class CircuitBreaker:
    """
    Circuit breaker for a single provider.

    Usage:
        cb = CircuitBreaker("coingecko")

        if not cb.can_request():
            return await serve_stale()

        try:
            value = await executor.run(fetch)
            cb.record_success()
        except ServiceError as e:
            cb.record_failure(e)
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._half_open_requests = 0

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the timeout passes."""
        if (
            self._state == CircuitState.OPEN
            and self._opened_at
            and self._clock() >= self._opened_at + self.config.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._half_open_requests = 0
            logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")
        return self._state

    def can_request(self) -> bool:
        """Check if a fetch may go upstream, reserving the half-open trial."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True

        if current_state == CircuitState.HALF_OPEN:
            if self._half_open_requests < self.config.half_open_max_requests:
                self._half_open_requests += 1
                return True

        return False

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            self._state = CircuitState.CLOSED
            self._opened_at = None
            self._half_open_requests = 0
            logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")
        self._failure_count = 0

    def record_failure(self, error: ServiceError | None = None) -> None:
        if error is not None and error.kind == FailureKind.FATAL:
            # The provider answered, so the half-open trial request succeeded
            if self._state == CircuitState.HALF_OPEN:
                self.record_success()
            return

        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN or (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_requests = 0
        self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self.config.reset_timeout
        return max(0.0, (reset_at - self._clock()).total_seconds())

    def get_status(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "opened_at": self._opened_at.isoformat() if self._opened_at else None,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    One breaker per provider, created on first use.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("coingecko")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a provider."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                config or self._default_config,
                clock=self._clock,
            )
        return self._breakers[service_id]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
