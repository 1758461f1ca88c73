"""
Service layer exceptions.

Every upstream failure is tagged with a FailureKind so the retry executor
can decide whether to try again.
"""

from enum import Enum


class FailureKind(str, Enum):
    """How an upstream failure should be treated by the retry executor."""

    RATE_LIMITED = "RATE_LIMITED"  # Quota exhausted, retry with a longer delay
    TRANSIENT = "TRANSIENT"  # Timeout / connection reset, retry
    FATAL = "FATAL"  # Bad request / not found, do not retry


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind: FailureKind = FailureKind.FATAL

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class FatalError(ServiceError):
    """Upstream rejected the request in a way retrying will not fix."""

    kind = FailureKind.FATAL


class TransientError(ServiceError):
    """Upstream failed in a way that may succeed on a later attempt."""

    kind = FailureKind.TRANSIENT


class RequestTimeoutError(TransientError):
    """Request timed out."""

    def __init__(self, service_id: str | None, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    kind = FailureKind.RATE_LIMITED

    def __init__(self, service_id: str | None, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id)


class RetriesExhaustedError(ServiceError):
    """The retry executor gave up after its retry budget ran out."""

    def __init__(self, last_error: ServiceError, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        self.kind = last_error.kind
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            service_id=last_error.service_id,
        )


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    kind = FailureKind.TRANSIENT

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class CacheUnavailableError(ServiceError):
    """Neither fresh nor stale data exists for a key."""

    def __init__(self, key: str, cause: ServiceError | None = None):
        self.key = key
        self.cause = cause
        msg = f"No data available for '{key}'"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg, service_id=cause.service_id if cause else None)


def error_for_kind(
    kind: FailureKind,
    message: str,
    service_id: str | None = None,
    retry_after: float | None = None,
) -> ServiceError:
    """Build the exception matching a failure tag."""
    if kind == FailureKind.RATE_LIMITED:
        return RateLimitError(service_id, retry_after)
    if kind == FailureKind.TRANSIENT:
        return TransientError(message, service_id=service_id)
    return FatalError(message, service_id=service_id)
