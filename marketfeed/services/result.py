"""
Tagged outcome returned by fetch functions.

Fetch functions report failures by returning ``FetchResult.fail(...)``
instead of raising, so the retry executor never has to guess the failure
kind from an exception type.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from marketfeed.services.errors import FailureKind, ServiceError, error_for_kind

T = TypeVar("T")


@dataclass(frozen=True)
class FetchFailure:
    """Why an upstream call failed."""

    kind: FailureKind
    message: str
    service_id: str | None = None
    retry_after: float | None = None  # Seconds, when upstream says so

    def to_error(self) -> ServiceError:
        return error_for_kind(
            self.kind, self.message, self.service_id, self.retry_after
        )


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Either a value or a tagged failure."""

    value: T | None = None
    failure: FetchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "FetchResult[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        kind: FailureKind,
        message: str,
        service_id: str | None = None,
        retry_after: float | None = None,
    ) -> "FetchResult[T]":
        return cls(
            failure=FetchFailure(
                kind=kind,
                message=message,
                service_id=service_id,
                retry_after=retry_after,
            )
        )

    def map(self, fn) -> "FetchResult":
        """Transform the value of a successful result, pass failures through."""
        if self.failure is not None:
            return FetchResult(failure=self.failure)
        return FetchResult(value=fn(self.value))
