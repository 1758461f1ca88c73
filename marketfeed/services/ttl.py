"""
Named cache duration classes.

Each logical operation is bound to one fresh-tier policy. The stale tier
uses a single retention that is longer than every fresh policy.
"""

from datetime import timedelta
from enum import Enum
from typing import Mapping, Union


class TTLPolicy(str, Enum):
    """Fresh-tier duration classes, ordered by how fast the data moves."""

    REALTIME = "realtime"  # Candles
    SHORT = "short"  # Prices, market lists
    MEDIUM = "medium"  # Details, history
    LONG = "long"  # Search results
    EXTENDED = "extended"  # News


DEFAULT_TTLS: dict[TTLPolicy, timedelta] = {
    TTLPolicy.REALTIME: timedelta(minutes=1),
    TTLPolicy.SHORT: timedelta(minutes=2),
    TTLPolicy.MEDIUM: timedelta(minutes=5),
    TTLPolicy.LONG: timedelta(minutes=10),
    TTLPolicy.EXTENDED: timedelta(minutes=15),
}

DEFAULT_STALE_TTL = timedelta(hours=1)

TTLLike = Union[TTLPolicy, timedelta, int, float]


def to_timedelta(
    ttl: TTLLike,
    policies: Mapping[TTLPolicy, timedelta] | None = None,
) -> timedelta:
    """Resolve a policy name, timedelta or number of seconds to a timedelta."""
    if isinstance(ttl, TTLPolicy):
        return (policies or DEFAULT_TTLS)[ttl]
    if isinstance(ttl, timedelta):
        return ttl
    if isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
        return timedelta(seconds=ttl)
    raise TypeError(f"Unsupported TTL value: {ttl!r}")
