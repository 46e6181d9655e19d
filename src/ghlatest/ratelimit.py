"""Process-wide tracking of the API call budget.

The state is advisory. It is updated after every API response and consulted
before a request so that a reported reset time is respected, but it never
blocks calls beyond that.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
import typing

logger = logging.getLogger(__name__)

Clock = typing.Callable[[], float]


def _header_int(headers: typing.Mapping[str, str], name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("ignoring malformed %s header %r", name, value)
        return None


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitSnapshot:
    limit: int | None = None
    remaining: int | None = None
    # epoch seconds
    reset_at: float | None = None
    updated_at: float | None = None


class RateLimitState:
    """Remaining call budget and reset time for the current credential"""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = RateLimitSnapshot()

    def update(self, headers: typing.Mapping[str, str]) -> RateLimitSnapshot:
        """Record the rate limit headers of an API response"""
        limit = _header_int(headers, "X-RateLimit-Limit")
        remaining = _header_int(headers, "X-RateLimit-Remaining")
        reset = _header_int(headers, "X-RateLimit-Reset")
        with self._lock:
            if limit is None and remaining is None and reset is None:
                return self._snapshot
            previous = self._snapshot
            self._snapshot = RateLimitSnapshot(
                limit=limit if limit is not None else previous.limit,
                remaining=remaining if remaining is not None else previous.remaining,
                reset_at=float(reset) if reset is not None else previous.reset_at,
                updated_at=self._clock(),
            )
            snapshot = self._snapshot
        if snapshot.remaining is not None and snapshot.remaining == 0:
            logger.warning(
                "API rate limit exhausted, resets in %.0f seconds",
                self.wait_time() or 0.0,
            )
        return snapshot

    def snapshot(self) -> RateLimitSnapshot:
        with self._lock:
            return self._snapshot

    def wait_time(self) -> float | None:
        """Seconds until the budget resets, None if calls may proceed"""
        snapshot = self.snapshot()
        if snapshot.remaining is None or snapshot.remaining > 0:
            return None
        if snapshot.reset_at is None:
            return None
        delay = snapshot.reset_at - self._clock()
        return delay if delay > 0 else None

    def reset(self) -> None:
        with self._lock:
            self._snapshot = RateLimitSnapshot()
