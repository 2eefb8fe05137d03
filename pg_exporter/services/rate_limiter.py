"""Rate limiting for the /metrics endpoint using a fixed window.

Every /metrics request runs a full collection cycle against every target,
so it is by far the most expensive thing a client can ask for.  The
single-flight gate stops scrapes from overlapping; this limiter stops a
client from running them back to back.

FIXED WINDOW
--------------
Each client key gets a counter that resets every ``window_seconds``.
Requests beyond ``max_requests`` inside the current window are rejected
until it rolls over.  The well-known weakness, a burst straddling two
windows, does not matter here: Prometheus scrapes on a steady interval
(typically 15s or more) and the default allows 2 requests per 5s, so a
legitimate scraper never comes close.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """The outcome of a rate limit check.

    allowed:      True if the request may proceed.
    remaining:    Requests left in the current window.
    limit:        Requests allowed per window.
    reset_after:  Seconds until the current window ends.
    """

    allowed: bool
    remaining: int
    limit: int
    reset_after: float


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """max_requests allowed per window_seconds, per client key."""

    max_requests: int = 2
    window_seconds: float = 5.0


@runtime_checkable
class RateLimiter(Protocol):
    def check(self, key: str) -> RateLimitResult: ...
    def reset(self) -> None: ...


class FixedWindowRateLimiter:
    """In-process fixed-window counter.

    One exporter process serves one Prometheus, so there is no need to
    share counters between instances.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._clock = clock
        # key -> (window_start, hits_in_window)
        self._windows: dict[str, tuple[float, int]] = {}

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        window = self.config.window_seconds
        start, hits = self._windows.get(key, (now, 0))

        if now - start >= window:
            start, hits = now, 0

        reset_after = max(0.0, start + window - now)

        if hits >= self.config.max_requests:
            self._windows[key] = (start, hits)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=self.config.max_requests,
                reset_after=reset_after,
            )

        hits += 1
        self._windows[key] = (start, hits)
        self._evict_expired(now)
        return RateLimitResult(
            allowed=True,
            remaining=self.config.max_requests - hits,
            limit=self.config.max_requests,
            reset_after=reset_after,
        )

    def reset(self) -> None:
        """Forget every window (used in tests)."""
        self._windows.clear()

    def _evict_expired(self, now: float) -> None:
        window = self.config.window_seconds
        expired = [k for k, (start, _) in self._windows.items() if now - start >= window]
        for k in expired:
            del self._windows[k]
