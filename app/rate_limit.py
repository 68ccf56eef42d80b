"""In-memory sliding-window rate limiter keyed by caller address.

Each key keeps a deque of request timestamps; entries older than the window are
dropped from the left before the count is checked. Single-process only.
"""

import math
from collections import defaultdict, deque
from dataclasses import dataclass
from time import monotonic
from typing import Callable


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: int


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = monotonic) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: defaultdict[str, deque[float]] = defaultdict(deque)
        self._next_sweep: float | None = None

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    def _sweep(self, expire_before: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= expire_before]
        for key in stale:
            del self._hits[key]

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        expire_before = now - self.window_seconds

        # Addresses idle for a whole window are dropped at most once per window.
        if self._next_sweep is None or now >= self._next_sweep:
            self._sweep(expire_before)
            self._next_sweep = now + self.window_seconds

        hits = self._hits[key]
        while hits and hits[0] <= expire_before:
            hits.popleft()

        allowed = len(hits) < self.max_requests
        if allowed:
            hits.append(now)

        reset_after = self.window_seconds - (now - hits[0]) if hits else self.window_seconds
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(self.max_requests - len(hits), 0),
            reset_after=max(math.ceil(reset_after), 0),
        )

    def headers(self, decision: RateLimitDecision) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(decision.limit),
            "RateLimit-Remaining": str(decision.remaining),
            "RateLimit-Reset": str(decision.reset_after),
        }
