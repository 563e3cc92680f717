"""Token-bucket rate limiter for plugin commands."""

import time
from typing import Callable

from buddian.plugins.types import RateLimitPolicy


class RateLimiter:
    def __init__(
        self,
        max_tokens: int = 5,
        refill_rate: float = 1.0,
        clock: Callable[[], float] = time.time,
        prune_interval: float = 60.0,
    ):
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate  # tokens per second
        self.prune_interval = prune_interval
        self._clock = clock
        self._buckets: dict[str, tuple[float, float]] = {}
        self._last_prune = clock()

    @classmethod
    def from_policy(cls, policy: RateLimitPolicy, clock: Callable[[], float] = time.time) -> "RateLimiter":
        """Bucket that holds ``requests`` tokens and refills them over one window."""
        return cls(
            max_tokens=policy.requests,
            refill_rate=policy.requests / (policy.window_ms / 1000),
            clock=clock,
        )

    def _refilled(self, key: str, now: float) -> float:
        tokens, last_refill = self._buckets.get(key, (float(self.max_tokens), now))
        return min(self.max_tokens, tokens + (now - last_refill) * self.refill_rate)

    def allow(self, key: str) -> bool:
        now = self._clock()
        if now - self._last_prune >= self.prune_interval:
            self.prune(now)

        tokens = self._refilled(key, now)
        if tokens >= 1:
            self._buckets[key] = (tokens - 1, now)
            return True
        self._buckets[key] = (tokens, now)
        return False

    def prune(self, now: float | None = None) -> None:
        """Drop buckets that have refilled completely; they behave like new ones."""
        now = self._clock() if now is None else now
        full = [key for key in self._buckets if self._refilled(key, now) >= self.max_tokens]
        for key in full:
            del self._buckets[key]
        self._last_prune = now

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)
