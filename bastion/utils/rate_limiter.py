"""Simple in-memory sliding-window rate limiter."""

import time
from collections import defaultdict


class RateLimiter:
    """Sliding window rate limiter keyed by identifier (e.g. an upstream API name)."""

    def __init__(self, max_requests: int = 45, window_seconds: float = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        self._requests[key] = [t for t in self._requests[key] if t > cutoff]
        return self._requests[key]

    def is_rate_limited(self, key: str = "default") -> bool:
        """Return True if ``key`` has used up its budget for the current window."""
        return len(self._prune(key, time.monotonic())) >= self.max_requests

    def try_acquire(self, key: str = "default") -> bool:
        """Record a request if the budget allows it. Never blocks.

        Returns True if the request may proceed, False if rate limited.
        """
        now = time.monotonic()
        window = self._prune(key, now)
        if len(window) >= self.max_requests:
            return False
        window.append(now)
        return True

    def remaining(self, key: str = "default") -> int:
        """Requests left in the current window."""
        return max(0, self.max_requests - len(self._prune(key, time.monotonic())))

    def reset(self, key: str = "default") -> None:
        self._requests.pop(key, None)
