"""Sliding-window dispatch rate limiter."""

from collections import deque


class RateLimiter:
    """At most ``max_per_window`` dispatches per sliding window, with a minimum gap.

    Times are monotonic seconds supplied by the caller.
    """

    def __init__(self, max_per_window: int = 6, min_gap: float = 8.0, window: float = 60.0):
        self.max_per_window = max_per_window
        self.min_gap = min_gap
        self.window = window
        self._timestamps: deque[float] = deque()
        self.last_response_time: float | None = None

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    def allows(self, now: float) -> bool:
        """True if a dispatch at ``now`` satisfies both constraints."""
        self._prune(now)
        if len(self._timestamps) >= self.max_per_window:
            return False
        if self.last_response_time is not None and now - self.last_response_time < self.min_gap:
            return False
        return True

    def record(self, now: float) -> None:
        self._timestamps.append(now)
        self.last_response_time = now

    def count_in_window(self, now: float) -> int:
        self._prune(now)
        return len(self._timestamps)
