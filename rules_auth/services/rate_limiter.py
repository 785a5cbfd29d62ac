"""Per-client request rate limiting for the auth procedures."""

import logging
import math
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per key within ``window_seconds``.

    Counters live in process memory, so each worker enforces its own limit.

    Args:
        max_requests: Requests allowed per key inside one window
        window_seconds: Length of the sliding window
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}

    def hit(self, key: str) -> int | None:
        """Record a request for ``key``.

        Returns:
            None if the request is allowed, otherwise the whole seconds to
            wait before the next request can succeed
        """
        now = self._clock()
        self._prune(now)

        timestamps = self._requests.setdefault(key, deque())
        if len(timestamps) >= self.max_requests:
            retry_after = max(1, math.ceil(timestamps[0] + self.window_seconds - now))
            logger.warning(f"Rate limit exceeded for {key}, retry in {retry_after}s")
            return retry_after

        timestamps.append(now)
        return None

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        for key in list(self._requests):
            timestamps = self._requests[key]
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()
            if not timestamps:
                del self._requests[key]
