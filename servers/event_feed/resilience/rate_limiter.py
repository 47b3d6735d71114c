"""Sliding-window rate limiting for outbound provider calls."""

import time
from collections import deque
from typing import Any, Callable

import structlog

from ..errors import RateLimitedError

logger = structlog.get_logger()

SECOND = 1.0
MINUTE = 60.0


class SlidingWindowRateLimiter:
    """Per-source limiter enforcing a per-second and a per-minute ceiling.

    Keeps the timestamps of the last minute of admitted requests. Checking
    and recording happen in one synchronous call so concurrent tasks cannot
    both slip past the ceiling.
    """

    def __init__(
        self,
        requests_per_second: int = 2,
        requests_per_minute: int = 30,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.requests_per_second = requests_per_second
        self.requests_per_minute = requests_per_minute
        self.name = name
        self._clock = clock
        self._requests: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= MINUTE:
            self._requests.popleft()

    def acquire(self) -> None:
        """Record a request or raise if a ceiling would be exceeded.

        Raises:
            RateLimitedError: Carries a retry-after estimate in seconds
        """
        now = self._clock()
        self._prune(now)

        last_second = [t for t in self._requests if now - t < SECOND]
        if len(last_second) >= self.requests_per_second:
            retry_after = SECOND - (now - last_second[0])
            self._reject("per-second limit", retry_after)

        if len(self._requests) >= self.requests_per_minute:
            retry_after = MINUTE - (now - self._requests[0])
            self._reject("per-minute limit", retry_after)

        self._requests.append(now)

    def _reject(self, reason: str, retry_after: float) -> None:
        retry_after = max(retry_after, 0.0)
        logger.warning(
            "rate_limited",
            source=self.name,
            reason=reason,
            retry_after=round(retry_after, 3),
        )
        raise RateLimitedError(self.name, reason, retry_after)

    @property
    def recent_requests(self) -> int:
        """Number of admitted requests in the current minute window."""
        self._prune(self._clock())
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "requests_last_minute": self.recent_requests,
            "requests_per_second": self.requests_per_second,
            "requests_per_minute": self.requests_per_minute,
        }
