"""
Sliding window rate limiter.

Admission control keyed by an arbitrary string (usually the sender address).
State lives on the limiter instance; every engine owns its own limiter.
"""

import time
from typing import Callable, Dict, List, Optional

from ..config import settings


def _now_ms() -> float:
    return time.time() * 1000


class RateLimiter:
    """
    In-memory sliding window rate limiter.

    A call is admitted when fewer than ``max_requests`` admitted calls for the
    same key fall inside the trailing window. Rejected calls are not recorded,
    so a caller that backs off is not penalised for the attempts it made while
    over the limit.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_ms: Optional[int] = None,
        clock: Callable[[], float] = _now_ms,
    ):
        self.max_requests = max_requests if max_requests is not None else settings.rate_limit_max_requests
        self.window_ms = window_ms if window_ms is not None else settings.rate_limit_window_ms
        self._clock = clock
        self._requests: Dict[str, List[float]] = {}

    def _recent(self, key: str, now: float) -> List[float]:
        return [t for t in self._requests.get(key, []) if now - t < self.window_ms]

    def check_limit(self, key: str) -> bool:
        """
        Record an attempt for ``key``.

        Returns:
            True if the attempt is admitted, False if the key is over its limit
        """
        now = self._clock()
        recent = self._recent(key, now)

        if len(recent) >= self.max_requests:
            self._requests[key] = recent
            return False

        recent.append(now)
        self._requests[key] = recent
        return True

    def remaining(self, key: str) -> int:
        """How many more calls ``key`` may make in the current window."""
        return max(0, self.max_requests - len(self._recent(key, self._clock())))

    def reset(self, key: str) -> None:
        self._requests.pop(key, None)
