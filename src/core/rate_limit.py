"""Global minimum-spacing limiter for accepted events."""

from __future__ import annotations

from typing import Optional

DEFAULT_MIN_INTERVAL = 0.5


class RateLimiter:
    """Allow at most one event per ``min_interval`` seconds.

    There is no queue: an event arriving too soon is simply refused and the
    event source is expected to deliver the state change again later.
    """

    def __init__(self, min_interval: float = DEFAULT_MIN_INTERVAL) -> None:
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self._min_interval = min_interval
        self._last_allowed: Optional[float] = None

    def allow(self, now: float) -> bool:
        if self._last_allowed is not None and now - self._last_allowed < self._min_interval:
            return False
        self._last_allowed = now
        return True
