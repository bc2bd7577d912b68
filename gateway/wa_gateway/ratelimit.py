"""Fixed-window request rate limiting keyed by client address."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import RateLimited
from .models import RateLimitWindow


@dataclass(frozen=True)
class RateLimitDecision:
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(math.ceil(self.reset_after)),
        }


def describe_window(window_seconds: float) -> str:
    """Human-readable window length, e.g. ``"15 minutes"``."""
    if window_seconds >= 3600 and window_seconds % 3600 == 0:
        value, unit = int(window_seconds // 3600), "hour"
    elif window_seconds >= 60 and window_seconds % 60 == 0:
        value, unit = int(window_seconds // 60), "minute"
    else:
        value, unit = math.ceil(window_seconds), "second"
    return f"{value} {unit}{'' if value == 1 else 's'}"


class RateLimiter:
    """Per-key request counter over a fixed window.

    Windows start on the first request from a key and reset once they elapse;
    expired windows are purged lazily on the next call.

    Config keys:
        window_ms: Window length in milliseconds (default 15 minutes)
        max_requests: Requests allowed per window (default ``100``)
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = config or {}
        self._window_seconds: float = int(config.get("window_ms", 15 * 60 * 1000)) / 1000
        self._max_requests: int = int(config.get("max_requests", 100))
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def _purge(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for key in expired:
            del self._windows[key]

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for ``key``.

        Raises:
            RateLimited: the key already used up its current window.
        """
        now = self._clock()
        self._purge(now)

        window = self._windows.get(key)
        if window is None:
            window = RateLimitWindow(count=0, reset_at=now + self._window_seconds)
            self._windows[key] = window

        reset_after = window.reset_at - now
        if window.count >= self._max_requests:
            raise RateLimited(
                describe_window(self._window_seconds), reset_after, self._max_requests
            )

        window.count += 1
        return RateLimitDecision(
            limit=self._max_requests,
            remaining=self._max_requests - window.count,
            reset_after=reset_after,
        )

    def tracked_keys(self) -> int:
        return len(self._windows)
