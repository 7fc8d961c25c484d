"""In-memory fixed-window rate limiting per client address.

Each ``(scope, client)`` pair gets a counter that resets when its window
expires.  Counters live in process memory, which is enough for the single
uvicorn worker this service runs as.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from starlette.requests import Request

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Client address as seen by the server."""
    return request.client.host if request.client else "127.0.0.1"


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """Allow at most ``limit`` hits per ``window_seconds`` for each key.

    Args:
        limit: Hits allowed per window.
        window_seconds: Window length.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> bool:
        """Count one hit for ``key``.  Returns ``False`` when over the limit."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[key] = window
            self._prune(now)

        window.count += 1
        if window.count > self.limit:
            logger.warning("Rate limited: %s (%d hits in window).", key, window.count)
            return False
        return True

    def retry_after(self, key: str) -> int:
        """Seconds until the window for ``key`` resets."""
        window = self._windows.get(key)
        if window is None:
            return 0
        remaining = self.window_seconds - (self._clock() - window.started_at)
        return max(0, int(remaining + 0.999))

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
