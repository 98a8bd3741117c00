"""Sliding-window admission control for agent invocations."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_REQUESTS = 5


class SlidingWindowRateLimiter:
    """Admit at most ``max_requests`` calls per ``window_seconds``.

    Owned by whoever triggers invocations; there is no shared module state.
    """

    def __init__(
        self,
        *,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0.")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0.")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._admitted: deque[float] = deque()
        self._lock = threading.Lock()

    def admit(self) -> bool:
        """Record and accept one admission, or refuse when the window is full."""

        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._admitted) >= self.max_requests:
                return False
            self._admitted.append(now)
            return True

    def remaining(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return self.max_requests - len(self._admitted)

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._admitted and self._admitted[0] <= cutoff:
            self._admitted.popleft()
