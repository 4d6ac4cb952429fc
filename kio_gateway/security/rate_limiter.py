"""
Per-caller sliding-window rate limiting.

Each caller gets its own window (a deque of request timestamps) with its own
lock, so independent callers never contend. A short registry lock only guards
creating and retiring windows. Windows are pruned lazily on every check and
dropped entirely once empty.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from kio_gateway.config import RateLimitConfig
from kio_gateway.errors import RateLimitError

logger = structlog.get_logger()


@dataclass
class _Window:
    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    retired: bool = False


class RateLimiter:
    """Sliding-window limiter: at most ``max_requests`` per ``window_seconds`` per caller."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._registry_lock = threading.Lock()

    def _window_for(self, caller_id: str) -> _Window:
        with self._registry_lock:
            window = self._windows.get(caller_id)
            if window is None:
                window = _Window()
                self._windows[caller_id] = window
            return window

    def _prune(self, window: _Window, now: float) -> None:
        cutoff = now - self.window_seconds
        ts = window.timestamps
        while ts and ts[0] <= cutoff:
            ts.popleft()

    def _discard_if_empty(self, caller_id: str) -> None:
        with self._registry_lock:
            window = self._windows.get(caller_id)
            if window is None:
                return
            with window.lock:
                self._prune(window, self._clock())
                if not window.timestamps:
                    window.retired = True
                    del self._windows[caller_id]

    def check_limit(self, caller_id: str) -> None:
        """Admit and record one request, or raise RateLimitError."""
        while True:
            window = self._window_for(caller_id)
            with window.lock:
                if window.retired:
                    continue
                now = self._clock()
                self._prune(window, now)
                if len(window.timestamps) >= self.max_requests:
                    retry_after = window.timestamps[0] + self.window_seconds - now
                    raise RateLimitError(
                        f"Rate limit exceeded. Max {self.max_requests} requests "
                        f"per {self.window_seconds:g}s",
                        retry_after_seconds=max(retry_after, 0.001),
                    )
                window.timestamps.append(now)
                return

    def get_remaining(self, caller_id: str) -> int:
        with self._registry_lock:
            window = self._windows.get(caller_id)
        if window is None:
            return self.max_requests
        with window.lock:
            self._prune(window, self._clock())
            used = len(window.timestamps)
        if used == 0:
            self._discard_if_empty(caller_id)
        return max(0, self.max_requests - used)

    def get_reset_seconds(self, caller_id: str) -> int:
        """Whole seconds until the oldest recorded request leaves the window."""
        with self._registry_lock:
            window = self._windows.get(caller_id)
        if window is None:
            return 0
        with window.lock:
            now = self._clock()
            self._prune(window, now)
            oldest = window.timestamps[0] if window.timestamps else None
        if oldest is None:
            self._discard_if_empty(caller_id)
            return 0
        return max(0, math.ceil(oldest + self.window_seconds - now))

    def reset(self, caller_id: str) -> None:
        with self._registry_lock:
            window = self._windows.pop(caller_id, None)
            if window is not None:
                window.retired = True

    def clear(self) -> None:
        with self._registry_lock:
            for window in self._windows.values():
                window.retired = True
            self._windows.clear()

    def sweep(self) -> int:
        """Drop every caller whose window has emptied. Returns the number dropped."""
        with self._registry_lock:
            callers = list(self._windows)
        before = len(callers)
        for caller_id in callers:
            self._discard_if_empty(caller_id)
        with self._registry_lock:
            dropped = before - len(self._windows)
        if dropped > 0:
            logger.debug("rate_limiter_sweep", limiter=self.name, dropped=dropped)
        return max(dropped, 0)

    @property
    def tracked_callers(self) -> int:
        with self._registry_lock:
            return len(self._windows)


@dataclass
class RateLimiters:
    """Independent budgets per operation class."""

    search: RateLimiter
    detail: RateLimiter
    health: RateLimiter

    @classmethod
    def from_config(
        cls,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> RateLimiters:
        window = config.window_seconds
        return cls(
            search=RateLimiter(config.search_per_window, window, clock, name="search"),
            detail=RateLimiter(config.detail_per_window, window, clock, name="detail"),
            health=RateLimiter(config.health_per_window, window, clock, name="health"),
        )

    def clear(self) -> None:
        for limiter in (self.search, self.detail, self.health):
            limiter.clear()
