# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fixed-window rate limiter shared by every worker.

The limiter counts permits inside a fixed window of ``interval`` seconds.
The first acquisition after the window has elapsed opens a new window and
resets the counter. A single lock guards the check-and-increment so two
callers can never both take the last permit.

Fixed windows allow up to ``2 * limit`` permits in a short span straddling a
window boundary. This is accepted: the upstream providers we target count
the same way.

Example:
    Gating a send::

        limiter = RateLimiter(limit=100, interval=60.0)
        if limiter.try_acquire():
            await client.send(recipient, payload)
        else:
            retry_in = limiter.current_window_remaining_time()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any


class RateLimiter:
    """Global fixed-window permit counter.

    Attributes:
        limit: Maximum permits granted per window.
        interval: Window length in seconds.
        window_start: Clock value at which the current window opened, or
            ``None`` before the first acquisition.
        count: Permits consumed in the current window.
    """

    def __init__(
        self,
        limit: int = 100,
        interval: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Create a limiter.

        Args:
            limit: Permits per window, at least 1.
            interval: Window length in seconds, strictly positive.
            clock: Monotonic time source, replaceable in tests.
        """
        if int(limit) < 1:
            raise ValueError("limit must be at least 1")
        if float(interval) <= 0:
            raise ValueError("interval must be positive")
        self.limit = int(limit)
        self.interval = float(interval)
        self.window_start: float | None = None
        self.count = 0
        self._clock = clock
        self._lock = threading.Lock()

    def _roll_window(self, now: float) -> None:
        if self.window_start is None or now >= self.window_start + self.interval:
            self.window_start = now
            self.count = 0

    def try_acquire(self) -> bool:
        """Take one permit from the current window.

        Returns:
            True if a permit was granted, False if the window is exhausted.
            A denial leaves the limiter untouched.
        """
        with self._lock:
            now = self._clock()
            if self.count >= self.limit and not self._window_elapsed(now):
                return False
            self._roll_window(now)
            self.count += 1
            return True

    def _window_elapsed(self, now: float) -> bool:
        return self.window_start is None or now >= self.window_start + self.interval

    def current_window_remaining_time(self) -> float:
        """Seconds until the current window closes (0 if none is open)."""
        with self._lock:
            if self.window_start is None:
                return 0.0
            return max(0.0, self.window_start + self.interval - self._clock())

    def snapshot(self) -> dict[str, Any]:
        """Return the limiter state for status reporting."""
        with self._lock:
            now = self._clock()
            if self._window_elapsed(now):
                used, reset_in = 0, 0.0
            else:
                used = self.count
                reset_in = self.window_start + self.interval - now
            return {
                "limit": self.limit,
                "interval": self.interval,
                "count": used,
                "remaining": self.limit - used,
                "reset_in": round(max(0.0, reset_in), 3),
            }
