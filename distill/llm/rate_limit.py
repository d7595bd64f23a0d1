"""Minimum-spacing rate limiter for outbound LLM calls."""

import threading
import time
from typing import Optional


class Clock:
    """Wall clock in milliseconds. Tests substitute a fake."""

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def sleep(self, ms: float) -> None:
        time.sleep(ms / 1000.0)


class RateLimiter:
    """
    Enforces a minimum delay between calls.

    Concurrent callers are served strictly in arrival order: each waits for
    the previous caller to finish, then applies its own delay relative to the
    updated last-call time. One instance is scoped to one execution (a tick
    or a classify invocation).
    """

    def __init__(self, min_delay_ms: int, clock: Optional[Clock] = None):
        self.min_delay_ms = max(0, min_delay_ms)
        self.clock = clock or Clock()
        self._last_call_time: Optional[float] = None
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    def acquire(self) -> None:
        """Block until at least min_delay_ms has passed since the previous acquire."""
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._serving != ticket:
                self._cond.wait()

        try:
            if self.min_delay_ms > 0 and self._last_call_time is not None:
                elapsed = self.clock.now() - self._last_call_time
                if elapsed < self.min_delay_ms:
                    self.clock.sleep(self.min_delay_ms - elapsed)
            self._last_call_time = self.clock.now()
        finally:
            with self._cond:
                self._serving += 1
                self._cond.notify_all()

    def reset(self) -> None:
        """Forget the last call so the next acquire returns immediately."""
        with self._cond:
            self._last_call_time = None
