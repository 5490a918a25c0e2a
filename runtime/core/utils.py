"""Small utility helpers used across the core runtime."""

from __future__ import annotations

import time


def now_millis() -> int:
    """Wall-clock time as epoch milliseconds (the unit of event scheduling)."""
    return int(time.time() * 1000)


class StopWatch:
    """Accumulates elapsed time only while running.

    Starts suspended; callers resume it around the section they want timed.
    """

    def __init__(self, *, running: bool = False, timer=time.perf_counter):
        self._timer = timer
        self._accumulated = 0.0
        self._started_at: float | None = timer() if running else None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def resume(self) -> None:
        if self._started_at is None:
            self._started_at = self._timer()

    def suspend(self) -> None:
        if self._started_at is not None:
            self._accumulated += self._timer() - self._started_at
            self._started_at = None

    @property
    def elapsed_ms(self) -> int:
        total = self._accumulated
        if self._started_at is not None:
            total += self._timer() - self._started_at
        return round(total * 1000)
