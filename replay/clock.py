# replay/clock.py
from __future__ import annotations
import time
from typing import Callable, Optional

MINUTE = 60
HOUR = 60 * MINUTE


class SessionClock:
    """Elapsed playback time. Only advances between resume() and pause()."""

    def __init__(self, now: Callable[[], float] = time.monotonic):
        self._now = now
        self._elapsed = 0.0
        self._mark: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._mark is not None

    @property
    def elapsed(self) -> float:
        return self._elapsed

    @property
    def elapsed_ms(self) -> int:
        return int(self._elapsed * 1000)

    def resume(self, now: Optional[float] = None) -> None:
        self._mark = self._now() if now is None else now

    def pause(self) -> None:
        self._mark = None

    def advance(self, now: Optional[float] = None) -> float:
        if self._mark is None:
            return self._elapsed
        now = self._now() if now is None else now
        # monotonic source; a stale tick must not run the clock backwards
        if now > self._mark:
            self._elapsed += now - self._mark
            self._mark = now
        return self._elapsed

    def reset(self, now: Optional[float] = None) -> None:
        self._elapsed = 0.0
        if self._mark is not None:
            self._mark = self._now() if now is None else now

    def format_elapsed(self) -> str:
        return format_duration(self._elapsed)


def format_duration(seconds: float) -> str:
    """HH:MM:SS.cc"""
    total_ms = int(seconds * 1000)
    secs, ms = divmod(total_ms, 1000)
    return f"{secs // HOUR:02d}:{(secs % HOUR) // MINUTE:02d}:{secs % MINUTE:02d}.{ms // 10:02d}"
