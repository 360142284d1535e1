"""
Challenge Clock

Time source for session expiry. Every component that computes an expiry
takes a Clock so tests can move time forward without sleeping.

All values are epoch milliseconds.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time in epoch milliseconds."""

    def now_ms(self) -> float:
        ...


class SystemClock:
    """Wall-clock time."""

    def now_ms(self) -> float:
        return time.time() * 1000.0


class ManualClock:
    """
    Virtual clock that only moves when told to.

    Used by the test suite to fast-forward through session TTLs.
    """

    def __init__(self, start_ms: float = 1_700_000_000_000.0) -> None:
        self._now = float(start_ms)
        self._lock = threading.Lock()

    def now_ms(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward by `seconds`."""
        with self._lock:
            self._now += seconds * 1000.0

    def set(self, now_ms: float) -> None:
        with self._lock:
            self._now = float(now_ms)
