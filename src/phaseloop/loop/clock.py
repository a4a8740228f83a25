"""Clocks the loop reads time from.

``MonotonicClock`` is the production clock. ``ManualClock`` is virtual
time: it only moves when ``advance()`` is called, which makes timer
ordering fully deterministic in tests and in the CLI demo.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Protocol for loop clocks. Readings are seconds, monotonic."""

    def now(self) -> float:
        ...


class MonotonicClock:
    """Wall-independent clock backed by ``time.monotonic()``."""

    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """Virtual clock advanced explicitly.

    Example:
        >>> clock = ManualClock()
        >>> clock.advance(1.5)
        1.5
        >>> clock.now()
        1.5
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward; returns the new reading."""
        if seconds < 0:
            raise ValueError(f"cannot move a clock backwards ({seconds})")
        with self._lock:
            self._now += seconds
            return self._now

    def advance_to(self, when: float) -> float:
        """Move time forward to ``when`` (no-op if already past it)."""
        with self._lock:
            if when > self._now:
                self._now = when
            return self._now
