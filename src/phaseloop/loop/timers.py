"""Timer queue: a min-heap ordered by ``(deadline, registration seq)``.

Cancelled timers are removed lazily; the live counters are kept exact
through the owner callbacks so ``len()`` and ``has_referenced()`` are O(1).
"""

from __future__ import annotations

import heapq

from phaseloop.core.enums import HandleState

from .handles import Handle, TimerHandle


class TimerQueue:
    def __init__(self) -> None:
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._live = 0
        self._live_ref = 0

    def push(self, timer: TimerHandle) -> None:
        timer._owner = self
        heapq.heappush(self._heap, (timer.deadline, timer.seq, timer))
        self._live += 1
        if timer.has_ref():
            self._live_ref += 1

    def pop_due(self, now: float) -> list[TimerHandle]:
        """Remove and return every live timer with ``deadline <= now``.

        The result is a snapshot in deadline order, ties broken by
        registration order. Timers pushed afterwards are not included.
        """
        due: list[TimerHandle] = []
        while self._heap and self._heap[0][0] <= now:
            _, _, timer = heapq.heappop(self._heap)
            if timer.state is not HandleState.PENDING:
                continue
            self._release(timer)
            due.append(timer)
        return due

    def next_deadline(self) -> float | None:
        self._drop_cancelled()
        if not self._heap:
            return None
        return self._heap[0][0]

    def has_referenced(self) -> bool:
        return self._live_ref > 0

    def clear(self) -> None:
        """Drop every timer; live ones end up CANCELLED."""
        for _, _, timer in self._heap:
            timer._owner = None
            if timer.state is HandleState.PENDING:
                timer.state = HandleState.CANCELLED
        self._heap.clear()
        self._live = 0
        self._live_ref = 0

    def __len__(self) -> int:
        return self._live

    def _release(self, timer: TimerHandle) -> None:
        timer._owner = None
        self._live -= 1
        if timer.has_ref():
            self._live_ref -= 1

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0][2].state is not HandleState.PENDING:
            heapq.heappop(self._heap)

    # owner callbacks

    def _handle_cancelled(self, handle: Handle) -> None:
        self._live -= 1
        if handle.has_ref():
            self._live_ref -= 1

    def _handle_ref_changed(self, handle: Handle, ref: bool) -> None:
        self._live_ref += 1 if ref else -1
