"""FIFO callback queue with snapshot draining.

``take()`` hands back everything queued at the moment of the call and
leaves the queue empty, so callbacks enqueued while the snapshot runs
wait for the next pass.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from phaseloop.core.enums import HandleState, Phase

from .handles import Handle


class CallbackQueue:
    """Queue of handles for a single phase.

    Example:
        >>> queue = CallbackQueue(Phase.CHECK)
        >>> queue.push(Handle(print, ("a",)))
        >>> len(queue)
        1
    """

    def __init__(self, phase: Phase) -> None:
        self.phase = phase
        self._items: deque[Handle] = deque()
        self._live = 0

    def push(self, handle: Handle) -> None:
        handle.phase = self.phase
        handle._owner = self
        self._items.append(handle)
        self._live += 1

    def take(self) -> list[Handle]:
        """Snapshot and empty the queue; cancelled handles are skipped."""
        items = [h for h in self._items if h.state is HandleState.PENDING]
        for handle in items:
            handle._owner = None
        self._items.clear()
        self._live = 0
        return items

    def requeue_front(self, handles: Iterable[Handle]) -> None:
        """Put unvisited snapshot handles back ahead of newer work."""
        pending = [h for h in handles if h.state is HandleState.PENDING]
        for handle in reversed(pending):
            handle._owner = self
            self._items.appendleft(handle)
        self._live += len(pending)

    def clear(self) -> None:
        for handle in self._items:
            handle._owner = None
        self._items.clear()
        self._live = 0

    def __len__(self) -> int:
        return self._live

    def __bool__(self) -> bool:
        return self._live > 0

    # owner callbacks

    def _handle_cancelled(self, handle: Handle) -> None:
        self._live -= 1

    def _handle_ref_changed(self, handle: Handle, ref: bool) -> None:
        # Queued callbacks always count as work, whatever their ref flag.
        pass
