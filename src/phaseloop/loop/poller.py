"""Pollers: the readiness source behind the POLL phase and the wait point.

┌──────────────────────────────────────────────────────────────────────────────┐
│  POLLER RESPONSIBILITIES                                                      │
│                                                                               │
│   register(watcher)     track an outstanding source                          │
│   wait(timeout)         block until something is ready or timeout expires    │
│   collect()             non-blocking: return + clear the ready watchers      │
│   wakeup()              thread-safe: interrupt a blocked wait()               │
│                                                                               │
│   SelectorPoller  stdlib ``selectors`` + self-pipe wakeup (real time)        │
│   ManualPoller    virtual time: wait() advances a ManualClock; raises        │
│                   LoopStalledError instead of blocking forever               │
└──────────────────────────────────────────────────────────────────────────────┘

Readiness order is preserved: watchers come back from ``collect()`` in the
order they became ready.
"""

from __future__ import annotations

import selectors
import socket
import threading
from collections import deque
from typing import Protocol, runtime_checkable

from phaseloop.core.enums import HandleState
from phaseloop.core.errors import LoopStalledError, PollError
from phaseloop.core.logging import get_logger

from .clock import ManualClock
from .handles import FdWatcher, Handle, Watcher

logger = get_logger(__name__)


@runtime_checkable
class Poller(Protocol):
    """Protocol for readiness sources used by PhaseScheduler."""

    name: str

    def register(self, watcher: Watcher) -> None: ...

    def unregister(self, watcher: Watcher) -> None: ...

    def wait(self, timeout: float | None) -> None: ...

    def collect(self) -> list[Watcher]: ...

    def has_ready(self) -> bool: ...

    def has_referenced(self) -> bool: ...

    def find_fd_watcher(self, fd: int, events: int) -> FdWatcher | None: ...

    def wakeup(self) -> None: ...

    def close(self) -> None: ...

    def __len__(self) -> int: ...


class _BasePoller:
    """Watcher bookkeeping shared by both pollers."""

    name = "base"

    def __init__(self) -> None:
        self._watchers: dict[int, Watcher] = {}
        self._ready: deque[Watcher] = deque()
        self._lock = threading.Lock()
        self._live_ref = 0
        self._closed = False

    def register(self, watcher: Watcher) -> None:
        if self._closed:
            raise PollError(f"{self.name} poller is closed")
        watcher._owner = self
        self._watchers[watcher.seq] = watcher
        if watcher.has_ref():
            self._live_ref += 1

    def unregister(self, watcher: Watcher) -> None:
        if self._watchers.pop(watcher.seq, None) is None:
            return
        watcher._owner = None
        if watcher.has_ref():
            self._live_ref -= 1

    def collect(self) -> list[Watcher]:
        with self._lock:
            ready = list(self._ready)
            self._ready.clear()
            for watcher in ready:
                watcher.ready = False
        result = []
        for watcher in ready:
            if watcher.state is HandleState.PENDING and watcher.seq in self._watchers:
                result.append(watcher)
        return result

    def has_ready(self) -> bool:
        with self._lock:
            return bool(self._ready)

    def has_referenced(self) -> bool:
        return self._live_ref > 0

    def find_fd_watcher(self, fd: int, events: int) -> FdWatcher | None:
        """Live watcher registered for ``fd`` with exactly ``events``, if any."""
        for watcher in self._watchers.values():
            if (
                isinstance(watcher, FdWatcher)
                and watcher.events == events
                and watcher.fd == fd
                and not watcher._cancel_requested
            ):
                return watcher
        return None

    def wakeup(self) -> None:
        pass

    def close(self) -> None:
        for watcher in list(self._watchers.values()):
            watcher._owner = None
            if watcher.state is HandleState.PENDING:
                watcher.state = HandleState.CANCELLED
        self._watchers.clear()
        with self._lock:
            self._ready.clear()
        self._live_ref = 0
        self._closed = True

    def __len__(self) -> int:
        return len(self._watchers)

    def _mark_ready(self, watcher: Watcher) -> None:
        with self._lock:
            if not watcher.ready:
                watcher.ready = True
                self._ready.append(watcher)
        self.wakeup()

    # owner callbacks

    def _handle_cancelled(self, handle: Handle) -> None:
        if isinstance(handle, Watcher):
            self.unregister(handle)

    def _handle_ref_changed(self, handle: Handle, ref: bool) -> None:
        if handle.seq in self._watchers:
            self._live_ref += 1 if ref else -1


class SelectorPoller(_BasePoller):
    """Poller backed by ``selectors.DefaultSelector``.

    A socketpair is registered as the wakeup channel so ``Watcher.signal()``
    from another thread interrupts a blocked ``wait()``.
    """

    name = "selector"

    def __init__(self, selector: selectors.BaseSelector | None = None) -> None:
        super().__init__()
        self._selector = selector or selectors.DefaultSelector()
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)
        self._selector.register(self._wake_r, selectors.EVENT_READ, None)

    def register(self, watcher: Watcher) -> None:
        super().register(watcher)
        if isinstance(watcher, FdWatcher):
            try:
                key = self._selector.get_key(watcher.fileobj)
            except KeyError:
                self._selector.register(watcher.fileobj, watcher.events, {watcher.events: watcher})
            else:
                current = key.data.get(watcher.events)
                if current is not None and current._cancel_requested:
                    # replaced from inside its own callback
                    key.data[watcher.events] = watcher
                    return
                if key.events & watcher.events:
                    super().unregister(watcher)
                    raise PollError(
                        f"file object already watched for events {key.events & watcher.events}"
                    )
                key.data[watcher.events] = watcher
                self._selector.modify(watcher.fileobj, key.events | watcher.events, key.data)

    def unregister(self, watcher: Watcher) -> None:
        known = watcher.seq in self._watchers
        super().unregister(watcher)
        if known and isinstance(watcher, FdWatcher) and not self._closed:
            try:
                key = self._selector.get_key(watcher.fileobj)
            except (KeyError, ValueError):
                return
            if key.data.get(watcher.events) is not watcher:
                return
            del key.data[watcher.events]
            remaining = key.events & ~watcher.events
            if remaining:
                self._selector.modify(watcher.fileobj, remaining, key.data)
            else:
                self._selector.unregister(watcher.fileobj)

    def wait(self, timeout: float | None) -> None:
        if timeout is not None and timeout < 0:
            timeout = 0
        try:
            events = self._selector.select(timeout)
        except OSError as exc:
            raise PollError("selector wait failed", cause=exc) from exc
        for key, mask in events:
            if key.fileobj is self._wake_r:
                self._drain_wakeup()
                continue
            for registered, watcher in list(key.data.items()):
                if mask & registered:
                    watcher.result = mask & registered
                    self._mark_ready_quiet(watcher)

    def collect(self) -> list[Watcher]:
        self.wait(0)
        return super().collect()

    def wakeup(self) -> None:
        if self._closed:
            return
        try:
            self._wake_w.send(b"\0")
        except (BlockingIOError, InterruptedError):
            pass

    def close(self) -> None:
        if self._closed:
            return
        super().close()
        self._selector.close()
        self._wake_r.close()
        self._wake_w.close()

    def _drain_wakeup(self) -> None:
        while True:
            try:
                if not self._wake_r.recv(4096):
                    break
            except (BlockingIOError, InterruptedError):
                break

    def _mark_ready_quiet(self, watcher: Watcher) -> None:
        with self._lock:
            if not watcher.ready:
                watcher.ready = True
                self._ready.append(watcher)


class ManualPoller(_BasePoller):
    """Deterministic poller for virtual time.

    ``wait(timeout)`` advances the ManualClock by ``timeout`` instead of
    sleeping. With no timeout and nothing ready it raises
    ``LoopStalledError``: nothing could ever wake the loop.

    Example:
        >>> clock = ManualClock()
        >>> poller = ManualPoller(clock)
        >>> poller.wait(2.0)
        >>> clock.now()
        2.0
    """

    name = "manual"

    def __init__(self, clock: ManualClock) -> None:
        super().__init__()
        self.clock = clock
        self.waits: list[float | None] = []

    def wait(self, timeout: float | None) -> None:
        self.waits.append(timeout)
        if self.has_ready():
            return
        if timeout is None:
            raise LoopStalledError(
                "loop would block forever: no timers pending and no watcher can become ready"
            ).with_context(watchers=len(self._watchers))
        self.clock.advance(max(timeout, 0.0))
