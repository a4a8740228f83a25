"""Handles: scheduled callbacks and the sources that keep the loop alive.

A handle is owned by exactly one container at a time (a ``TimerQueue``, a
``CallbackQueue`` or a poller). The owner is told about cancellations and
ref changes so it can keep its live counts exact without scanning.
"""

from __future__ import annotations

import itertools
import selectors
import threading
from collections.abc import Callable
from typing import Any, Protocol

from phaseloop.core.enums import HandleState, Phase
from phaseloop.core.errors import SchedulingError

_sequence = itertools.count(1)


def next_sequence() -> int:
    """Global registration order shared by every handle."""
    return next(_sequence)


def callback_name(callback: Callable[..., Any]) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)


def fileno(fileobj: Any) -> int:
    """File descriptor of ``fileobj`` (an int or anything with ``fileno()``)."""
    if isinstance(fileobj, int):
        return fileobj
    return fileobj.fileno()


class HandleOwner(Protocol):
    def _handle_cancelled(self, handle: Handle) -> None: ...

    def _handle_ref_changed(self, handle: Handle, ref: bool) -> None: ...


class Handle:
    """A callback scheduled into one phase.

    Example:
        >>> handle = loop.call_soon(print, "hi")
        >>> handle.cancel()
        True
        >>> handle.cancelled
        True
    """

    def __init__(
        self,
        callback: Callable[..., Any],
        args: tuple[Any, ...] = (),
        phase: Phase = Phase.CHECK,
    ) -> None:
        self.callback = callback
        self.args = args
        self.phase = phase
        self.seq = next_sequence()
        self.state = HandleState.PENDING
        self._ref = True
        self._owner: HandleOwner | None = None
        self._cancel_requested = False

    @property
    def name(self) -> str:
        return callback_name(self.callback)

    @property
    def cancelled(self) -> bool:
        return self.state is HandleState.CANCELLED

    @property
    def pending(self) -> bool:
        return self.state is HandleState.PENDING

    def cancel(self) -> bool:
        """Stop the callback from running.

        Returns True if a future run was prevented. A callback that is
        executing right now always finishes.
        """
        if self.state is HandleState.PENDING:
            self.state = HandleState.CANCELLED
            if self._owner is not None:
                self._owner._handle_cancelled(self)
                self._owner = None
            return True
        if self.state is HandleState.RUNNING and self._reschedules():
            self._cancel_requested = True
            return True
        return False

    def has_ref(self) -> bool:
        return self._ref

    def ref(self) -> Handle:
        """Let this handle keep the loop alive (the default)."""
        self._set_ref(True)
        return self

    def unref(self) -> Handle:
        """Stop this handle from keeping the loop alive on its own."""
        self._set_ref(False)
        return self

    def _set_ref(self, ref: bool) -> None:
        if ref == self._ref:
            return
        self._ref = ref
        # a running watcher is still counted by its poller
        if self._owner is not None:
            self._owner._handle_ref_changed(self, ref)

    def _reschedules(self) -> bool:
        return False

    def _invoke_args(self) -> tuple[Any, ...]:
        return self.args

    def _run(self) -> None:
        self.callback(*self._invoke_args())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} seq={self.seq} phase={self.phase.value} {self.state.value}>"


class HookHandle(Handle):
    """Persistent PREPARE-phase hook; runs every iteration until cancelled."""

    def __init__(self, callback: Callable[..., Any], args: tuple[Any, ...] = ()) -> None:
        super().__init__(callback, args, Phase.PREPARE)

    def _reschedules(self) -> bool:
        return True


class TimerHandle(Handle):
    """A callback due at ``deadline``; repeats every ``interval`` when set."""

    def __init__(
        self,
        deadline: float,
        callback: Callable[..., Any],
        args: tuple[Any, ...] = (),
        interval: float | None = None,
    ) -> None:
        super().__init__(callback, args, Phase.TIMERS)
        self.deadline = deadline
        self.interval = interval

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def _reschedules(self) -> bool:
        return self.repeating

    def sort_key(self) -> tuple[float, int]:
        return (self.deadline, self.seq)

    def __lt__(self, other: TimerHandle) -> bool:
        return self.sort_key() < other.sort_key()

    def next_deadline(self, now: float) -> float:
        """Next deadline of a repeating timer, skipping missed periods."""
        if self.interval is None:
            raise SchedulingError(f"{self.name} is not a repeating timer")
        nxt = self.deadline + self.interval
        if nxt <= now:
            missed = int((now - self.deadline) // self.interval)
            nxt = self.deadline + self.interval * (missed + 1)
        return nxt


class Watcher(Handle):
    """An outstanding I/O source; its callback runs in the POLL phase once
    the source is signalled ready.

    ``signal()`` is the only thread-safe method. One-shot watchers finish
    after their callback runs; persistent ones stay registered until
    ``cancel()`` or ``close()``. The callback is called as
    ``callback(*args, result)``.
    """

    def __init__(
        self,
        callback: Callable[..., Any],
        args: tuple[Any, ...] = (),
        oneshot: bool = True,
    ) -> None:
        super().__init__(callback, args, Phase.POLL)
        self.oneshot = oneshot
        self.result: Any = None
        self.ready = False
        self._lock = threading.Lock()
        self._on_close: Callable[[Handle], Any] | None = None

    def signal(self, result: Any = None) -> bool:
        """Mark the source ready. Returns False if the watcher is finished."""
        with self._lock:
            if self.state in (HandleState.CANCELLED, HandleState.DONE):
                return False
            self.result = result
            owner = self._owner
        if owner is None:
            return False
        owner._mark_ready(self)  # type: ignore[attr-defined]
        return True

    def close(self, callback: Callable[..., Any] | None = None, *args: Any) -> bool:
        """Cancel the watcher and queue ``callback`` into the CLOSE phase."""
        stopped = self.cancel()
        if callback is not None and self._on_close is not None:
            self._on_close(Handle(callback, args, Phase.CLOSE))
        return stopped

    def _reschedules(self) -> bool:
        return not self.oneshot

    def _invoke_args(self) -> tuple[Any, ...]:
        return (*self.args, self.result)


class FdWatcher(Watcher):
    """Persistent watcher made ready by the selector for ``fileobj``."""

    def __init__(
        self,
        fileobj: Any,
        events: int,
        callback: Callable[..., Any],
        args: tuple[Any, ...] = (),
    ) -> None:
        super().__init__(callback, args, oneshot=False)
        self.fileobj = fileobj
        self.fd = fileno(fileobj)
        self.events = events

    @property
    def is_reader(self) -> bool:
        return bool(self.events & selectors.EVENT_READ)

    def _invoke_args(self) -> tuple[Any, ...]:
        return self.args
