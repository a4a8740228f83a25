"""Phase scheduler: the loop itself.

Manifesto:
    A cooperative loop is only predictable if every callback has a fixed
    place in the cycle. PhaseScheduler gives each kind of work its own
    phase, drains each phase from a snapshot, and suspends in exactly one
    place, so the order of any program is decided by the phase table and
    registration order alone.

┌──────────────────────────────────────────────────────────────────────────────┐
│  PHASE SCHEDULER                                                              │
│                                                                               │
│   run()                                                                       │
│     while not stopping and is_alive():                                        │
│       ┌──────────────────────────────────────────────────────────────┐       │
│       │ wait point   only if every queue is empty; timeout = next    │       │
│       │              timer deadline (None → until a watcher is ready) │       │
│       ├──────────────────────────────────────────────────────────────┤       │
│       │ TIMERS       due timers, (deadline, seq) order                │       │
│       │ PENDING      I/O callbacks deferred past the poll budget      │       │
│       │ PREPARE      persistent hooks                                 │       │
│       │ POLL         collect() ready watchers, run up to the budget   │       │
│       │ CHECK        immediates                                       │       │
│       │ CLOSE        close callbacks                                  │       │
│       │ MICROTASKS   next_tick queue (per iteration or per phase)     │       │
│       └──────────────────────────────────────────────────────────────┘       │
│                                                                               │
│   Every phase drains a snapshot taken on entry: work queued by a callback    │
│   is visited on a later pass, never in the pass that queued it.              │
└──────────────────────────────────────────────────────────────────────────────┘

Example:
    >>> clock = ManualClock()
    >>> loop = PhaseScheduler(clock=clock)
    >>> order = []
    >>> _ = loop.call_later(0, order.append, "timeout")
    >>> _ = loop.call_soon(order.append, "immediate")
    >>> _ = loop.next_tick(order.append, "tick")
    >>> _ = loop.run()
    >>> order
    ['timeout', 'immediate', 'tick']

Guardrails:
    ❌ Calling run() from inside a callback
    ✅ Queue more work; it runs on a later pass
    ❌ Blocking inside a callback
    ✅ Register a watcher and signal it when the work completes
"""

from __future__ import annotations

import math
import selectors
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from phaseloop.core.enums import HandleState, MicrotaskPolicy, Phase
from phaseloop.core.errors import (
    CallbackError,
    ErrorContext,
    InvalidConfigError,
    InvalidDelayError,
    LoopClosedError,
    LoopRunningError,
)
from phaseloop.core.logging import LogContext, get_logger
from phaseloop.core.settings import LoopSettings, get_settings

from .clock import Clock, ManualClock, MonotonicClock
from .handles import FdWatcher, Handle, HookHandle, TimerHandle, Watcher, fileno
from .poller import ManualPoller, Poller, SelectorPoller
from .queues import CallbackQueue
from .timers import TimerQueue
from .trace import PhaseTracer

logger = get_logger(__name__)

ExceptionHandler = Callable[[CallbackError], Any]

_QUEUED_PHASES = (Phase.PENDING, Phase.CHECK, Phase.CLOSE, Phase.MICROTASKS)


@dataclass
class LoopStats:
    """Counters for one scheduler."""

    iterations: int = 0
    callbacks_by_phase: dict[str, int] = field(
        default_factory=lambda: {phase.value: 0 for phase in Phase}
    )
    waits: int = 0
    wait_seconds: float = 0.0
    deferred_io: int = 0
    errors: int = 0
    slow_callbacks: int = 0
    last_error: str | None = None

    @property
    def callbacks_run(self) -> int:
        return sum(self.callbacks_by_phase.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "callbacks_run": self.callbacks_run,
            "callbacks_by_phase": dict(self.callbacks_by_phase),
            "waits": self.waits,
            "wait_seconds": round(self.wait_seconds, 6),
            "deferred_io": self.deferred_io,
            "errors": self.errors,
            "slow_callbacks": self.slow_callbacks,
            "last_error": self.last_error,
        }


@dataclass
class LoopHealth:
    """Point-in-time view of a scheduler."""

    loop_id: str
    running: bool
    alive: bool
    closed: bool
    poller: str
    timers: int = 0
    watchers: int = 0
    queued: dict[str, int] = field(default_factory=dict)
    stats: LoopStats = field(default_factory=LoopStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "loop_id": self.loop_id,
            "running": self.running,
            "alive": self.alive,
            "closed": self.closed,
            "poller": self.poller,
            "timers": self.timers,
            "watchers": self.watchers,
            "queued": dict(self.queued),
            "stats": self.stats.to_dict(),
        }


class PhaseScheduler:
    """Single-threaded cooperative loop with a fixed phase order.

    Args:
        clock: Time source (default MonotonicClock)
        poller: Readiness source (default ManualPoller for a ManualClock,
            SelectorPoller otherwise)
        settings: LoopSettings; explicit keyword arguments override it
        microtask_policy: "iteration" or "phase"
        max_io_callbacks_per_poll: POLL budget; the rest is deferred to PENDING
        slow_callback_threshold: Seconds before a callback is logged as slow
            (0 disables)
        max_wait_seconds: Cap on a single wait
        stop_on_error: Re-raise callback failures out of run()
        exception_handler: Called with a CallbackError instead of logging it
        tracer: Optional PhaseTracer
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        poller: Poller | None = None,
        settings: LoopSettings | None = None,
        microtask_policy: MicrotaskPolicy | str | None = None,
        max_io_callbacks_per_poll: int | None = None,
        slow_callback_threshold: float | None = None,
        max_wait_seconds: float | None = None,
        stop_on_error: bool | None = None,
        exception_handler: ExceptionHandler | None = None,
        tracer: PhaseTracer | None = None,
    ) -> None:
        settings = settings or get_settings()

        self.clock: Clock = clock or MonotonicClock()
        if poller is None:
            if isinstance(self.clock, ManualClock):
                poller = ManualPoller(self.clock)
            else:
                poller = SelectorPoller()
        self.poller: Poller = poller

        self.microtask_policy = _coerce_policy(
            microtask_policy if microtask_policy is not None else settings.microtask_policy
        )
        self.max_io_callbacks_per_poll = _positive_int(
            max_io_callbacks_per_poll
            if max_io_callbacks_per_poll is not None
            else settings.max_io_callbacks_per_poll,
            "max_io_callbacks_per_poll",
        )
        self.slow_callback_threshold = _non_negative(
            slow_callback_threshold
            if slow_callback_threshold is not None
            else settings.slow_callback_threshold,
            "slow_callback_threshold",
        )
        wait_cap = max_wait_seconds if max_wait_seconds is not None else settings.max_wait_seconds
        if wait_cap is not None and not wait_cap > 0:
            raise InvalidConfigError(
                f"max_wait_seconds must be > 0, got {wait_cap!r}", key="max_wait_seconds"
            )
        self.max_wait_seconds = wait_cap
        self.stop_on_error = settings.stop_on_error if stop_on_error is None else stop_on_error
        self.exception_handler = exception_handler
        self.tracer = tracer

        self.loop_id = uuid.uuid4().hex[:12]
        self._timers = TimerQueue()
        self._queues = {phase: CallbackQueue(phase) for phase in _QUEUED_PHASES}
        self._prepare_hooks: list[HookHandle] = []
        self._deferred_io: deque[Watcher] = deque()

        self._stats = LoopStats()
        self._iteration = 0
        self._running = False
        self._stopping = False
        self._closed = False
        self._phase: Phase | None = None

    # === Time ===

    def time(self) -> float:
        """Current reading of the loop clock."""
        return self.clock.now()

    # === Scheduling ===

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` in the TIMERS phase after ``delay`` seconds."""
        _check_delay(delay, "delay")
        return self.call_at(self.time() + delay, callback, *args)

    def call_at(self, when: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` in the first TIMERS phase at or after ``when``."""
        self._check_closed()
        _check_delay(when, "when", allow_negative=True)
        timer = TimerHandle(when, callback, args)
        self._timers.push(timer)
        return timer

    def call_repeating(
        self,
        interval: float,
        callback: Callable[..., Any],
        *args: Any,
        delay: float | None = None,
    ) -> TimerHandle:
        """Run ``callback(*args)`` every ``interval`` seconds until cancelled.

        The first run is after ``delay`` (default: ``interval``). Periods
        missed because the loop was busy are skipped, not replayed.
        """
        self._check_closed()
        _check_delay(interval, "interval")
        if interval == 0:
            raise InvalidDelayError("interval must be > 0")
        first = interval if delay is None else delay
        _check_delay(first, "delay")
        timer = TimerHandle(self.time() + first, callback, args, interval=interval)
        self._timers.push(timer)
        return timer

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> Handle:
        """Queue an immediate: ``callback(*args)`` runs in the CHECK phase."""
        return self._enqueue(Phase.CHECK, callback, args)

    set_immediate = call_soon

    def next_tick(self, callback: Callable[..., Any], *args: Any) -> Handle:
        """Queue a microtask for the next microtask checkpoint."""
        return self._enqueue(Phase.MICROTASKS, callback, args)

    def call_pending(self, callback: Callable[..., Any], *args: Any) -> Handle:
        """Queue ``callback(*args)`` into the PENDING phase."""
        return self._enqueue(Phase.PENDING, callback, args)

    def on_close(self, callback: Callable[..., Any], *args: Any) -> Handle:
        """Queue ``callback(*args)`` into the CLOSE phase."""
        return self._enqueue(Phase.CLOSE, callback, args)

    def add_prepare_hook(self, callback: Callable[..., Any], *args: Any) -> HookHandle:
        """Run ``callback(*args)`` in every PREPARE phase.

        Hooks never keep the loop alive on their own.
        """
        self._check_closed()
        hook = HookHandle(callback, args)
        self._prepare_hooks.append(hook)
        return hook

    def remove_prepare_hook(self, hook: HookHandle | Callable[..., Any]) -> bool:
        removed = False
        for registered in list(self._prepare_hooks):
            if registered is hook or registered.callback == hook:
                registered.cancel()
                self._prepare_hooks.remove(registered)
                removed = True
        return removed

    # === Watchers ===

    def watch(self, callback: Callable[..., Any], *args: Any, oneshot: bool = True) -> Watcher:
        """Register an externally signalled watcher.

        The callback runs in the POLL phase as ``callback(*args, result)``
        after ``watcher.signal(result)``.
        """
        self._check_closed()
        watcher = Watcher(callback, args, oneshot=oneshot)
        return self._register(watcher)

    def add_reader(self, fileobj: Any, callback: Callable[..., Any], *args: Any) -> FdWatcher:
        """Run ``callback(*args)`` in POLL whenever ``fileobj`` is readable."""
        return self._add_fd_watcher(fileobj, selectors.EVENT_READ, callback, args)

    def add_writer(self, fileobj: Any, callback: Callable[..., Any], *args: Any) -> FdWatcher:
        """Run ``callback(*args)`` in POLL whenever ``fileobj`` is writable."""
        return self._add_fd_watcher(fileobj, selectors.EVENT_WRITE, callback, args)

    def remove_reader(self, fileobj: Any) -> bool:
        return self._remove_fd_watcher(fileobj, selectors.EVENT_READ)

    def remove_writer(self, fileobj: Any) -> bool:
        return self._remove_fd_watcher(fileobj, selectors.EVENT_WRITE)

    def wakeup(self) -> None:
        """Interrupt a blocked wait point. Safe from any thread."""
        self.poller.wakeup()

    # === Lifecycle ===

    def is_alive(self) -> bool:
        """True while queued work, a referenced timer or a referenced watcher remains."""
        if self._closed:
            return False
        if self._has_queued_work():
            return True
        return self._timers.has_referenced() or self.poller.has_referenced()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def current_phase(self) -> Phase | None:
        return self._phase

    @property
    def iteration(self) -> int:
        return self._iteration

    @property
    def stats(self) -> LoopStats:
        return self._stats

    def run(self) -> LoopStats:
        """Run iterations until the loop is no longer alive or ``stop()`` is called."""
        self._enter_run()
        try:
            with LogContext(loop_id=self.loop_id):
                logger.info(
                    "loop_started",
                    poller=self.poller.name,
                    policy=self.microtask_policy.value,
                )
                try:
                    while not self._stopping and self.is_alive():
                        self._iterate()
                finally:
                    logger.info(
                        "loop_stopped",
                        iterations=self._stats.iterations,
                        callbacks=self._stats.callbacks_run,
                        errors=self._stats.errors,
                        alive=self.is_alive(),
                    )
        finally:
            self._exit_run()
        return self._stats

    def run_once(self) -> bool:
        """Run a single iteration (wait point included). Returns ``is_alive()``."""
        self._enter_run()
        try:
            with LogContext(loop_id=self.loop_id):
                if self.is_alive():
                    self._iterate()
        finally:
            self._exit_run()
        return self.is_alive()

    def stop(self) -> None:
        """Return from ``run()`` once the current iteration finishes."""
        if self._running:
            self._stopping = True
            self.poller.wakeup()

    def close(self) -> None:
        """Drop all pending work and release the poller. Idempotent."""
        if self._closed:
            return
        if self._running:
            raise LoopRunningError("cannot close a running loop")
        for queue in self._queues.values():
            for handle in queue.take():
                handle.state = HandleState.CANCELLED
        self._timers.clear()
        for hook in self._prepare_hooks:
            hook.state = HandleState.CANCELLED
        self._prepare_hooks.clear()
        self._deferred_io.clear()
        self.poller.close()
        self._closed = True
        logger.debug("loop_closed", loop_id=self.loop_id)

    def __enter__(self) -> PhaseScheduler:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def health(self) -> LoopHealth:
        return LoopHealth(
            loop_id=self.loop_id,
            running=self._running,
            alive=self.is_alive(),
            closed=self._closed,
            poller=self.poller.name,
            timers=len(self._timers),
            watchers=len(self.poller),
            queued={phase.value: len(queue) for phase, queue in self._queues.items()},
            stats=self._stats,
        )

    def reset_stats(self) -> None:
        self._stats = LoopStats()

    # === Iteration ===

    def _iterate(self) -> None:
        self._wait_for_work()
        self._iteration += 1
        self._stats.iterations += 1
        if self.tracer is not None:
            self.tracer.iteration_started(self._iteration, self.time())

        per_phase = self.microtask_policy is MicrotaskPolicy.PHASE
        try:
            for phase in Phase.ordered():
                if phase is Phase.MICROTASKS:
                    continue
                self._run_phase(phase)
                if per_phase:
                    self._run_phase(Phase.MICROTASKS)
            if not per_phase:
                self._run_phase(Phase.MICROTASKS)
        finally:
            self._phase = None

    def _wait_for_work(self) -> None:
        if self._has_queued_work() or self.poller.has_ready():
            return
        deadline = self._timers.next_deadline()
        timeout = None if deadline is None else max(0.0, deadline - self.time())
        if timeout == 0:
            return
        if self.max_wait_seconds is not None:
            timeout = self.max_wait_seconds if timeout is None else min(timeout, self.max_wait_seconds)

        logger.debug("loop_wait", timeout=timeout, timers=len(self._timers), watchers=len(self.poller))
        started = self.time()
        self._stats.waits += 1
        try:
            self.poller.wait(timeout)
        finally:
            self._stats.wait_seconds += self.time() - started

    def _run_phase(self, phase: Phase) -> None:
        self._phase = phase
        if phase is Phase.TIMERS:
            due = self._timers.pop_due(self.time())
            self._drain(phase, due, self._requeue_timers)
        elif phase is Phase.PREPARE:
            self._prepare_hooks = [h for h in self._prepare_hooks if not h.cancelled]
            self._drain(phase, list(self._prepare_hooks), lambda rest: None)
        elif phase is Phase.PENDING:
            self._run_pending()
        elif phase is Phase.POLL:
            self._run_poll()
        else:
            queue = self._queues[phase]
            self._drain(phase, queue.take(), queue.requeue_front)

    def _run_pending(self) -> None:
        deferred: list[Handle] = [w for w in self._deferred_io if w.state is HandleState.PENDING]
        self._deferred_io.clear()
        self._drain(Phase.PENDING, deferred + self._queues[Phase.PENDING].take(), self._requeue_pending)

    def _run_poll(self) -> None:
        ready: list[Handle] = list(self.poller.collect())
        budget = self.max_io_callbacks_per_poll
        if len(ready) > budget:
            overflow = ready[budget:]
            ready = ready[:budget]
            self._deferred_io.extend(overflow)  # type: ignore[arg-type]
            self._stats.deferred_io += len(overflow)
            logger.debug("io_deferred", count=len(overflow), budget=budget)
        self._drain(Phase.POLL, ready, self._requeue_ready)

    def _drain(
        self,
        phase: Phase,
        handles: list[Handle] | list[TimerHandle],
        requeue: Callable[[list], Any],
    ) -> None:
        if not handles:
            return
        if self.tracer is not None:
            self.tracer.phase_entered(self._iteration, phase, len(handles))
        for index, handle in enumerate(handles):
            if handle.state is not HandleState.PENDING:
                continue
            try:
                self._invoke(phase, handle)
            except CallbackError:
                requeue(list(handles[index + 1 :]))
                raise

    def _invoke(self, phase: Phase, handle: Handle) -> None:
        handle.state = HandleState.RUNNING
        error: Exception | None = None
        started = time.perf_counter()
        try:
            handle._run()
        except Exception as exc:
            error = exc
        finally:
            duration = time.perf_counter() - started
            self._finish(handle)
            self._stats.callbacks_by_phase[phase.value] += 1
            if self.tracer is not None:
                self.tracer.callback_ran(self._iteration, phase, handle, duration * 1000, error)

        if self.slow_callback_threshold and duration > self.slow_callback_threshold:
            self._stats.slow_callbacks += 1
            logger.warning(
                "slow_callback",
                callback=handle.name,
                phase=phase.value,
                duration_ms=round(duration * 1000, 3),
                threshold_ms=self.slow_callback_threshold * 1000,
            )
        if error is not None:
            self._report(phase, handle, error)

    def _finish(self, handle: Handle) -> None:
        """Move a handle out of RUNNING once its callback returned or raised."""
        if isinstance(handle, Watcher):
            if handle.oneshot or handle._cancel_requested:
                self.poller.unregister(handle)
                handle.state = HandleState.CANCELLED if handle._cancel_requested else HandleState.DONE
            else:
                handle.state = HandleState.PENDING
        elif isinstance(handle, TimerHandle) and handle.repeating:
            if handle._cancel_requested:
                handle.state = HandleState.CANCELLED
            else:
                handle.deadline = handle.next_deadline(self.time())
                handle.state = HandleState.PENDING
                self._timers.push(handle)
        elif isinstance(handle, HookHandle):
            handle.state = HandleState.CANCELLED if handle._cancel_requested else HandleState.PENDING
        else:
            handle.state = HandleState.DONE

    def _report(self, phase: Phase, handle: Handle, exc: Exception) -> None:
        error = CallbackError(
            f"{handle.name} raised {type(exc).__name__}: {exc}",
            cause=exc,
            context=ErrorContext(
                phase=phase.value,
                seq=handle.seq,
                callback=handle.name,
                iteration=self._iteration,
            ),
        )
        self._stats.errors += 1
        self._stats.last_error = error.message

        if self.exception_handler is not None:
            self.exception_handler(error)
        else:
            logger.error("callback_failed", exc_info=exc, **error.to_dict())

        if self.stop_on_error:
            raise error

    # === Helpers ===

    def _enqueue(self, phase: Phase, callback: Callable[..., Any], args: tuple[Any, ...]) -> Handle:
        self._check_closed()
        handle = Handle(callback, args, phase)
        self._queues[phase].push(handle)
        return handle

    def _register(self, watcher: Watcher) -> Watcher:
        watcher._on_close = self._queues[Phase.CLOSE].push
        self.poller.register(watcher)
        return watcher

    def _add_fd_watcher(
        self,
        fileobj: Any,
        events: int,
        callback: Callable[..., Any],
        args: tuple[Any, ...],
    ) -> FdWatcher:
        self._check_closed()
        self._remove_fd_watcher(fileobj, events)
        watcher = FdWatcher(fileobj, events, callback, args)
        self._register(watcher)
        return watcher

    def _remove_fd_watcher(self, fileobj: Any, events: int) -> bool:
        watcher = self.poller.find_fd_watcher(fileno(fileobj), events)
        if watcher is None:
            return False
        return watcher.cancel()

    def _requeue_timers(self, timers: Iterable[TimerHandle]) -> None:
        for timer in timers:
            if timer.state is HandleState.PENDING:
                self._timers.push(timer)

    def _requeue_pending(self, handles: Iterable[Handle]) -> None:
        rest = list(handles)
        watchers = [h for h in rest if isinstance(h, Watcher)]
        self._deferred_io.extendleft(reversed(watchers))
        self._queues[Phase.PENDING].requeue_front(h for h in rest if not isinstance(h, Watcher))

    def _requeue_ready(self, watchers: Iterable[Watcher]) -> None:
        for watcher in watchers:
            if watcher.state is HandleState.PENDING and watcher._owner is not None:
                watcher._owner._mark_ready(watcher)  # type: ignore[attr-defined]

    def _has_queued_work(self) -> bool:
        if any(self._queues.values()):
            return True
        return any(w.state is HandleState.PENDING for w in self._deferred_io)

    def _check_closed(self) -> None:
        if self._closed:
            raise LoopClosedError("loop is closed").with_context(loop_id=self.loop_id)

    def _enter_run(self) -> None:
        self._check_closed()
        if self._running:
            raise LoopRunningError("loop is already running").with_context(
                loop_id=self.loop_id,
                phase=self._phase.value if self._phase else None,
            )
        self._running = True
        self._stopping = False

    def _exit_run(self) -> None:
        self._running = False
        self._stopping = False


def _check_delay(value: Any, name: str, allow_negative: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidDelayError(f"{name} must be a number, got {type(value).__name__}")
    if math.isnan(value) or math.isinf(value):
        raise InvalidDelayError(f"{name} must be finite, got {value!r}")
    if not allow_negative and value < 0:
        raise InvalidDelayError(f"{name} must be >= 0, got {value!r}")


def _coerce_policy(value: MicrotaskPolicy | str) -> MicrotaskPolicy:
    try:
        return MicrotaskPolicy(value)
    except ValueError as exc:
        raise InvalidConfigError(
            f"unknown microtask policy {value!r}", key="microtask_policy", cause=exc
        ) from exc


def _positive_int(value: int, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidConfigError(f"{key} must be an integer >= 1, got {value!r}", key=key)
    return value


def _non_negative(value: float, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise InvalidConfigError(f"{key} must be >= 0, got {value!r}", key=key)
    return float(value)
