"""The phase scheduler and its building blocks.

Quick Start::

    from phaseloop.loop import PhaseScheduler

    with PhaseScheduler() as loop:
        loop.call_later(0.5, print, "timer")
        loop.call_soon(print, "immediate")
        loop.next_tick(print, "tick")
        loop.run()
"""

from __future__ import annotations

from .clock import Clock, ManualClock, MonotonicClock
from .handles import FdWatcher, Handle, HookHandle, TimerHandle, Watcher
from .poller import ManualPoller, Poller, SelectorPoller
from .queues import CallbackQueue
from .scheduler import LoopHealth, LoopStats, PhaseScheduler
from .timers import TimerQueue
from .trace import PhaseTracer, TraceEvent

__all__ = [
    # Clock
    "Clock",
    "ManualClock",
    "MonotonicClock",
    # Handles
    "Handle",
    "HookHandle",
    "TimerHandle",
    "Watcher",
    "FdWatcher",
    # Containers
    "CallbackQueue",
    "TimerQueue",
    # Pollers
    "Poller",
    "SelectorPoller",
    "ManualPoller",
    # Scheduler
    "PhaseScheduler",
    "LoopStats",
    "LoopHealth",
    # Tracing
    "PhaseTracer",
    "TraceEvent",
]
