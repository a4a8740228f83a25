"""
Shared enums for the loop.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class Phase(str, Enum):
    """
    Phases of one loop iteration, in cycle order.

    Declaration order IS the iteration order; ``Phase.ordered()`` relies on it.
    """

    TIMERS = "timers"          # Due timers, deadline then registration order
    PENDING = "pending"        # I/O callbacks deferred from the last iteration
    PREPARE = "prepare"        # Persistent hooks run right before polling
    POLL = "poll"              # Ready I/O watchers
    CHECK = "check"            # Immediates
    CLOSE = "close"            # Close callbacks
    MICROTASKS = "microtasks"  # High-priority next-tick queue

    @classmethod
    def ordered(cls) -> list["Phase"]:
        return list(cls)

    @property
    def description(self) -> str:
        return _PHASE_DESCRIPTIONS[self]


_PHASE_DESCRIPTIONS = {
    Phase.TIMERS: "Callbacks of timers whose deadline has elapsed",
    Phase.PENDING: "I/O callbacks deferred past the previous poll budget",
    Phase.PREPARE: "Prepare hooks, run every iteration before polling",
    Phase.POLL: "Callbacks of watchers the poller reported ready",
    Phase.CHECK: "Immediates queued with call_soon / set_immediate",
    Phase.CLOSE: "Close callbacks",
    Phase.MICROTASKS: "next_tick callbacks, drained at each checkpoint",
}


class HandleState(str, Enum):
    """Lifecycle of a scheduled callback."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class MicrotaskPolicy(str, Enum):
    """When the microtask queue is checked."""

    ITERATION = "iteration"  # once, at the end of every iteration
    PHASE = "phase"          # after every phase
