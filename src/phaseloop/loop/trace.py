"""Phase tracer: record what the loop ran, in which phase and iteration.

Architecture::

    PhaseScheduler(tracer=PhaseTracer())
    ├── each iteration → tracer.iteration_started(n, now)
    ├── each non-empty phase → tracer.phase_entered(n, phase, count)
    └── each callback → tracer.callback_ran(n, phase, handle, duration_ms, error)
            → TraceEvent
    tracer.events / tracer.callbacks() / to_dict() / to_json()

Example::

    tracer = PhaseTracer()
    loop = PhaseScheduler(clock=clock, poller=ManualPoller(clock), tracer=tracer)
    loop.call_soon(lambda: None)
    loop.run()
    [e.phase for e in tracer.callbacks()]   # ['check']
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from phaseloop.core.enums import Phase

from .handles import Handle


@dataclass(frozen=True)
class TraceEvent:
    iteration: int
    kind: str  # "iteration" | "phase" | "callback"
    phase: str | None = None
    name: str | None = None
    seq: int | None = None
    time: float | None = None
    count: int | None = None
    duration_ms: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class PhaseTracer:
    """Collects TraceEvents; ``max_events`` bounds memory (oldest dropped)."""

    max_events: int | None = None
    events: list[TraceEvent] = field(default_factory=list)

    def iteration_started(self, iteration: int, now: float) -> None:
        self._add(TraceEvent(iteration=iteration, kind="iteration", time=now))

    def phase_entered(self, iteration: int, phase: Phase, count: int) -> None:
        self._add(TraceEvent(iteration=iteration, kind="phase", phase=phase.value, count=count))

    def callback_ran(
        self,
        iteration: int,
        phase: Phase,
        handle: Handle,
        duration_ms: float,
        error: BaseException | None = None,
    ) -> None:
        self._add(
            TraceEvent(
                iteration=iteration,
                kind="callback",
                phase=phase.value,
                name=handle.name,
                seq=handle.seq,
                duration_ms=round(duration_ms, 3),
                error=repr(error) if error is not None else None,
            )
        )

    def callbacks(self) -> list[TraceEvent]:
        return [e for e in self.events if e.kind == "callback"]

    def phase_sequence(self) -> list[str]:
        """Phases of executed callbacks, in execution order."""
        return [e.phase for e in self.callbacks() if e.phase is not None]

    def clear(self) -> None:
        self.events.clear()

    def to_dict(self) -> dict[str, Any]:
        return {"events": [e.to_dict() for e in self.events]}

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def _add(self, event: TraceEvent) -> None:
        self.events.append(event)
        if self.max_events is not None and len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]
