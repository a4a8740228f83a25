"""
CLI: ``phaseloop demo``, the classic ordering demonstration.

Runs on a ManualClock so the printed order is the same on every machine::

    timeout(0), immediate, next_tick        scheduled by the main program
    fake file read completes after 5 ms     → I/O callback in POLL
      └── schedules timeout(0), immediate, next_tick and closes a watcher

Inside an I/O callback the immediate always beats the zero timeout,
because CHECK comes before the next TIMERS phase.
"""

from __future__ import annotations

from typing import Any

import typer

from phaseloop.cli.utils import console, output_rows
from phaseloop.core.enums import MicrotaskPolicy
from phaseloop.loop import ManualClock, PhaseScheduler

IO_LATENCY = 0.005


def run_demo(policy: MicrotaskPolicy | str = MicrotaskPolicy.ITERATION) -> list[dict[str, Any]]:
    """Run the demonstration program and return one row per executed callback."""
    clock = ManualClock()
    rows: list[dict[str, Any]] = []

    with PhaseScheduler(clock=clock, microtask_policy=policy, slow_callback_threshold=0) as loop:

        def record(label: str) -> None:
            phase = loop.current_phase
            rows.append(
                {
                    "order": len(rows) + 1,
                    "iteration": loop.iteration,
                    "phase": phase.value if phase else None,
                    "time_ms": round(loop.time() * 1000, 3),
                    "callback": label,
                }
            )

        server = loop.watch(lambda result: None, oneshot=False)

        def on_read(result: str) -> None:
            record(f"I/O callback ({result})")
            loop.call_later(0, record, "timeout(0) from I/O")
            loop.call_soon(record, "immediate from I/O")
            loop.next_tick(record, "next_tick from I/O")
            server.close(record, "close callback")

        read = loop.watch(on_read)
        loop.call_later(IO_LATENCY, read.signal, "file contents")

        loop.call_later(0, record, "timeout(0)")
        loop.call_soon(record, "immediate")
        loop.next_tick(record, "next_tick")

        loop.run()

    return rows


def demo(
    policy: MicrotaskPolicy = typer.Option(
        MicrotaskPolicy.ITERATION, "--policy", "-p", help="Microtask checkpoint policy."
    ),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run the phase-ordering demonstration and print what ran where."""
    rows = run_demo(policy)
    output_rows(rows, as_json=json_out, title=f"Execution order (microtasks per {policy.value})")
    if not json_out:
        console.print(f"\n[dim]{len(rows)} callbacks, {rows[-1]['iteration']} iterations[/dim]")
