"""Tests for PhaseTracer."""

import json

from phaseloop.core.enums import Phase
from phaseloop.loop import Handle, PhaseTracer, TraceEvent


class TestTraceEvent:
    def test_to_dict_drops_empty_fields(self):
        event = TraceEvent(iteration=1, kind="phase", phase="check", count=2)
        assert event.to_dict() == {"iteration": 1, "kind": "phase", "phase": "check", "count": 2}


class TestPhaseTracer:
    def test_records_callbacks(self):
        tracer = PhaseTracer()
        handle = Handle(print)
        tracer.iteration_started(1, 0.0)
        tracer.phase_entered(1, Phase.CHECK, 1)
        tracer.callback_ran(1, Phase.CHECK, handle, 0.12345)

        assert [e.kind for e in tracer.events] == ["iteration", "phase", "callback"]
        event = tracer.callbacks()[0]
        assert event.name == "print"
        assert event.seq == handle.seq
        assert event.duration_ms == 0.123
        assert event.error is None

    def test_records_error(self):
        tracer = PhaseTracer()
        tracer.callback_ran(1, Phase.POLL, Handle(print), 1.0, ValueError("x"))
        assert tracer.callbacks()[0].error == "ValueError('x')"

    def test_max_events_drops_oldest(self):
        tracer = PhaseTracer(max_events=2)
        for n in range(1, 5):
            tracer.iteration_started(n, float(n))
        assert [e.iteration for e in tracer.events] == [3, 4]

    def test_json_export(self):
        tracer = PhaseTracer()
        tracer.iteration_started(1, 0.5)
        data = json.loads(tracer.to_json())
        assert data == {"events": [{"iteration": 1, "kind": "iteration", "time": 0.5}]}

    def test_clear(self):
        tracer = PhaseTracer()
        tracer.iteration_started(1, 0.0)
        tracer.clear()
        assert tracer.events == []

    def test_phase_sequence_from_loop(self, make_loop, tracer):
        loop = make_loop(tracer=tracer)
        watcher = loop.watch(lambda result: None)
        loop.call_later(1, watcher.signal, None)
        loop.on_close(lambda: None)
        loop.run()

        assert tracer.phase_sequence() == ["close", "timers", "poll"]
        iterations = [e.iteration for e in tracer.events if e.kind == "iteration"]
        assert iterations == [1, 2]
