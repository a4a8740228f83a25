"""Tests for phaseloop.core.enums."""

from phaseloop.core.enums import HandleState, MicrotaskPolicy, Phase


class TestPhase:
    def test_cycle_order(self):
        assert [p.value for p in Phase.ordered()] == [
            "timers",
            "pending",
            "prepare",
            "poll",
            "check",
            "close",
            "microtasks",
        ]

    def test_every_phase_described(self):
        for phase in Phase:
            assert phase.description

    def test_string_values(self):
        assert Phase("poll") is Phase.POLL
        assert Phase.CHECK == "check"


class TestOtherEnums:
    def test_handle_states(self):
        assert {s.value for s in HandleState} == {"pending", "running", "done", "cancelled"}

    def test_microtask_policies(self):
        assert MicrotaskPolicy("iteration") is MicrotaskPolicy.ITERATION
        assert MicrotaskPolicy("phase") is MicrotaskPolicy.PHASE
