"""Tests for TimerQueue."""

from phaseloop.core.enums import HandleState
from phaseloop.loop import TimerHandle, TimerQueue


def make_timer(deadline):
    return TimerHandle(deadline, lambda: None)


class TestTimerQueue:
    def test_pop_due_in_deadline_then_seq_order(self):
        queue = TimerQueue()
        late = make_timer(2.0)
        first = make_timer(1.0)
        second = make_timer(1.0)
        for timer in (late, first, second):
            queue.push(timer)

        assert queue.pop_due(1.5) == [first, second]
        assert len(queue) == 1
        assert queue.next_deadline() == 2.0

    def test_pop_due_releases_ownership(self):
        queue = TimerQueue()
        timer = make_timer(0)
        queue.push(timer)
        queue.pop_due(0)
        assert timer._owner is None
        # cancelling a popped timer must not touch the queue's counters
        timer.cancel()
        assert len(queue) == 0

    def test_cancel_is_lazy_but_counted(self):
        queue = TimerQueue()
        timer = make_timer(1.0)
        queue.push(timer)
        queue.push(make_timer(3.0))

        timer.cancel()

        assert len(queue) == 1
        assert queue.next_deadline() == 3.0
        assert queue.pop_due(5.0)[0].deadline == 3.0

    def test_has_referenced_tracks_unref(self):
        queue = TimerQueue()
        timer = make_timer(1.0)
        queue.push(timer)
        assert queue.has_referenced()
        timer.unref()
        assert not queue.has_referenced()
        assert len(queue) == 1
        timer.ref()
        assert queue.has_referenced()

    def test_unref_before_push(self):
        queue = TimerQueue()
        queue.push(make_timer(1.0).unref())
        assert not queue.has_referenced()

    def test_clear_cancels(self):
        queue = TimerQueue()
        timer = make_timer(1.0)
        queue.push(timer)
        queue.clear()
        assert len(queue) == 0
        assert queue.next_deadline() is None
        assert timer.state is HandleState.CANCELLED

    def test_empty(self):
        queue = TimerQueue()
        assert queue.pop_due(100) == []
        assert queue.next_deadline() is None
        assert not queue.has_referenced()
