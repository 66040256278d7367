"""
Unit tests for timer_engine.py: countdown clock and scheduled events.
The clock tests drive time through an injected fake clock.
"""
import sys
import os
import asyncio

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from timer_engine import Timer, ScheduledEvent


class FakeClock:
    def __init__(self, start=1_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


def make_timer(seconds=5, clock=None):
    clock = clock or FakeClock()
    return Timer("tossup", seconds, clock=clock), clock


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------

class TestReset:
    def test_initial_timer_is_paused_at_full_time(self):
        timer, _ = make_timer(5)
        snap = timer.snapshot()
        assert snap.running is False
        assert snap.remaining_ms == 5000
        assert snap.ends_at_ms == 0

    def test_reset_running_sets_absolute_deadline(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        assert timer.running is True
        assert timer.ends_at_ms == clock.now + 5000

    def test_reset_paused_clears_deadline(self):
        timer, clock = make_timer(5)
        timer.reset("bonus", 20, True)
        clock.advance(3000)
        timer.reset("tossup", 5, False)
        assert timer.mode == "tossup"
        assert timer.running is False
        assert timer.remaining_ms == 5000
        assert timer.ends_at_ms == 0

    def test_reset_switches_mode(self):
        timer, _ = make_timer(5)
        timer.reset("bonus", 20, False)
        assert timer.snapshot().mode == "bonus"
        assert timer.snapshot().remaining_ms == 20000


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------

class TestStop:
    def test_stop_freezes_true_remaining(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(1234)
        timer.stop()
        assert timer.running is False
        assert timer.remaining_ms == 3766
        assert timer.ends_at_ms == 0

    def test_snapshot_equals_paused_value_after_stop(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(2000)
        timer.stop()
        clock.advance(10_000)
        assert timer.snapshot().remaining_ms == 3000

    def test_stop_when_stopped_is_noop(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(1000)
        timer.stop()
        clock.advance(1000)
        timer.stop()
        assert timer.remaining_ms == 4000

    def test_stop_after_deadline_is_zero_not_negative(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(9000)
        timer.stop()
        assert timer.remaining_ms == 0


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class TestSnapshot:
    def test_remaining_is_non_increasing_while_running(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        readings = []
        for _ in range(8):
            readings.append(timer.snapshot().remaining_ms)
            clock.advance(700)
        assert readings == sorted(readings, reverse=True)
        assert all(r >= 0 for r in readings)

    def test_snapshot_does_not_mutate(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(1500)
        timer.snapshot()
        timer.snapshot()
        assert timer.running is True
        assert timer.remaining_ms == 5000  # stored value stays stale while running

    def test_expired_clock_reads_as_stopped_at_zero(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(5001)
        snap = timer.snapshot()
        assert snap.running is False
        assert snap.remaining_ms == 0
        assert snap.ends_at_ms == 0
        # Underlying state untouched
        assert timer.running is True


class TestResume:
    def test_resume_restarts_from_frozen_value(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        clock.advance(2000)
        timer.stop()
        clock.advance(60_000)
        assert timer.resume() is True
        assert timer.ends_at_ms == clock.now + 3000

    def test_resume_with_no_time_left_stays_stopped(self):
        timer, _ = make_timer(5)
        timer.expire()
        assert timer.resume() is False
        assert timer.running is False

    def test_resume_when_running_is_noop(self):
        timer, clock = make_timer(5)
        timer.reset("tossup", 5, True)
        deadline = timer.ends_at_ms
        clock.advance(100)
        assert timer.resume() is False
        assert timer.ends_at_ms == deadline


# ---------------------------------------------------------------------------
# ScheduledEvent
# ---------------------------------------------------------------------------

class TestScheduledEvent:
    @pytest.mark.asyncio
    async def test_fires_after_delay(self):
        fired = []

        async def callback(event):
            fired.append(event)

        event = ScheduledEvent(10, callback)
        assert event.pending is True
        await asyncio.sleep(0.05)
        assert fired == [event]
        assert event.fired is True

    @pytest.mark.asyncio
    async def test_cancel_before_fire_never_runs(self):
        fired = []

        async def callback(event):
            fired.append(event)

        event = ScheduledEvent(20, callback)
        event.cancel()
        await asyncio.sleep(0.06)
        assert fired == []
        assert event.cancelled is True
        assert event.pending is False

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_lock_never_runs(self):
        """A callback that woke up but is blocked on the lock must not run once canceled."""
        lock = asyncio.Lock()
        ran = []

        async def callback(event):
            async with lock:
                ran.append(event)

        await lock.acquire()
        event = ScheduledEvent(0, callback)
        await asyncio.sleep(0.02)  # sleep finished; callback now waits on the lock
        event.cancel()
        lock.release()
        await asyncio.sleep(0.02)
        assert ran == []

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self):
        async def callback(event):
            raise RuntimeError("boom")

        event = ScheduledEvent(0, callback)
        await asyncio.sleep(0.02)
        assert event.fired is True
        assert event.pending is False

    @pytest.mark.asyncio
    async def test_negative_delay_clamped(self):
        fired = []

        async def callback(event):
            fired.append(True)

        event = ScheduledEvent(-50, callback)
        assert event.delay_ms == 0
        await asyncio.sleep(0.02)
        assert fired == [True]
