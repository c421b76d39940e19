"""Tests for the schedulers and the round timer."""

import asyncio

import pytest

from turingtable.core.round_timer import RoundTimer
from turingtable.core.scheduler import AsyncioScheduler, ManualScheduler


class TestManualScheduler:
    """Tests for the virtual clock."""

    def test_calls_fire_in_time_order(self, scheduler):
        """Test that due calls fire in order of their deadlines."""
        fired = []
        scheduler.schedule(3, fired.append, "c")
        scheduler.schedule(1, fired.append, "a")
        scheduler.schedule(2, fired.append, "b")

        assert scheduler.advance(2.5) == 2
        assert fired == ["a", "b"]
        assert scheduler.now() == 2.5

        scheduler.advance(1)
        assert fired == ["a", "b", "c"]

    def test_nothing_fires_before_advance(self, scheduler):
        fired = []
        scheduler.schedule(0, fired.append, "now")
        assert fired == []
        scheduler.advance(0)
        assert fired == ["now"]

    def test_cancel_token_cancels_only_that_token(self, scheduler):
        """Test that a phase token cancels every call scheduled under it."""
        fired = []
        scheduler.schedule(1, fired.append, "old-1", token=1)
        scheduler.schedule(2, fired.append, "old-2", token=1)
        scheduler.schedule(1, fired.append, "new", token=2)
        scheduler.schedule(1, fired.append, "untracked")

        assert scheduler.cancel_token(1) == 2
        assert scheduler.pending_calls(1) == []

        scheduler.advance(5)
        assert sorted(fired) == ["new", "untracked"]

    def test_cancelled_call_does_not_fire(self, scheduler):
        fired = []
        call = scheduler.schedule(1, fired.append, "x")
        call.cancel()
        assert not call.pending

        scheduler.advance(2)
        assert fired == []

    def test_call_scheduled_during_advance_fires_if_due(self, scheduler):
        """Test that callbacks can chain within a single advance."""
        fired = []

        def first():
            fired.append("first")
            scheduler.schedule(1, fired.append, "second")

        scheduler.schedule(1, first)
        scheduler.advance(3)
        assert fired == ["first", "second"]

    def test_run_until(self, scheduler):
        state = {"done": False}
        scheduler.schedule(4, state.update, {"done": True})

        assert scheduler.run_until(lambda: state["done"], timeout=10)
        assert scheduler.now() == pytest.approx(4.0)

    def test_run_until_gives_up(self, scheduler):
        assert not scheduler.run_until(lambda: False, timeout=3)
        assert scheduler.now() == pytest.approx(3.0)

    def test_cancel_all(self, scheduler):
        fired = []
        scheduler.schedule(1, fired.append, "a", token=1)
        scheduler.schedule(1, fired.append, "b")
        scheduler.cancel_all()
        scheduler.advance(2)
        assert fired == []
        assert scheduler.next_fire_at is None


class TestAsyncioScheduler:
    """Tests for the event-loop backed scheduler."""

    @pytest.mark.asyncio
    async def test_fires_on_running_loop(self):
        scheduler = AsyncioScheduler()
        done = asyncio.Event()
        scheduler.schedule(0.01, done.set)

        await asyncio.wait_for(done.wait(), timeout=1)
        assert done.is_set()

    @pytest.mark.asyncio
    async def test_cancel_token(self):
        scheduler = AsyncioScheduler()
        fired = []
        scheduler.schedule(0.01, fired.append, "x", token=3)
        scheduler.cancel_token(3)

        await asyncio.sleep(0.05)
        assert fired == []


class TestRoundTimer:
    """Tests for the per-round countdown."""

    def test_ticks_then_expires_once(self, scheduler):
        """Test that a 5s round ticks each second and expires exactly once."""
        ticks = []
        expired = []
        timer = RoundTimer(scheduler, tick_interval=1.0)
        deadline = timer.start(5, on_expire=lambda: expired.append(scheduler.now()), on_tick=ticks.append)

        assert deadline == 5
        scheduler.advance(10)

        assert expired == [pytest.approx(5.0)]
        assert ticks == [pytest.approx(4.0), pytest.approx(3.0), pytest.approx(2.0), pytest.approx(1.0)]
        assert not timer.running

    def test_stop_prevents_expiry(self, scheduler):
        expired = []
        timer = RoundTimer(scheduler)
        timer.start(3, on_expire=lambda: expired.append(True))

        scheduler.advance(2)
        assert timer.remaining == pytest.approx(1.0)
        timer.stop()
        scheduler.advance(5)

        assert expired == []
        assert timer.remaining == 0.0

    def test_restart_replaces_countdown(self, scheduler):
        expired = []
        timer = RoundTimer(scheduler)
        timer.start(3, on_expire=lambda: expired.append("first"))
        timer.start(6, on_expire=lambda: expired.append("second"))

        scheduler.advance(10)
        assert expired == ["second"]

    def test_timer_calls_carry_token(self, scheduler):
        """Test that timer calls die with their phase token."""
        expired = []
        timer = RoundTimer(scheduler)
        timer.start(3, on_expire=lambda: expired.append(True), token=4)

        scheduler.cancel_token(4)
        scheduler.advance(5)
        assert expired == []
