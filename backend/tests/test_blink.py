"""
test_blink.py: Schedulers and the HaloBlink state machine.

Tests cover:
  - ManualScheduler ordering, repetition, cancellation
  - HaloBlink: IDLE → BLINKING → DONE (show forced on), cancel, restart guard
  - AsyncioScheduler driving a short blink on a real loop
"""

import asyncio

import pytest

from columnsync.services.blink import (
    BLINKING,
    CANCELLED,
    DONE,
    IDLE,
    AsyncioScheduler,
    HaloBlink,
    ManualScheduler,
    Scheduler,
)


# ===========================================================================
# Class 1: ManualScheduler
# ===========================================================================

class TestManualScheduler:

    def test_callbacks_run_in_due_order(self):
        s = ManualScheduler()
        seen = []
        s.call_later(0.3, lambda: seen.append("late"))
        s.call_later(0.1, lambda: seen.append("early"))
        assert s.advance(0.5) == 2
        assert seen == ["early", "late"]

    def test_nothing_runs_before_due(self):
        s = ManualScheduler()
        seen = []
        s.call_later(1.0, lambda: seen.append(1))
        s.advance(0.99)
        assert seen == []
        s.advance(0.01)
        assert seen == [1]

    def test_repeating_callback(self):
        s = ManualScheduler()
        seen = []
        s.call_every(0.5, lambda: seen.append(s.now))
        s.advance(2.0)
        assert seen == [0.5, 1.0, 1.5, 2.0]

    def test_cancelled_handle_never_fires(self):
        s = ManualScheduler()
        seen = []
        h = s.call_every(0.5, lambda: seen.append(1))
        s.advance(0.5)
        h.cancel()
        s.advance(5.0)
        assert seen == [1]
        assert s.pending() == 0

    def test_base_scheduler_is_abstract(self):
        with pytest.raises(NotImplementedError):
            Scheduler().call_later(1.0, lambda: None)


# ===========================================================================
# Class 2: HaloBlink
# ===========================================================================

class TestHaloBlink:

    def _blink(self, scheduler, shows, finished=None, duration=1.0, interval=0.25):
        return HaloBlink(scheduler, shows.append, duration, interval,
                         on_finish=finished.append if finished is not None else None)

    def test_starts_idle(self, scheduler):
        b = self._blink(scheduler, [])
        assert b.state == IDLE
        assert scheduler.pending() == 0

    def test_toggles_every_interval(self, scheduler):
        shows = []
        b = self._blink(scheduler, shows).start()
        assert b.state == BLINKING
        scheduler.advance(0.75)
        assert shows == [True, False, True, False]

    def test_done_forces_visible(self, scheduler):
        shows, finished = [], []
        b = self._blink(scheduler, shows, finished, duration=0.9).start()
        scheduler.advance(1.0)
        assert b.state == DONE
        assert shows[-1] is True
        assert finished == [b]
        assert scheduler.pending() == 0

    def test_cancel_leaves_show_untouched(self, scheduler):
        shows, finished = [], []
        b = self._blink(scheduler, shows, finished).start()
        scheduler.advance(0.25)
        b.cancel()
        scheduler.advance(5.0)
        assert b.state == CANCELLED
        assert shows == [True, False]
        assert finished == [b]

    def test_start_shows_the_halo(self, scheduler):
        shows = []
        self._blink(scheduler, shows).start()
        assert shows == [True]

    def test_cancel_after_done_is_noop(self, scheduler):
        finished = []
        b = self._blink(scheduler, [], finished).start()
        scheduler.advance(2.0)
        b.cancel()
        assert b.state == DONE
        assert len(finished) == 1

    def test_start_twice_raises(self, scheduler):
        b = self._blink(scheduler, []).start()
        with pytest.raises(RuntimeError):
            b.start()


# ===========================================================================
# Class 3: AsyncioScheduler
# ===========================================================================

class TestAsyncioScheduler:

    def test_blink_runs_to_completion_on_event_loop(self):
        async def scenario():
            shows = []
            blink = HaloBlink(AsyncioScheduler(), shows.append, duration_s=0.05, interval_s=0.01)
            blink.start()
            await asyncio.sleep(0.2)
            return blink, shows

        blink, shows = asyncio.run(scenario())
        assert blink.state == DONE
        assert False in shows
        assert shows[-1] is True

    def test_cancelled_repeat_stops(self):
        async def scenario():
            seen = []
            sched = AsyncioScheduler()
            handle = sched.call_every(0.01, lambda: seen.append(1))
            await asyncio.sleep(0.035)
            handle.cancel()
            count = len(seen)
            await asyncio.sleep(0.05)
            return count, len(seen)

        before, after = asyncio.run(scenario())
        assert before >= 1
        assert after == before
