"""
Halo blink as an explicit state machine over an injectable scheduler.

    IDLE ──start──▶ BLINKING ──duration elapsed──▶ DONE
                        │
                        └──cancel──▶ CANCELLED

While BLINKING the target's show flag flips every ``interval_s``. Reaching
DONE forces show back to True. CANCELLED leaves show where it was; callers
that cancel before destroying the target never see a late write.

``AsyncioScheduler`` drives real timers on the running loop;
``ManualScheduler`` is advanced explicitly (tests, replay).
"""
import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Tuple

from columnsync.config import BLINK_DURATION_S, BLINK_INTERVAL_S

logger = logging.getLogger("columnsync.blink")


# ---------------------------------------------------------------------------
# Schedulers
# ---------------------------------------------------------------------------

class TimerHandle:
    """Cancellable handle returned by every scheduler."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()


class Scheduler:
    """Interface: one-shot and repeating callbacks in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay, callback):
        inner = self.loop.call_later(delay, callback)
        return TimerHandle(inner.cancel)

    def call_every(self, interval, callback):
        state = {"inner": None}
        handle = TimerHandle(lambda: state["inner"] and state["inner"].cancel())

        def tick():
            if handle.cancelled:
                return
            callback()
            if not handle.cancelled:
                state["inner"] = self.loop.call_later(interval, tick)

        state["inner"] = self.loop.call_later(interval, tick)
        return handle


class ManualScheduler(Scheduler):
    """Deterministic scheduler: nothing fires until ``advance`` moves the clock."""

    def __init__(self):
        self.now = 0.0
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, Optional[float], Callable[[], None], TimerHandle]] = []

    def _push(self, due, interval, callback, handle):
        heapq.heappush(self._queue, (due, next(self._seq), interval, callback, handle))

    def call_later(self, delay, callback):
        handle = TimerHandle()
        self._push(self.now + delay, None, callback, handle)
        return handle

    def call_every(self, interval, callback):
        handle = TimerHandle()
        self._push(self.now + interval, interval, callback, handle)
        return handle

    def pending(self) -> int:
        return sum(1 for item in self._queue if not item[4].cancelled)

    def advance(self, seconds: float) -> int:
        """Run every callback due within ``seconds``, in time order. Returns how many ran."""
        target = self.now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target + 1e-9:
            due, _, interval, callback, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = due
            callback()
            fired += 1
            if interval is not None and not handle.cancelled:
                self._push(due + interval, interval, callback, handle)
        self.now = target
        return fired


# ---------------------------------------------------------------------------
# Blink state machine
# ---------------------------------------------------------------------------

IDLE = "idle"
BLINKING = "blinking"
DONE = "done"
CANCELLED = "cancelled"


class HaloBlink:
    def __init__(
        self,
        scheduler: Scheduler,
        set_show: Callable[[bool], None],
        duration_s: float = BLINK_DURATION_S,
        interval_s: float = BLINK_INTERVAL_S,
        on_finish: Optional[Callable[["HaloBlink"], None]] = None,
    ):
        self.scheduler = scheduler
        self.set_show = set_show
        self.duration_s = duration_s
        self.interval_s = interval_s
        self.on_finish = on_finish
        self.state = IDLE
        self.visible = True
        self._tick: Optional[TimerHandle] = None
        self._stop: Optional[TimerHandle] = None

    @property
    def active(self) -> bool:
        return self.state == BLINKING

    def start(self) -> "HaloBlink":
        if self.state != IDLE:
            raise RuntimeError(f"blink already {self.state}")
        self.state = BLINKING
        self.visible = True
        self.set_show(True)
        self._tick = self.scheduler.call_every(self.interval_s, self._toggle)
        self._stop = self.scheduler.call_later(self.duration_s, self._finish)
        return self

    def _toggle(self) -> None:
        if self.state != BLINKING:
            return
        self.visible = not self.visible
        self.set_show(self.visible)

    def _clear_timers(self) -> None:
        for handle in (self._tick, self._stop):
            if handle is not None:
                handle.cancel()
        self._tick = self._stop = None

    def _finish(self) -> None:
        if self.state != BLINKING:
            return
        self._clear_timers()
        self.state = DONE
        self.visible = True
        self.set_show(True)
        if self.on_finish is not None:
            self.on_finish(self)

    def cancel(self) -> None:
        if self.state != BLINKING:
            return
        self._clear_timers()
        self.state = CANCELLED
        if self.on_finish is not None:
            self.on_finish(self)
