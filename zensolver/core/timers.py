"""Deadline scheduling for the round state machine.

The state machine only needs to schedule cancelable one-shot callbacks.
The Qt runtime backs this with QTimer; headless runs and tests use
ManualScheduler, which is advanced explicitly with the frame timestamps.
"""

import heapq
import itertools
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None: ...

    def remaining_ms(self) -> Optional[float]:
        """Time left before the callback runs, None once fired or cancelled."""
        ...


class Scheduler(Protocol):
    """Schedules one-shot callbacks after a delay in milliseconds."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


class ManualTimer:
    """Handle of a ManualScheduler entry."""

    def __init__(
        self,
        deadline_ms: float,
        callback: Callable[[], None],
        scheduler: "ManualScheduler",
    ) -> None:
        self.deadline_ms = deadline_ms
        self.callback: Optional[Callable[[], None]] = callback
        self._scheduler = scheduler

    @property
    def cancelled(self) -> bool:
        return self.callback is None

    def cancel(self) -> None:
        self.callback = None

    def remaining_ms(self) -> Optional[float]:
        if self.callback is None:
            return None
        return max(0.0, self.deadline_ms - self._scheduler.now_ms)


class ManualScheduler:
    """Deterministic scheduler driven by explicit timestamps.

    Timers are due when their deadline is less than or equal to the
    time passed to advance_to(). Callbacks run in deadline order, ties in
    scheduling order, and may schedule further timers.
    """

    def __init__(self, now_ms: float = 0.0) -> None:
        self._now_ms = now_ms
        self._queue: list[tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    @property
    def now_ms(self) -> float:
        return self._now_ms

    @property
    def pending(self) -> int:
        """Number of timers that are scheduled and not cancelled."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now_ms + max(0.0, delay_ms), callback, self)
        heapq.heappush(self._queue, (timer.deadline_ms, next(self._seq), timer))
        return timer

    def advance_to(self, now_ms: float) -> int:
        """Move the clock forward and fire every due timer.

        Returns:
            Number of callbacks fired
        """
        fired = 0
        while self._queue and self._queue[0][0] <= now_ms:
            deadline, _, timer = heapq.heappop(self._queue)
            callback = timer.callback
            if callback is None:
                continue
            timer.callback = None
            self._now_ms = max(self._now_ms, deadline)
            callback()
            fired += 1
        self._now_ms = max(self._now_ms, now_ms)
        return fired

    def advance_by(self, delta_ms: float) -> int:
        return self.advance_to(self._now_ms + delta_ms)
