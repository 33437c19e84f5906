from __future__ import annotations

import heapq
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now_ms(self) -> float:
        """Return monotonic milliseconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


@dataclass
class ManualClock:
    """Logical clock for headless runs; only moves when told to."""

    t_ms: float = 0.0

    def now_ms(self) -> float:
        return self.t_ms

    def advance(self, dt_ms: float) -> None:
        self.t_ms += float(dt_ms)

    def set(self, t_ms: float) -> None:
        if t_ms < self.t_ms:
            raise ValueError("ManualClock cannot move backwards")
        self.t_ms = float(t_ms)


@dataclass(order=True, slots=True)
class TimerHandle:
    due_ms: float
    seq: int
    label: str = field(compare=False)
    callback: Callable[[], None] = field(compare=False, repr=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class TimerQueue:
    """Single-threaded one-shot timers keyed on an injected Clock.

    Nothing fires by itself: the host calls ``run_due()`` (once per frame in the
    pygame shell, or through ``run_until`` in tests). Timers due at the same
    instant fire in the order they were scheduled.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[TimerHandle] = []
        self._seq = 0

    def call_later(self, delay_ms: float, callback: Callable[[], None], *, label: str = "") -> TimerHandle:
        delay = max(0.0, float(delay_ms))
        self._seq += 1
        handle = TimerHandle(
            due_ms=self._clock.now_ms() + delay,
            seq=self._seq,
            label=str(label),
            callback=callback,
        )
        heapq.heappush(self._heap, handle)
        return handle

    def pending(self) -> int:
        return sum(1 for h in self._heap if not h.cancelled)

    def next_due_ms(self) -> float | None:
        self._drop_cancelled()
        if not self._heap:
            return None
        return self._heap[0].due_ms

    def run_due(self) -> int:
        """Fire every live timer whose due time has passed. Returns the count fired.

        The clock is read again before each timer, so a zero-delay timer
        scheduled by a callback fires in the same pass.
        """

        fired = 0
        while True:
            self._drop_cancelled()
            if not self._heap or self._heap[0].due_ms > self._clock.now_ms():
                return fired
            handle = heapq.heappop(self._heap)
            handle.cancelled = True
            handle.callback()
            fired += 1

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)


def run_until(clock: ManualClock, timers: TimerQueue, t_ms: float) -> None:
    """Advance a ManualClock to ``t_ms``, stopping at each timer's due time.

    Callbacks therefore observe the exact logical instant they were due at,
    including timers scheduled by other callbacks along the way.
    """

    target = float(t_ms)
    while True:
        due = timers.next_due_ms()
        if due is None or due > target:
            break
        if due > clock.now_ms():
            clock.set(due)
        timers.run_due()
    if target > clock.now_ms():
        clock.set(target)
