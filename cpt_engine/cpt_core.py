from __future__ import annotations

import math
import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, TypeVar

T = TypeVar("T")


class SessionStatus(StrEnum):
    READY = "ready"
    RUNNING = "running"
    FINISHED = "finished"
    ABORTED = "aborted"


class SchedulerState(StrEnum):
    IDLE = "idle"
    ARMED = "armed"  # waiting for the onset timer
    STIMULUS_VISIBLE = "stimulus_visible"
    RESPONSE_WINDOW_OPEN = "response_window_open"  # stimulus hidden, ISI still running
    SESSION_ENDED = "session_ended"


@dataclass(frozen=True, slots=True)
class PhaseMarker:
    phase: int
    sub_phase: int = 0


@dataclass(frozen=True, slots=True)
class Trial:
    """One stimulus presentation.

    ``sequence`` is the 1-based trial number. ``onset_ms`` stays ``None`` until
    the stimulus is actually shown; a trial without an onset is never scored.
    """

    sequence: int
    stimulus: str
    is_target: bool
    isi_ms: float
    phase: int
    sub_phase: int = 0
    armed_at_ms: float = 0.0
    onset_ms: float | None = None
    responded: bool = False
    response_ms: float | None = None

    @property
    def is_complete(self) -> bool:
        return self.onset_ms is not None

    @property
    def is_hit(self) -> bool:
        return self.is_target and self.responded

    @property
    def is_omission(self) -> bool:
        return self.is_target and not self.responded

    @property
    def is_commission(self) -> bool:
        return (not self.is_target) and self.responded


@dataclass(frozen=True, slots=True)
class EngineSnapshot:
    """View model for the UI (pure data)."""

    title: str
    status: SessionStatus
    state: SchedulerState
    trial_number: int
    phase: int
    phase_label: str
    stimulus: str | None
    stimulus_visible: bool
    time_remaining_ms: float
    committed_trials: int


class RandomSource(Protocol):
    """What stimulus and ISI selection draw from; SeededRng in production."""

    def random(self) -> float: ...

    def choice(self, seq: Sequence[T]) -> T: ...


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def random(self) -> float:
        return self._rng.random()

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)


def safe_ratio(num: float, den: float) -> float:
    return 0.0 if den == 0 else float(num) / float(den)


def round_half_up(x: float, digits: int = 0) -> float:
    # Matches the rounding the result screens have always shown (0.5 rounds up).
    scale = 10.0**digits
    return math.floor(x * scale + 0.5) / scale


def format_time(ms: float) -> str:
    total_seconds = int(max(0.0, ms) // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"
