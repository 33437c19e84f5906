from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

import pytest

from cpt_engine.clock import ManualClock, run_until
from cpt_engine.cpt_core import SchedulerState, SessionStatus
from cpt_engine.engine import CptEngine, build_cpt_engine
from cpt_engine.interpretation import RiskBand
from cpt_engine.protocols import letter_cpt_config
from cpt_engine.scheduler import EndReason

T = TypeVar("T")


class ScriptedRng:
    """Every fifth trial is the non-target; everything else picks the first option.

    ``random()`` is drawn exactly once per armed trial, so the draw count is the
    trial number.
    """

    def __init__(self) -> None:
        self.draws = 0

    def random(self) -> float:
        self.draws += 1
        return 0.999 if self.draws % 5 == 0 else 0.0

    def choice(self, seq: Sequence[T]) -> T:
        return seq[0]


def _latency_for(n: int) -> float | None:
    if n % 5 == 0:
        return 350.0 if n % 10 == 0 else None
    if n % 5 == 1:
        return None
    return {2: 300.0, 3: 400.0, 4: 500.0}[n % 5]


def test_headless_scripted_letter_run_produces_expected_metrics_and_risk() -> None:
    clock = ManualClock()
    engine = build_cpt_engine(config=letter_cpt_config(), clock=clock, seed=1, rng=ScriptedRng())
    engine.start()

    for n in range(1, 361):
        onset = 500.0 + (n - 1) * 1000.0
        run_until(clock, engine.timers, onset)
        assert engine.stimulus_visible()
        assert engine.current_trial is not None
        assert engine.current_trial.sequence == n
        assert engine.current_trial.is_target is (n % 5 != 0)

        latency = _latency_for(n)
        if latency is not None:
            run_until(clock, engine.timers, onset + latency)
            assert engine.respond() is True

    run_until(clock, engine.timers, 360_501.0)

    assert engine.status is SessionStatus.FINISHED
    assert engine.session_end is not None
    assert engine.session_end.reason is EndReason.TRIAL_CAP

    trials = engine.trials()
    assert len(trials) == 360
    seqs = [t.sequence for t in trials]
    assert seqs == sorted(set(seqs))
    assert {t.stimulus for t in trials} == {"A", "X"}
    assert {t.isi_ms for t in trials} == {1000.0}
    assert trials[59].phase == 0 and trials[60].phase == 1 and trials[-1].phase == 5
    assert trials[-1].sub_phase == 2

    m = engine.metrics()
    overall = m.overall
    assert overall.targets == 288
    assert overall.non_targets == 72
    assert overall.hits == 216
    assert overall.omissions == 72
    assert overall.commissions == 36
    assert overall.anticipatory == 0
    assert overall.omission_rate == pytest.approx(0.25)
    assert overall.commission_rate == pytest.approx(0.5)
    assert overall.hit_rt.mean_ms == pytest.approx(400.0)
    assert overall.hit_rt.sd_ms == pytest.approx(81.6497, abs=1e-3)
    assert overall.hit_rt.variability == pytest.approx(20.4124, abs=1e-3)
    assert overall.detectability == pytest.approx(25.0)
    assert m.drift == pytest.approx(0.0, abs=1e-9)
    assert m.response_style == "Fast/Impulsive"
    assert all(p.trials == 60 for p in m.phases)

    interp = engine.interpretation()
    assert interp.indicators == (
        "Elevated omission errors",
        "Elevated commission errors",
        "High reaction time variability",
        "Reduced detectability",
    )
    assert interp.risk_score == 7
    assert interp.risk_band is RiskBand.HIGH
    assert interp.omission_rate_pct == 25.0
    assert interp.variability == 20.4


def _drive_targets_only(engine: CptEngine, clock: ManualClock) -> None:
    engine.start()
    while engine.status is SessionStatus.RUNNING:
        due = engine.timers.next_due_ms()
        assert due is not None
        run_until(clock, engine.timers, due)
        trial = engine.current_trial
        if (
            engine.state is SchedulerState.STIMULUS_VISIBLE
            and trial is not None
            and trial.onset_ms is not None
            and trial.is_target
            and not trial.responded
        ):
            run_until(clock, engine.timers, trial.onset_ms + 320.0 + (trial.sequence % 3) * 40.0)
            assert engine.respond() is True


def _seeded_run(seed: int) -> CptEngine:
    clock = ManualClock()
    engine = build_cpt_engine(config=letter_cpt_config(trial_cap=40), clock=clock, seed=seed)
    _drive_targets_only(engine, clock)
    return engine


def test_same_seed_and_responses_reproduce_the_session() -> None:
    a = _seeded_run(777)
    b = _seeded_run(777)

    assert len(a.trials()) == 40
    assert a.trials() == b.trials()
    assert a.metrics() == b.metrics()
    assert a.interpretation() == b.interpretation()
    assert a.metrics().overall.commissions == 0
    assert a.metrics().overall.omissions == 0

    c = _seeded_run(778)
    assert [t.stimulus for t in c.trials()] != [t.stimulus for t in a.trials()]
