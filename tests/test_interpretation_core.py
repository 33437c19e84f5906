from __future__ import annotations

import pytest

from cpt_engine.cpt_core import Trial
from cpt_engine.interpretation import (
    NON_CLINICAL_NOTICE,
    RiskBand,
    evaluate_rule,
    interpret,
    metric_value,
    risk_band,
)
from cpt_engine.metrics import compute_metrics
from cpt_engine.protocols import (
    LETTER_CPT,
    LETTER_RISK,
    SHAPE_CPT,
    SHAPE_RISK,
    Direction,
    RiskLevel,
    RiskMetric,
    RiskRule,
)


def _build(rows: list[tuple[bool, float | None, int]]) -> list[Trial]:
    return [
        Trial(
            sequence=i + 1,
            stimulus="T" if target else "N",
            is_target=target,
            isi_ms=2000.0,
            phase=phase,
            onset_ms=float(i) * 2000.0,
            responded=rt is not None,
            response_ms=rt,
        )
        for i, (target, rt, phase) in enumerate(rows)
    ]


def test_clean_letter_run_is_low_risk_with_no_indicators() -> None:
    rows = [(True, 400.0 if i % 2 else 410.0, 0) for i in range(20)] + [(False, None, 0)] * 5
    result = interpret(compute_metrics(_build(rows), LETTER_CPT), LETTER_CPT.risk)

    assert result.indicators == ()
    assert result.concerns == ()
    assert result.risk_score == 0
    assert result.risk_band is RiskBand.LOW
    assert result.detectability == 100.0
    assert result.notice == NON_CLINICAL_NOTICE


def test_moderate_omissions_add_one_point() -> None:
    rows = [(True, None, 0)] * 12 + [(True, 400.0, 0)] * 88 + [(False, None, 0)] * 10
    result = interpret(compute_metrics(_build(rows), LETTER_CPT), LETTER_CPT.risk)

    assert result.indicators == ("Moderate omission errors",)
    assert result.concerns == ("Some missed targets may indicate attention difficulties",)
    assert result.risk_score == 1
    assert result.risk_band is RiskBand.LOW
    assert result.omission_rate_pct == 12.0
    assert result.detectability == 88.0


def test_elevated_letter_indicators_reach_high_band() -> None:
    hits = [(True, 300.0 if i % 2 else 500.0, 0) for i in range(80)]
    rows = [(True, None, 0)] * 20 + hits + [(False, 300.0, 0)] * 3 + [(False, None, 0)] * 7
    result = interpret(compute_metrics(_build(rows), LETTER_CPT), LETTER_CPT.risk)

    assert result.indicators == (
        "Elevated omission errors",
        "Elevated commission errors",
        "High reaction time variability",
    )
    assert result.risk_score == 6
    assert result.risk_band is RiskBand.HIGH
    assert result.variability == 25.0
    assert result.commission_rate_pct == 30.0


def test_shape_phase_rules_and_hit_rate_gap() -> None:
    rows = (
        [(True, 400.0, 0)] * 4
        + [(False, None, 0)] * 10
        + [(True, 400.0, 1)] * 5
        + [(True, None, 1)] * 5
        + [(False, None, 1)] * 4
    )
    snapshot = compute_metrics(_build(rows), SHAPE_CPT)
    result = interpret(snapshot, SHAPE_CPT.risk)

    assert metric_value(snapshot, RiskMetric.PHASE_HIT_RATE_GAP) == pytest.approx(0.5)
    assert metric_value(snapshot, RiskMetric.OMISSION_RATE, 0) == 0.0
    assert result.indicators == (
        "Elevated overall omission errors",
        "Significant performance difference between halves",
    )
    assert result.risk_score == 2
    assert result.risk_band is RiskBand.LOW


def test_below_direction_and_missing_phase() -> None:
    snapshot = compute_metrics(_build([(True, 400.0, 0), (False, 350.0, 0)]), LETTER_CPT)
    low_detect = RiskRule(
        metric=RiskMetric.DETECTABILITY,
        direction=Direction.BELOW,
        elevated=RiskLevel(30.0, 1, "Reduced detectability", "..."),
    )
    assert snapshot.overall.detectability == 0.0
    assert evaluate_rule(snapshot, low_detect) is low_detect.elevated

    missing = RiskRule(metric=RiskMetric.OMISSION_RATE, phase=9, elevated=RiskLevel(0.0, 5, "x", "y"))
    assert evaluate_rule(snapshot, missing) is None


def test_single_hit_variability_sentinel_never_triggers() -> None:
    snapshot = compute_metrics(_build([(True, 400.0, 0), (False, None, 0)]), LETTER_CPT)
    assert snapshot.overall.hit_rt.variability == -1.0
    assert "High reaction time variability" not in interpret(snapshot, LETTER_CPT.risk).indicators


@pytest.mark.parametrize(
    ("score", "letter", "shape"),
    [
        (0, RiskBand.LOW, RiskBand.LOW),
        (3, RiskBand.MODERATE, RiskBand.LOW),
        (4, RiskBand.MODERATE, RiskBand.MODERATE),
        (6, RiskBand.HIGH, RiskBand.MODERATE),
        (7, RiskBand.HIGH, RiskBand.HIGH),
    ],
)
def test_risk_bands_differ_by_protocol(score: int, letter: RiskBand, shape: RiskBand) -> None:
    assert risk_band(score, LETTER_RISK) is letter
    assert risk_band(score, SHAPE_RISK) is shape
