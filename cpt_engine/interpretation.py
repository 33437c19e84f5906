"""Heuristic indicators and risk band from a metrics snapshot.

The rule tables come from ``ProtocolConfig.risk``; nothing here is a validated
clinical scale.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .cpt_core import round_half_up
from .metrics import MetricsSnapshot, StratumStats
from .protocols import Direction, RiskLevel, RiskMetric, RiskRule, RiskThresholds

NON_CLINICAL_NOTICE = (
    "Screening heuristic only. Thresholds are not drawn from a validated "
    "instrument and the result is not a diagnosis."
)


class RiskBand(StrEnum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


@dataclass(frozen=True, slots=True)
class Interpretation:
    indicators: tuple[str, ...]
    concerns: tuple[str, ...]
    risk_score: int
    risk_band: RiskBand
    # Display values, rounded the way the results screen shows them.
    omission_rate_pct: float
    commission_rate_pct: float
    variability: float
    detectability: float
    notice: str = NON_CLINICAL_NOTICE


def _stratum(snapshot: MetricsSnapshot, phase: int | None) -> StratumStats | None:
    if phase is None:
        return snapshot.overall
    if 0 <= phase < len(snapshot.phases):
        return snapshot.phases[phase]
    return None


def _phase_hit_rate_gap(snapshot: MetricsSnapshot) -> float:
    rates = [s.hit_rate for s in snapshot.phases if s.targets > 0]
    if len(rates) < 2:
        return 0.0
    return max(rates) - min(rates)


def metric_value(snapshot: MetricsSnapshot, metric: RiskMetric, phase: int | None = None) -> float | None:
    """Resolve a rule's metric; None when the requested phase does not exist."""

    if metric is RiskMetric.DRIFT:
        return snapshot.drift
    if metric is RiskMetric.PHASE_HIT_RATE_GAP:
        return _phase_hit_rate_gap(snapshot)

    stratum = _stratum(snapshot, phase)
    if stratum is None:
        return None
    if metric is RiskMetric.OMISSION_RATE:
        return stratum.omission_rate
    if metric is RiskMetric.COMMISSION_RATE:
        return stratum.commission_rate
    if metric is RiskMetric.VARIABILITY:
        return stratum.hit_rt.variability
    if metric is RiskMetric.ANTICIPATORY_RATE:
        return stratum.anticipatory_rate
    return stratum.detectability


def _crosses(value: float, level: RiskLevel, direction: Direction) -> bool:
    if direction is Direction.BELOW:
        return value < level.threshold
    return value > level.threshold


def evaluate_rule(snapshot: MetricsSnapshot, rule: RiskRule) -> RiskLevel | None:
    value = metric_value(snapshot, rule.metric, rule.phase)
    if value is None:
        return None
    for level in (rule.elevated, rule.moderate):
        if level is not None and _crosses(value, level, rule.direction):
            return level
    return None


def risk_band(score: int, thresholds: RiskThresholds) -> RiskBand:
    if score >= thresholds.high_cutoff:
        return RiskBand.HIGH
    if score >= thresholds.moderate_cutoff:
        return RiskBand.MODERATE
    return RiskBand.LOW


def interpret(snapshot: MetricsSnapshot, thresholds: RiskThresholds) -> Interpretation:
    indicators: list[str] = []
    concerns: list[str] = []
    score = 0

    for rule in thresholds.rules:
        level = evaluate_rule(snapshot, rule)
        if level is None:
            continue
        indicators.append(level.indicator)
        concerns.append(level.concern)
        score += int(level.points)

    overall = snapshot.overall
    return Interpretation(
        indicators=tuple(indicators),
        concerns=tuple(concerns),
        risk_score=score,
        risk_band=risk_band(score, thresholds),
        omission_rate_pct=round_half_up(overall.omission_rate * 100.0, 1),
        commission_rate_pct=round_half_up(overall.commission_rate * 100.0, 1),
        variability=round_half_up(overall.hit_rt.variability, 1),
        detectability=round_half_up(overall.detectability, 2),
    )
