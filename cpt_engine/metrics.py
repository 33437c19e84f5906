"""Metrics over a trial log.

``compute_metrics`` is a pure function of the committed trials and is simply
re-run after every commit. The same stratum statistics are produced for the
whole session, for each phase and for each ISI value.

Rates are fractions in [0, 1]. Reaction times are milliseconds. Variability is
the coefficient of variation of hit RT in percent. When exactly one hit RT
exists the SD and variability are ``INSUFFICIENT_DATA`` (-1) rather than 0.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .cpt_core import Trial, safe_ratio
from .protocols import DetectabilityKind, ProtocolConfig, ResponseStyleRules

INSUFFICIENT_DATA = -1.0
RATE_CLAMP = (0.01, 0.99)

_WINITZKI_A = 0.147


@dataclass(frozen=True, slots=True)
class HitRtStats:
    count: int
    mean_ms: float
    sd_ms: float
    variability: float


@dataclass(frozen=True, slots=True)
class ErrorCell:
    count: int
    total: int
    rate: float


@dataclass(frozen=True, slots=True)
class StratumStats:
    trials: int
    targets: int
    non_targets: int
    hits: int
    omissions: int
    commissions: int
    anticipatory: int
    omission_rate: float
    commission_rate: float
    hit_rate: float
    false_alarm_rate: float
    anticipatory_rate: float
    hit_rt: HitRtStats
    detectability: float

    @property
    def omission_cell(self) -> ErrorCell:
        return ErrorCell(count=self.omissions, total=self.targets, rate=self.omission_rate)

    @property
    def commission_cell(self) -> ErrorCell:
        return ErrorCell(count=self.commissions, total=self.non_targets, rate=self.commission_rate)


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    overall: StratumStats
    phases: tuple[StratumStats, ...]
    isi_values: tuple[float, ...]
    by_isi: tuple[StratumStats, ...]  # aligned with isi_values
    drift: float
    response_style: str | None
    detectability_kind: DetectabilityKind

    @property
    def total_trials(self) -> int:
        return self.overall.trials

    def isi_stats(self, isi_ms: float) -> StratumStats:
        return self.by_isi[self.isi_values.index(float(isi_ms))]

    def omissions_by_phase(self) -> dict[int, ErrorCell]:
        return {i: s.omission_cell for i, s in enumerate(self.phases)}

    def commissions_by_phase(self) -> dict[int, ErrorCell]:
        return {i: s.commission_cell for i, s in enumerate(self.phases)}

    def omissions_by_isi(self) -> dict[float, ErrorCell]:
        return {isi: s.omission_cell for isi, s in zip(self.isi_values, self.by_isi)}

    def commissions_by_isi(self) -> dict[float, ErrorCell]:
        return {isi: s.commission_cell for isi, s in zip(self.isi_values, self.by_isi)}

    def hit_rt_by_phase(self) -> dict[int, HitRtStats]:
        return {i: s.hit_rt for i, s in enumerate(self.phases)}

    def hit_rt_by_isi(self) -> dict[float, HitRtStats]:
        return {isi: s.hit_rt for isi, s in zip(self.isi_values, self.by_isi)}


def inverse_erf(x: float) -> float:
    """Winitzki's closed-form approximation of erf^-1 on (-1, 1)."""

    if x <= -1.0 or x >= 1.0:
        raise ValueError("inverse_erf is defined on (-1, 1)")
    if x == 0.0:
        return 0.0
    sign = -1.0 if x < 0.0 else 1.0
    ln = math.log(1.0 - x * x)
    first = 2.0 / (math.pi * _WINITZKI_A) + ln / 2.0
    return sign * math.sqrt(math.sqrt(first * first - ln / _WINITZKI_A) - first)


def z_score(p: float) -> float:
    """Inverse standard normal CDF via inverse_erf."""

    return math.sqrt(2.0) * inverse_erf(2.0 * p - 1.0)


def _clamp_rate(rate: float) -> float:
    lo, hi = RATE_CLAMP
    return max(lo, min(hi, float(rate)))


def d_prime(hit_rate: float, false_alarm_rate: float) -> float:
    return z_score(_clamp_rate(hit_rate)) - z_score(_clamp_rate(false_alarm_rate))


def linear_detectability(hit_rate: float, false_alarm_rate: float) -> float:
    return (float(hit_rate) - float(false_alarm_rate)) * 100.0


def hit_rt_stats(latencies: Sequence[float]) -> HitRtStats:
    n = len(latencies)
    if n == 0:
        return HitRtStats(count=0, mean_ms=0.0, sd_ms=0.0, variability=0.0)
    mean = math.fsum(latencies) / n
    if n == 1:
        return HitRtStats(count=1, mean_ms=mean, sd_ms=INSUFFICIENT_DATA, variability=INSUFFICIENT_DATA)
    # Population SD.
    sd = math.sqrt(math.fsum((rt - mean) ** 2 for rt in latencies) / n)
    variability = 0.0 if mean <= 0.0 else (sd / mean) * 100.0
    return HitRtStats(count=n, mean_ms=mean, sd_ms=sd, variability=variability)


def ols_slope(points: Sequence[tuple[float, float]]) -> float:
    if len(points) < 2:
        return 0.0
    n = len(points)
    x_mean = math.fsum(x for x, _ in points) / n
    y_mean = math.fsum(y for _, y in points) / n
    num = math.fsum((x - x_mean) * (y - y_mean) for x, y in points)
    den = math.fsum((x - x_mean) ** 2 for x, _ in points)
    return 0.0 if den <= 0.0 else num / den


def classify_response_style(hit_rate: float, false_alarm_rate: float, rules: ResponseStyleRules) -> str:
    if hit_rate > rules.accurate_hit_rate and false_alarm_rate < rules.accurate_false_alarm_rate:
        return "Accurate"
    if hit_rate < rules.impulsive_hit_rate or false_alarm_rate > rules.impulsive_false_alarm_rate:
        return "Fast/Impulsive"
    if hit_rate < rules.cautious_hit_rate:
        return "Cautious"
    return "Balanced"


def _is_anticipatory(trial: Trial, threshold_ms: float) -> bool:
    return trial.responded and trial.response_ms is not None and trial.response_ms < threshold_ms


def stratum_stats(
    trials: Sequence[Trial],
    *,
    anticipatory_threshold_ms: float,
    detectability: DetectabilityKind,
) -> StratumStats:
    targets = [t for t in trials if t.is_target]
    non_targets = [t for t in trials if not t.is_target]
    hits = sum(1 for t in targets if t.is_hit)
    omissions = len(targets) - hits
    commissions = sum(1 for t in non_targets if t.is_commission)
    anticipatory = sum(1 for t in trials if _is_anticipatory(t, anticipatory_threshold_ms))

    hit_rts = [
        float(t.response_ms)
        for t in targets
        if t.responded and t.response_ms is not None and t.response_ms >= anticipatory_threshold_ms
    ]

    hit_rate = safe_ratio(hits, len(targets))
    false_alarm_rate = safe_ratio(commissions, len(non_targets))

    if not targets or not non_targets:
        detect = 0.0
    elif detectability is DetectabilityKind.D_PRIME:
        detect = d_prime(hit_rate, false_alarm_rate)
    else:
        detect = linear_detectability(hit_rate, false_alarm_rate)

    return StratumStats(
        trials=len(trials),
        targets=len(targets),
        non_targets=len(non_targets),
        hits=hits,
        omissions=omissions,
        commissions=commissions,
        anticipatory=anticipatory,
        omission_rate=safe_ratio(omissions, len(targets)),
        commission_rate=safe_ratio(commissions, len(non_targets)),
        hit_rate=hit_rate,
        false_alarm_rate=false_alarm_rate,
        anticipatory_rate=safe_ratio(anticipatory, len(trials)),
        hit_rt=hit_rt_stats(hit_rts),
        detectability=detect,
    )


def compute_metrics(trials: Iterable[Trial | None], config: ProtocolConfig) -> MetricsSnapshot:
    valid = [t for t in trials if t is not None and t.is_complete]

    def stats(subset: Sequence[Trial]) -> StratumStats:
        return stratum_stats(
            subset,
            anticipatory_threshold_ms=config.anticipatory_threshold_ms,
            detectability=config.detectability,
        )

    overall = stats(valid)
    phases = tuple(stats([t for t in valid if t.phase == p]) for p in range(config.phase_count))
    isi_values = tuple(float(v) for v in config.isi_set_ms)
    by_isi = tuple(stats([t for t in valid if t.isi_ms == isi]) for isi in isi_values)

    drift_points = [(float(i), s.hit_rt.mean_ms) for i, s in enumerate(phases) if s.hit_rt.count > 0]
    drift = ols_slope(drift_points)

    style = None
    if config.response_style is not None:
        style = classify_response_style(overall.hit_rate, overall.false_alarm_rate, config.response_style)

    return MetricsSnapshot(
        overall=overall,
        phases=phases,
        isi_values=isi_values,
        by_isi=by_isi,
        drift=drift,
        response_style=style,
        detectability_kind=config.detectability,
    )
