"""Protocol configuration for the continuous-performance tests.

Everything that differs between the letter CPT and the shape CPT lives here as
immutable data: stimulus sets, timing, phase layout, target probabilities and
the risk-threshold tables. The engine itself is generic.

The risk thresholds and point values are heuristics carried over from the
screening pages this engine was built for. They do not come from a validated
clinical instrument and must not be read as diagnostic cut-offs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from string import ascii_uppercase
from typing import Any

from .cpt_core import PhaseMarker


class DetectabilityKind(StrEnum):
    LINEAR = "linear"  # (hit rate - false alarm rate) * 100
    D_PRIME = "d_prime"


class RiskMetric(StrEnum):
    OMISSION_RATE = "omission_rate"
    COMMISSION_RATE = "commission_rate"
    VARIABILITY = "variability"
    ANTICIPATORY_RATE = "anticipatory_rate"
    DRIFT = "drift"
    DETECTABILITY = "detectability"
    PHASE_HIT_RATE_GAP = "phase_hit_rate_gap"


class Direction(StrEnum):
    ABOVE = "above"
    BELOW = "below"


@dataclass(frozen=True, slots=True)
class PhaseRule:
    target_probability: float
    target_stimuli: tuple[str, ...]
    nontarget_stimuli: tuple[str, ...]
    description: str = ""

    def __post_init__(self) -> None:
        if not (0.0 <= self.target_probability <= 1.0):
            raise ValueError("target_probability must be in [0.0, 1.0]")
        if self.target_probability > 0.0 and not self.target_stimuli:
            raise ValueError("target_stimuli must not be empty")
        if self.target_probability < 1.0 and not self.nontarget_stimuli:
            raise ValueError("nontarget_stimuli must not be empty")
        if set(self.target_stimuli) & set(self.nontarget_stimuli):
            raise ValueError("a stimulus cannot be both target and non-target")


@dataclass(frozen=True, slots=True)
class TrialBlockPhases:
    """Blocks of consecutive trials, each split into equal sub-blocks."""

    num_blocks: int
    trials_per_block: int
    sub_blocks_per_block: int = 1
    label_prefix: str = "Block"

    def __post_init__(self) -> None:
        if self.num_blocks <= 0:
            raise ValueError("num_blocks must be > 0")
        if self.trials_per_block <= 0:
            raise ValueError("trials_per_block must be > 0")
        if self.sub_blocks_per_block <= 0:
            raise ValueError("sub_blocks_per_block must be > 0")
        if self.trials_per_block % self.sub_blocks_per_block != 0:
            raise ValueError("trials_per_block must divide evenly into sub-blocks")

    @property
    def count(self) -> int:
        return self.num_blocks

    def locate(self, *, trial_number: int, elapsed_ms: float) -> PhaseMarker:
        _ = elapsed_ms
        idx = max(0, int(trial_number) - 1)
        block = min(idx // self.trials_per_block, self.num_blocks - 1)
        per_sub = self.trials_per_block // self.sub_blocks_per_block
        sub_block = min((idx % self.trials_per_block) // per_sub, self.sub_blocks_per_block - 1)
        return PhaseMarker(phase=block, sub_phase=sub_block)

    def label(self, phase: int) -> str:
        return f"{self.label_prefix} {int(phase) + 1}"


@dataclass(frozen=True, slots=True)
class TimeSplitPhases:
    """Phases cut by elapsed session time; ``boundaries_ms`` are the split points."""

    boundaries_ms: tuple[float, ...]
    label_prefix: str = "Half"

    def __post_init__(self) -> None:
        if any(b <= 0.0 for b in self.boundaries_ms):
            raise ValueError("boundaries_ms must be > 0")
        if list(self.boundaries_ms) != sorted(set(self.boundaries_ms)):
            raise ValueError("boundaries_ms must be strictly increasing")

    @property
    def count(self) -> int:
        return len(self.boundaries_ms) + 1

    def locate(self, *, trial_number: int, elapsed_ms: float) -> PhaseMarker:
        _ = trial_number
        phase = sum(1 for b in self.boundaries_ms if elapsed_ms >= b)
        return PhaseMarker(phase=phase)

    def label(self, phase: int) -> str:
        return f"{self.label_prefix} {int(phase) + 1}"


PhaseScheme = TrialBlockPhases | TimeSplitPhases


@dataclass(frozen=True, slots=True)
class ResponseStyleRules:
    accurate_hit_rate: float = 0.9
    accurate_false_alarm_rate: float = 0.1
    impulsive_hit_rate: float = 0.7
    impulsive_false_alarm_rate: float = 0.3
    cautious_hit_rate: float = 0.85


@dataclass(frozen=True, slots=True)
class RiskLevel:
    threshold: float
    points: int
    indicator: str
    concern: str


@dataclass(frozen=True, slots=True)
class RiskRule:
    metric: RiskMetric
    elevated: RiskLevel | None = None
    moderate: RiskLevel | None = None
    direction: Direction = Direction.ABOVE
    phase: int | None = None  # None = overall stratum

    def __post_init__(self) -> None:
        if self.elevated is None and self.moderate is None:
            raise ValueError("RiskRule needs at least one level")


@dataclass(frozen=True, slots=True)
class RiskThresholds:
    rules: tuple[RiskRule, ...]
    moderate_cutoff: int
    high_cutoff: int

    def __post_init__(self) -> None:
        if self.high_cutoff < self.moderate_cutoff:
            raise ValueError("high_cutoff must be >= moderate_cutoff")


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    code: str
    title: str
    stimulus_duration_ms: float
    isi_set_ms: tuple[float, ...]
    total_duration_ms: float
    phases: PhaseScheme
    phase_rules: tuple[PhaseRule, ...]
    risk: RiskThresholds
    trial_cap: int | None = None
    anticipatory_threshold_ms: float = 100.0
    lead_in_ms: float = 500.0
    detectability: DetectabilityKind = DetectabilityKind.LINEAR
    response_style: ResponseStyleRules | None = None

    def __post_init__(self) -> None:
        if self.stimulus_duration_ms <= 0.0:
            raise ValueError("stimulus_duration_ms must be > 0")
        if not self.isi_set_ms:
            raise ValueError("isi_set_ms must not be empty")
        if any(isi <= 0.0 for isi in self.isi_set_ms):
            raise ValueError("isi_set_ms values must be > 0")
        if self.stimulus_duration_ms > min(self.isi_set_ms):
            raise ValueError("stimulus_duration_ms must not exceed the shortest ISI")
        if self.total_duration_ms <= 0.0:
            raise ValueError("total_duration_ms must be > 0")
        if self.trial_cap is not None and self.trial_cap <= 0:
            raise ValueError("trial_cap must be > 0")
        if self.anticipatory_threshold_ms < 0.0:
            raise ValueError("anticipatory_threshold_ms must be >= 0")
        if self.lead_in_ms < 0.0:
            raise ValueError("lead_in_ms must be >= 0")
        if len(self.phase_rules) not in (1, self.phases.count):
            raise ValueError("phase_rules must hold one rule or one per phase")

    @property
    def phase_count(self) -> int:
        return self.phases.count

    def rule_for(self, phase: int) -> PhaseRule:
        if len(self.phase_rules) == 1:
            return self.phase_rules[0]
        return self.phase_rules[max(0, min(int(phase), len(self.phase_rules) - 1))]

    def phase_label(self, phase: int) -> str:
        return self.phases.label(phase)

    def with_overrides(self, **overrides: Any) -> ProtocolConfig:
        return replace(self, **overrides)


LETTERS: tuple[str, ...] = tuple(ascii_uppercase)
NONTARGET_LETTER = "X"

LETTER_RISK = RiskThresholds(
    rules=(
        RiskRule(
            metric=RiskMetric.OMISSION_RATE,
            elevated=RiskLevel(
                0.15, 2, "Elevated omission errors", "High rate of missed targets suggests potential inattention"
            ),
            moderate=RiskLevel(
                0.10, 1, "Moderate omission errors", "Some missed targets may indicate attention difficulties"
            ),
        ),
        RiskRule(
            metric=RiskMetric.COMMISSION_RATE,
            elevated=RiskLevel(
                0.20, 2, "Elevated commission errors", "High rate of false alarms suggests potential impulsivity"
            ),
            moderate=RiskLevel(
                0.10, 1, "Moderate commission errors", "Some false alarms may indicate impulse control difficulties"
            ),
        ),
        RiskRule(
            metric=RiskMetric.VARIABILITY,
            elevated=RiskLevel(
                20.0,
                2,
                "High reaction time variability",
                "Inconsistent reaction times may indicate attention regulation difficulties",
            ),
            moderate=RiskLevel(
                15.0, 1, "Moderate reaction time variability", "Some variability in reaction times observed"
            ),
        ),
        RiskRule(
            metric=RiskMetric.ANTICIPATORY_RATE,
            elevated=RiskLevel(
                0.02, 1, "Elevated perseverations", "Very fast responses (<100ms) suggest potential impulsivity"
            ),
        ),
        RiskRule(
            metric=RiskMetric.DRIFT,
            elevated=RiskLevel(
                10.0,
                1,
                "Performance decline over time",
                "Increasing reaction times across blocks may indicate sustained attention difficulties",
            ),
        ),
        RiskRule(
            metric=RiskMetric.DETECTABILITY,
            direction=Direction.BELOW,
            elevated=RiskLevel(
                30.0, 1, "Reduced detectability", "Lower ability to discriminate targets from non-targets"
            ),
        ),
    ),
    moderate_cutoff=3,
    high_cutoff=6,
)

LETTER_CPT = ProtocolConfig(
    code="letter_cpt",
    title="Letter CPT",
    stimulus_duration_ms=250.0,
    isi_set_ms=(1000.0, 2000.0, 4000.0),
    total_duration_ms=14.0 * 60.0 * 1000.0,
    trial_cap=360,
    phases=TrialBlockPhases(num_blocks=6, trials_per_block=60, sub_blocks_per_block=3),
    phase_rules=(
        PhaseRule(
            target_probability=0.8,
            target_stimuli=tuple(ch for ch in LETTERS if ch != NONTARGET_LETTER),
            nontarget_stimuli=(NONTARGET_LETTER,),
            description="Respond to every letter except X",
        ),
    ),
    risk=LETTER_RISK,
    detectability=DetectabilityKind.LINEAR,
    response_style=ResponseStyleRules(),
)

SMALL_SQUARE = "small"
LARGE_SQUARE = "large"

SHAPE_RISK = RiskThresholds(
    rules=(
        RiskRule(
            metric=RiskMetric.OMISSION_RATE,
            phase=0,
            elevated=RiskLevel(
                0.20,
                2,
                "Elevated omission errors in infrequent target condition",
                "High rate of missed targets when targets are rare suggests inattention",
            ),
            moderate=RiskLevel(
                0.10,
                1,
                "Moderate omission errors in infrequent target condition",
                "Some missed targets when targets are rare may indicate attention difficulties",
            ),
        ),
        RiskRule(
            metric=RiskMetric.COMMISSION_RATE,
            phase=1,
            elevated=RiskLevel(
                0.15,
                2,
                "Elevated commission errors in frequent target condition",
                "High rate of false alarms when non-targets are rare suggests impulsivity",
            ),
            moderate=RiskLevel(
                0.08,
                1,
                "Moderate commission errors in frequent target condition",
                "Some false alarms when non-targets are rare may indicate impulse control difficulties",
            ),
        ),
        RiskRule(
            metric=RiskMetric.OMISSION_RATE,
            elevated=RiskLevel(
                0.15,
                1,
                "Elevated overall omission errors",
                "Consistently missing targets suggests sustained attention difficulties",
            ),
        ),
        RiskRule(
            metric=RiskMetric.COMMISSION_RATE,
            elevated=RiskLevel(
                0.12,
                1,
                "Elevated overall commission errors",
                "Consistently responding to non-targets suggests impulse control difficulties",
            ),
        ),
        RiskRule(
            metric=RiskMetric.VARIABILITY,
            elevated=RiskLevel(
                25.0,
                2,
                "High reaction time variability",
                "Inconsistent reaction times may indicate attention regulation difficulties",
            ),
            moderate=RiskLevel(
                18.0, 1, "Moderate reaction time variability", "Some variability in reaction times observed"
            ),
        ),
        RiskRule(
            metric=RiskMetric.DETECTABILITY,
            direction=Direction.BELOW,
            elevated=RiskLevel(
                1.5,
                1,
                "Reduced discriminability (low d-prime)",
                "Lower ability to discriminate targets from non-targets",
            ),
        ),
        RiskRule(
            metric=RiskMetric.ANTICIPATORY_RATE,
            elevated=RiskLevel(
                0.03,
                1,
                "Elevated anticipatory responses",
                "Very fast responses (<100ms) suggest potential impulsivity",
            ),
        ),
        RiskRule(
            metric=RiskMetric.PHASE_HIT_RATE_GAP,
            elevated=RiskLevel(
                0.20,
                1,
                "Significant performance difference between halves",
                "Large difference in performance between infrequent and frequent target conditions",
            ),
        ),
    ),
    moderate_cutoff=4,
    high_cutoff=7,
)

SHAPE_CPT = ProtocolConfig(
    code="shape_cpt",
    title="Shape CPT",
    stimulus_duration_ms=100.0,
    isi_set_ms=(2000.0,),
    total_duration_ms=21.6 * 60.0 * 1000.0,
    trial_cap=None,
    phases=TimeSplitPhases(boundaries_ms=(10.8 * 60.0 * 1000.0,)),
    phase_rules=(
        PhaseRule(
            target_probability=0.225,
            target_stimuli=(SMALL_SQUARE,),
            nontarget_stimuli=(LARGE_SQUARE,),
            description="Infrequent target: respond to the small square",
        ),
        PhaseRule(
            target_probability=0.775,
            target_stimuli=(LARGE_SQUARE,),
            nontarget_stimuli=(SMALL_SQUARE,),
            description="Frequent target: respond to the large square",
        ),
    ),
    risk=SHAPE_RISK,
    detectability=DetectabilityKind.D_PRIME,
    response_style=None,
)


def letter_cpt_config(**overrides: Any) -> ProtocolConfig:
    return LETTER_CPT.with_overrides(**overrides) if overrides else LETTER_CPT


def shape_cpt_config(**overrides: Any) -> ProtocolConfig:
    return SHAPE_CPT.with_overrides(**overrides) if overrides else SHAPE_CPT


PROTOCOLS: dict[str, ProtocolConfig] = {
    LETTER_CPT.code: LETTER_CPT,
    SHAPE_CPT.code: SHAPE_CPT,
}
