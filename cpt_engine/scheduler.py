"""Trial scheduling as pure functions over an explicit Session value.

Timing rule: stimulus onsets are spaced by the trial's full nominal ISI,
measured onset to onset. The wait scheduled after the stimulus is hidden is
therefore ``isi - (now - onset)`` clamped at zero, so any lateness of the
stimulus-off timer is absorbed instead of accumulating.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from .cpt_core import RandomSource, SessionStatus, Trial
from .protocols import PhaseRule, ProtocolConfig


class EndReason(StrEnum):
    TRIAL_CAP = "trial_cap"
    TIME_BUDGET = "time_budget"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class SessionEnd:
    reason: EndReason
    at_ms: float


@dataclass(frozen=True, slots=True)
class Session:
    protocol_code: str
    started_at_ms: float
    total_duration_ms: float
    trial_cap: int | None
    phase_count: int
    status: SessionStatus = SessionStatus.RUNNING
    trials_armed: int = 0
    ended_at_ms: float | None = None
    end_reason: EndReason | None = None

    @property
    def is_running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def elapsed_ms(self, now_ms: float) -> float:
        end = now_ms if self.ended_at_ms is None else min(now_ms, self.ended_at_ms)
        return max(0.0, float(end) - self.started_at_ms)

    def remaining_ms(self, now_ms: float) -> float:
        return max(0.0, self.total_duration_ms - self.elapsed_ms(now_ms))

    def ended(self, end: SessionEnd) -> Session:
        status = SessionStatus.ABORTED if end.reason is EndReason.ABORTED else SessionStatus.FINISHED
        return replace(self, status=status, ended_at_ms=end.at_ms, end_reason=end.reason)


def start_session(config: ProtocolConfig, *, now_ms: float) -> Session:
    return Session(
        protocol_code=config.code,
        started_at_ms=float(now_ms),
        total_duration_ms=float(config.total_duration_ms),
        trial_cap=config.trial_cap,
        phase_count=config.phase_count,
    )


def should_terminate(session: Session, *, trial_number: int, now_ms: float) -> EndReason | None:
    if session.trial_cap is not None and trial_number > session.trial_cap:
        return EndReason.TRIAL_CAP
    if session.elapsed_ms(now_ms) >= session.total_duration_ms:
        return EndReason.TIME_BUDGET
    return None


def select_stimulus(rule: PhaseRule, rng: RandomSource) -> tuple[str, bool]:
    """Draw target with the phase's probability, then a uniform member of that set."""

    is_target = rng.random() < rule.target_probability
    pool = rule.target_stimuli if is_target else rule.nontarget_stimuli
    return str(rng.choice(pool)), is_target


def select_isi(config: ProtocolConfig, rng: RandomSource) -> float:
    if len(config.isi_set_ms) == 1:
        return float(config.isi_set_ms[0])
    return float(rng.choice(config.isi_set_ms))


def remaining_isi_ms(nominal_isi_ms: float, onset_ms: float, now_ms: float) -> float:
    return max(0.0, float(nominal_isi_ms) - (float(now_ms) - float(onset_ms)))


def arm_next_trial(
    session: Session,
    config: ProtocolConfig,
    *,
    now_ms: float,
    rng: RandomSource,
) -> tuple[Session, Trial | SessionEnd]:
    """Pick the next stimulus, or end the session when a limit is reached.

    The returned Session counts the armed trial; a SessionEnd leaves the
    session to be closed by the caller once pending trials are flushed.
    """

    if not session.is_running:
        return session, SessionEnd(reason=session.end_reason or EndReason.ABORTED, at_ms=float(now_ms))

    trial_number = session.trials_armed + 1
    reason = should_terminate(session, trial_number=trial_number, now_ms=now_ms)
    if reason is not None:
        return session, SessionEnd(reason=reason, at_ms=float(now_ms))

    marker = config.phases.locate(trial_number=trial_number, elapsed_ms=session.elapsed_ms(now_ms))
    isi = select_isi(config, rng)
    stimulus, is_target = select_stimulus(config.rule_for(marker.phase), rng)

    trial = Trial(
        sequence=trial_number,
        stimulus=stimulus,
        is_target=is_target,
        isi_ms=isi,
        phase=marker.phase,
        sub_phase=marker.sub_phase,
        armed_at_ms=float(now_ms),
    )
    return replace(session, trials_armed=trial_number), trial
