from __future__ import annotations

import logging
from dataclasses import replace

from .clock import Clock, TimerHandle, TimerQueue
from .cpt_core import EngineSnapshot, RandomSource, SchedulerState, SeededRng, SessionStatus, Trial
from .interpretation import Interpretation, interpret
from .metrics import MetricsSnapshot, compute_metrics
from .protocols import ProtocolConfig
from .response import record_response
from .scheduler import EndReason, Session, SessionEnd, arm_next_trial, remaining_isi_ms, start_session
from .trial_log import TrialLog

logger = logging.getLogger(__name__)


class CptEngine:
    """Timer-driven state machine for one continuous-performance session.

    States: IDLE -> ARMED -> STIMULUS_VISIBLE -> RESPONSE_WINDOW_OPEN -> ARMED ...
    and finally SESSION_ENDED.

    Two trial slots are kept. ``current`` is the trial being shown or whose
    response window is still open. When its ISI runs out it moves to
    ``pending_commit`` and is written to the log at the next stimulus onset,
    or at session end. Responses only ever touch ``current``.

    Three timers drive it: the ISI timer (wait to the next onset), the
    stimulus timer (visible -> hidden) and the session timer (time budget).
    All of them are cancelled on finish/abort, and every callback checks a
    session epoch so a timer that slips through after teardown does nothing.
    """

    def __init__(
        self,
        *,
        config: ProtocolConfig,
        clock: Clock,
        seed: int,
        timers: TimerQueue | None = None,
        rng: RandomSource | None = None,
    ) -> None:
        self._cfg = config
        self._clock = clock
        self._timers = timers if timers is not None else TimerQueue(clock)
        self._seed = int(seed)
        self._rng_override = rng
        self._attempt = 0
        self._epoch = 0
        self._reset()

    @property
    def config(self) -> ProtocolConfig:
        return self._cfg

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def timers(self) -> TimerQueue:
        return self._timers

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.READY if self._session is None else self._session.status

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def current_trial(self) -> Trial | None:
        return self._current

    @property
    def pending_commit(self) -> Trial | None:
        return self._pending_commit

    @property
    def session_end(self) -> SessionEnd | None:
        return self._end

    def trials(self) -> tuple[Trial, ...]:
        return self._log.trials()

    def metrics(self) -> MetricsSnapshot:
        return self._metrics

    def interpretation(self) -> Interpretation:
        return self._interpretation

    def time_remaining_ms(self) -> float:
        if self._session is None:
            return float(self._cfg.total_duration_ms)
        return self._session.remaining_ms(self._clock.now_ms())

    def stimulus_visible(self) -> bool:
        return self._state is SchedulerState.STIMULUS_VISIBLE

    # Commands -----------------------------------------------------------------

    def start(self) -> bool:
        if self._state is not SchedulerState.IDLE:
            return False
        now = self._clock.now_ms()
        self._session = start_session(self._cfg, now_ms=now)
        epoch = self._epoch
        self._session_timer = self._timers.call_later(
            self._cfg.total_duration_ms,
            lambda: self._on_session_timer(epoch),
            label="session_end",
        )
        logger.info("%s session started (seed=%d, attempt=%d)", self._cfg.code, self._seed, self._attempt)
        self._arm()
        return True

    def respond(self) -> bool:
        """Register a "respond now" signal. Returns True if it was accepted."""

        if self._session is None or not self._session.is_running:
            return False
        if self._state not in (SchedulerState.STIMULUS_VISIBLE, SchedulerState.RESPONSE_WINDOW_OPEN):
            return False
        trial = self._current
        updated = record_response(
            trial,
            onset_ms=None if trial is None else trial.onset_ms,
            now_ms=self._clock.now_ms(),
        )
        if updated is None:
            return False
        self._current = updated
        return True

    def abort(self) -> bool:
        """Stop a running session; trials not yet committed are discarded."""

        if self._session is None or not self._session.is_running:
            return False
        self._cancel_timers()
        self._epoch += 1
        self._end = SessionEnd(reason=EndReason.ABORTED, at_ms=self._clock.now_ms())
        self._session = self._session.ended(self._end)
        self._current = None
        self._pending_commit = None
        self._state = SchedulerState.SESSION_ENDED
        logger.info("%s session aborted after %d committed trials", self._cfg.code, len(self._log))
        return True

    def retake(self) -> None:
        """Discard the current run and return to IDLE with a fresh stimulus stream."""

        self.abort()
        self._cancel_timers()
        self._attempt += 1
        self._reset()

    def update(self) -> int:
        """Fire due timers; the host calls this once per frame."""

        return self._timers.run_due()

    def snapshot(self) -> EngineSnapshot:
        trial = self._current
        if trial is not None:
            trial_number = trial.sequence
            phase = trial.phase
        elif self._session is not None:
            trial_number = self._session.trials_armed
            committed = self._log.trials()
            phase = committed[-1].phase if committed else 0
        else:
            trial_number = 0
            phase = 0
        visible = self.stimulus_visible()
        return EngineSnapshot(
            title=self._cfg.title,
            status=self.status,
            state=self._state,
            trial_number=trial_number,
            phase=phase,
            phase_label=self._cfg.phase_label(phase),
            stimulus=trial.stimulus if (visible and trial is not None) else None,
            stimulus_visible=visible,
            time_remaining_ms=self.time_remaining_ms(),
            committed_trials=len(self._log),
        )

    # Internals ----------------------------------------------------------------

    def _reset(self) -> None:
        self._rng: RandomSource = self._rng_override or SeededRng(self._seed + self._attempt)
        self._epoch += 1
        self._state = SchedulerState.IDLE
        self._session: Session | None = None
        self._end: SessionEnd | None = None
        self._current: Trial | None = None
        self._pending_commit: Trial | None = None
        self._isi_timer: TimerHandle | None = None
        self._stimulus_timer: TimerHandle | None = None
        self._session_timer: TimerHandle | None = None
        self._onset_due_ms: float | None = None
        self._log = TrialLog()
        self._recompute()

    def _alive(self, epoch: int) -> bool:
        return epoch == self._epoch and self._session is not None and self._session.is_running

    def _arm(self) -> None:
        assert self._session is not None
        now = self._clock.now_ms()
        self._session, outcome = arm_next_trial(self._session, self._cfg, now_ms=now, rng=self._rng)
        if isinstance(outcome, SessionEnd):
            self._finish(outcome)
            return

        self._current = outcome
        self._state = SchedulerState.ARMED
        if outcome.sequence == 1 or self._onset_due_ms is None:
            self._onset_due_ms = now + self._cfg.lead_in_ms
        epoch = self._epoch
        self._isi_timer = self._timers.call_later(
            self._onset_due_ms - now,
            lambda: self._on_onset(epoch),
            label="onset",
        )

    def _on_onset(self, epoch: int) -> None:
        if not self._alive(epoch) or self._current is None or self._onset_due_ms is None:
            return
        assert self._session is not None
        now = self._clock.now_ms()
        if self._session.elapsed_ms(now) >= self._session.total_duration_ms:
            self._finish(SessionEnd(reason=EndReason.TIME_BUDGET, at_ms=now))
            return

        # The previous trial's window closed when this one was armed.
        self._commit(self._pending_commit)
        self._pending_commit = None

        # Stamped at the scheduled instant, not at the frame that handled it.
        onset = self._onset_due_ms
        self._current = replace(self._current, onset_ms=onset)
        self._state = SchedulerState.STIMULUS_VISIBLE
        self._stimulus_timer = self._timers.call_later(
            onset + self._cfg.stimulus_duration_ms - now,
            lambda: self._on_stimulus_off(epoch),
            label="stimulus_off",
        )

    def _on_stimulus_off(self, epoch: int) -> None:
        if not self._alive(epoch) or self._current is None or self._current.onset_ms is None:
            return
        self._state = SchedulerState.RESPONSE_WINDOW_OPEN
        onset = self._current.onset_ms
        self._onset_due_ms = onset + self._current.isi_ms
        wait = remaining_isi_ms(self._current.isi_ms, onset, self._clock.now_ms())
        self._isi_timer = self._timers.call_later(wait, lambda: self._on_isi_elapsed(epoch), label="next_trial")

    def _on_isi_elapsed(self, epoch: int) -> None:
        if not self._alive(epoch):
            return
        self._pending_commit = self._current
        self._current = None
        self._arm()

    def _on_session_timer(self, epoch: int) -> None:
        if not self._alive(epoch):
            return
        self._finish(SessionEnd(reason=EndReason.TIME_BUDGET, at_ms=self._clock.now_ms()))

    def _finish(self, end: SessionEnd) -> None:
        assert self._session is not None
        self._cancel_timers()
        self._epoch += 1

        self._commit(self._pending_commit)
        self._pending_commit = None
        # A trial that was armed but never shown is not part of the session.
        if self._current is not None and self._current.is_complete:
            self._commit(self._current)
        self._current = None

        self._end = end
        self._session = self._session.ended(end)
        self._state = SchedulerState.SESSION_ENDED
        logger.info(
            "%s session finished (%s): %d trials, risk=%s",
            self._cfg.code,
            end.reason.value,
            len(self._log),
            self._interpretation.risk_band.value,
        )

    def _commit(self, trial: Trial | None) -> None:
        if trial is None:
            return
        if self._log.commit(trial):
            logger.debug(
                "trial %d committed: %s target=%s responded=%s",
                trial.sequence,
                trial.stimulus,
                trial.is_target,
                trial.responded,
            )
            self._recompute()

    def _recompute(self) -> None:
        self._metrics = compute_metrics(self._log.trials(), self._cfg)
        self._interpretation = interpret(self._metrics, self._cfg.risk)

    def _cancel_timers(self) -> None:
        for handle in (self._isi_timer, self._stimulus_timer, self._session_timer):
            if handle is not None:
                handle.cancel()
        self._isi_timer = None
        self._stimulus_timer = None
        self._session_timer = None


def build_cpt_engine(
    *,
    config: ProtocolConfig,
    clock: Clock,
    seed: int,
    timers: TimerQueue | None = None,
    rng: RandomSource | None = None,
) -> CptEngine:
    return CptEngine(config=config, clock=clock, seed=seed, timers=timers, rng=rng)
