from __future__ import annotations

from dataclasses import dataclass

from .cpt_core import SessionStatus, Trial
from .engine import CptEngine
from .interpretation import Interpretation
from .metrics import MetricsSnapshot
from .scheduler import EndReason


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Read-only bundle handed to whatever displays the results.

    It carries no behaviour and holds nothing that refers back to the engine.
    """

    protocol_code: str
    seed: int
    status: SessionStatus
    end_reason: EndReason | None
    duration_ms: float
    trials: tuple[Trial, ...]
    metrics: MetricsSnapshot
    interpretation: Interpretation

    @property
    def hit_rt_mean_ms(self) -> float:
        return self.metrics.overall.hit_rt.mean_ms


def session_result_from_engine(engine: CptEngine) -> SessionResult | None:
    """Build a SessionResult from a finished engine; None while it is still running."""

    session = engine.session
    if session is None or session.status is not SessionStatus.FINISHED:
        return None
    assert session.ended_at_ms is not None

    return SessionResult(
        protocol_code=str(session.protocol_code),
        seed=int(engine.seed),
        status=session.status,
        end_reason=session.end_reason,
        duration_ms=float(session.ended_at_ms - session.started_at_ms),
        trials=engine.trials(),
        metrics=engine.metrics(),
        interpretation=engine.interpretation(),
    )
