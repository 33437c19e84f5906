from __future__ import annotations

from cpt_engine.cpt_core import Trial
from cpt_engine.response import record_response


def _trial(*, isi: float = 2000.0) -> Trial:
    return Trial(sequence=1, stimulus="small", is_target=True, isi_ms=isi, phase=0, onset_ms=1000.0)


def test_response_inside_window_records_latency_from_onset() -> None:
    updated = record_response(_trial(), onset_ms=1000.0, now_ms=1345.0)
    assert updated is not None
    assert updated.responded is True
    assert updated.response_ms == 345.0


def test_response_exactly_at_isi_is_accepted() -> None:
    updated = record_response(_trial(isi=2000.0), onset_ms=1000.0, now_ms=3000.0)
    assert updated is not None
    assert updated.response_ms == 2000.0


def test_response_one_ms_after_window_is_dropped() -> None:
    assert record_response(_trial(isi=2000.0), onset_ms=1000.0, now_ms=3001.0) is None


def test_second_response_is_dropped() -> None:
    first = record_response(_trial(), onset_ms=1000.0, now_ms=1300.0)
    assert first is not None
    assert record_response(first, onset_ms=1000.0, now_ms=1400.0) is None


def test_no_active_trial_or_no_onset_is_a_noop() -> None:
    assert record_response(None, onset_ms=1000.0, now_ms=1200.0) is None
    assert record_response(_trial(), onset_ms=None, now_ms=1200.0) is None


def test_response_before_onset_is_dropped() -> None:
    assert record_response(_trial(), onset_ms=1000.0, now_ms=999.0) is None


def test_original_trial_is_not_mutated() -> None:
    trial = _trial()
    record_response(trial, onset_ms=1000.0, now_ms=1250.0)
    assert trial.responded is False
    assert trial.response_ms is None
