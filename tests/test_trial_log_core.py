from __future__ import annotations

from dataclasses import replace

from cpt_engine.cpt_core import Trial
from cpt_engine.trial_log import TrialLog


def _trial(seq: int, *, onset: float | None = 0.0) -> Trial:
    return Trial(sequence=seq, stimulus="A", is_target=True, isi_ms=1000.0, phase=0, onset_ms=onset)


def test_commit_appends_in_sequence_order() -> None:
    log = TrialLog()
    for seq in (1, 2, 3):
        assert log.commit(_trial(seq)) is True
    assert [t.sequence for t in log] == [1, 2, 3]
    assert len(log) == 3


def test_recommit_same_sequence_updates_slot_without_duplicating() -> None:
    log = TrialLog([_trial(1), _trial(2)])
    answered = replace(_trial(1), responded=True, response_ms=420.0)

    assert log.commit(answered) is True
    assert len(log) == 2
    assert log.get(1) == answered
    assert [t.sequence for t in log.trials()] == [1, 2]


def test_null_and_never_shown_entries_are_not_stored() -> None:
    log = TrialLog([None, _trial(1, onset=None), _trial(2)])
    assert [t.sequence for t in log] == [2]


def test_out_of_order_insert_is_rejected() -> None:
    log = TrialLog([_trial(5)])
    assert log.commit(_trial(3)) is False
    assert [t.sequence for t in log] == [5]


def test_clear_empties_the_log() -> None:
    log = TrialLog([_trial(1)])
    log.clear()
    assert len(log) == 0
    assert log.get(1) is None
