from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .cpt_core import Trial

logger = logging.getLogger(__name__)


class TrialLog:
    """Append-only, sequence-ordered record of completed trials.

    ``commit`` upserts by sequence number: re-committing a trial that is
    already logged replaces that slot in place (a late response landing on an
    appended trial), it never adds a second copy. Trials older than the tail
    cannot be inserted out of order.
    """

    def __init__(self, trials: Iterable[Trial | None] = ()) -> None:
        self._trials: list[Trial] = []
        self._index: dict[int, int] = {}
        for trial in trials:
            self.commit(trial)

    def commit(self, trial: Trial | None) -> bool:
        """Insert at the tail or update an existing slot. Returns True if stored."""

        if trial is None or not trial.is_complete:
            return False

        slot = self._index.get(trial.sequence)
        if slot is not None:
            self._trials[slot] = trial
            logger.debug("trial %d updated in log", trial.sequence)
            return True

        if self._trials and trial.sequence < self._trials[-1].sequence:
            logger.debug("trial %d rejected: out of order", trial.sequence)
            return False

        self._index[trial.sequence] = len(self._trials)
        self._trials.append(trial)
        return True

    def get(self, sequence: int) -> Trial | None:
        slot = self._index.get(int(sequence))
        return None if slot is None else self._trials[slot]

    def trials(self) -> tuple[Trial, ...]:
        return tuple(self._trials)

    def clear(self) -> None:
        self._trials.clear()
        self._index.clear()

    def __len__(self) -> int:
        return len(self._trials)

    def __iter__(self) -> Iterator[Trial]:
        return iter(tuple(self._trials))
