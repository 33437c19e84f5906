from __future__ import annotations

import logging
from dataclasses import replace

from .cpt_core import Trial

logger = logging.getLogger(__name__)


def record_response(trial: Trial | None, *, onset_ms: float | None, now_ms: float) -> Trial | None:
    """Accept the first response inside ``[onset, onset + isi]``.

    Returns the updated trial, or None when the response is dropped: no active
    trial, stimulus not shown yet, already answered, or the window has closed.
    Dropping is the normal outcome for stray key presses, not an error.
    """

    if trial is None or onset_ms is None:
        logger.debug("response dropped: no active trial")
        return None
    if trial.responded:
        logger.debug("response dropped: trial %d already answered", trial.sequence)
        return None

    latency = float(now_ms) - float(onset_ms)
    if latency < 0.0 or latency > trial.isi_ms:
        logger.debug("response dropped: trial %d latency %.1fms outside window", trial.sequence, latency)
        return None

    return replace(trial, responded=True, response_ms=latency)
