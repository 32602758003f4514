"""Offset Applier — shifts cue timestamps without ever going negative."""

import logging
from dataclasses import replace
from typing import List, Sequence

logger = logging.getLogger(__name__)


class OffsetApplier:
    """
    Shifts every cue by a uniform offset.

    Starts that would fall below zero are clamped to zero; an end that
    would precede its start is raised to the start. The input list is
    left untouched and a new list is returned.
    """

    def __init__(self):
        self.last_clamped = 0

    def apply(self, cues: Sequence, offset_seconds: float) -> List:
        shifted = []
        clamped = 0

        for cue in cues:
            start = cue.start_time + offset_seconds
            end = cue.end_time + offset_seconds
            if start < 0.0:
                start = 0.0
                clamped += 1
            if end < start:
                end = start
            shifted.append(replace(cue, start_time=start, end_time=end))

        self.last_clamped = clamped
        if clamped:
            logger.warning(f"{clamped} cue(s) clamped to 0.000s after shifting by {offset_seconds:+.3f}s")
        logger.debug(f"Shifted {len(shifted)} cues by {offset_seconds:+.3f}s")
        return shifted
