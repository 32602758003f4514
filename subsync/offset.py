"""
Offset Calculator — derives or validates the subtitle time shift.

Automatic mode lines up the first detected speech with the first cue and
treats an out-of-range estimate as a soft failure (clamp + warn). Manual
mode accepts a human-supplied value and rejects it outright when out of
range.
"""

import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .errors import NoSubtitleCuesError, OffsetOutOfRangeError
from .merger import SpeechSegment, total_speech_duration

logger = logging.getLogger(__name__)

# Speech covering this share of the audio earns full confidence
FULL_CONFIDENCE_SPEECH_RATIO = 0.5


class SyncMethod(Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class SyncOffset:
    offset_seconds: float
    confidence: float
    method: SyncMethod
    warnings: tuple = field(default_factory=tuple)
    original_offset: Optional[float] = None

    @property
    def was_clamped(self) -> bool:
        return self.original_offset is not None

    def __str__(self):
        return f"{self.offset_seconds:+.3f}s ({self.method.value}, confidence {self.confidence:.2f})"


def require_cues(cues: Sequence, path=None):
    """Fail early when there is nothing to shift."""
    if not cues:
        raise NoSubtitleCuesError(path)


class OffsetCalculator:
    """Produces a SyncOffset bounded by max_offset_seconds."""

    def __init__(self, max_offset_seconds: float):
        if max_offset_seconds <= 0:
            raise ValueError(f"max_offset_seconds must be positive, got {max_offset_seconds}")
        self.max_offset_seconds = float(max_offset_seconds)

    def automatic(
        self,
        segments: List[SpeechSegment],
        cues: Sequence,
        audio_duration: float
    ) -> SyncOffset:
        """
        Estimate the offset from the first speech segment and first cue.

        Args:
            segments: Sorted speech segments from the merger.
            cues: Subtitle cues; the first one anchors the estimate.
            audio_duration: Length of the analysed audio in seconds.

        Returns:
            SyncOffset, clamped to ±max_offset_seconds with a warning if needed.
        """
        require_cues(cues)

        if not segments:
            message = "no speech detected in audio, offset left at 0.00s"
            logger.warning(message)
            return SyncOffset(0.0, 0.0, SyncMethod.AUTO, warnings=(message,))

        first_speech = segments[0].start_time
        first_cue = cues[0].start_time
        offset = first_speech - first_cue
        confidence = self.confidence(segments, audio_duration)

        logger.info(
            f"First speech at {first_speech:.3f}s, first cue at {first_cue:.3f}s "
            f"→ offset {offset:+.3f}s (confidence {confidence:.2f})"
        )

        if abs(offset) > self.max_offset_seconds:
            clamped = math.copysign(self.max_offset_seconds, offset)
            message = (
                f"detected offset {offset:+.2f}s exceeds maximum "
                f"±{self.max_offset_seconds:.2f}s, clamped to {clamped:+.2f}s"
            )
            logger.warning(message)
            return SyncOffset(clamped, confidence, SyncMethod.AUTO,
                              warnings=(message,), original_offset=offset)

        return SyncOffset(offset, confidence, SyncMethod.AUTO)

    def manual(self, offset_seconds: float) -> SyncOffset:
        """
        Validate a caller-supplied offset.

        Raises:
            OffsetOutOfRangeError: If |offset| exceeds the bound or is not finite.
        """
        offset_seconds = float(offset_seconds)
        if not math.isfinite(offset_seconds) or abs(offset_seconds) > self.max_offset_seconds:
            raise OffsetOutOfRangeError(offset_seconds, self.max_offset_seconds)
        return SyncOffset(offset_seconds, 1.0, SyncMethod.MANUAL)

    @staticmethod
    def confidence(segments: List[SpeechSegment], audio_duration: float) -> float:
        """More detected speech relative to the file length means more trust."""
        if not segments or audio_duration <= 0:
            return 0.0
        ratio = total_speech_duration(segments) / audio_duration
        return max(0.0, min(1.0, ratio / FULL_CONFIDENCE_SPEECH_RATIO))
