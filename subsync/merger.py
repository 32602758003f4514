"""
Speech Segment Merger — Reduces per-chunk VAD labels to speech intervals.

Groups consecutive speech chunks, bridges short silences, drops noise
blips and pads what is left, producing sorted non-overlapping segments.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeechSegment:
    """A detected stretch of speech, in seconds from the start of the audio."""
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def __repr__(self):
        return (f"SpeechSegment({self.start_time:.3f}–{self.end_time:.3f}s, "
                f"{self.duration:.3f}s)")


def total_speech_duration(segments: List[SpeechSegment]) -> float:
    return sum(s.duration for s in segments)


class SpeechSegmentMerger:
    """
    Turns a ChunkClassification into a minimal list of SpeechSegments.

    Rules, applied in order:
    1. Consecutive speech chunks form one candidate segment
    2. Candidates separated by less than merge_gap are joined
    3. Segments shorter than min_speech_duration are discarded
    4. Survivors are padded by padding_chunks on both ends, clamped to
       the audio bounds; padding that makes neighbours touch joins them
    """

    def __init__(self, config):
        self.merge_gap = getattr(config, "speech_merge_gap_ms", 200) / 1000.0
        self.min_speech_duration = getattr(config, "min_speech_duration_ms", 300) / 1000.0
        self.padding_chunks = getattr(config, "padding_chunks", 0)

    def merge(self, classification) -> List[SpeechSegment]:
        """
        Merge chunk labels into speech segments.

        Args:
            classification: ChunkClassification from the detector.

        Returns:
            Sorted, non-overlapping SpeechSegments; empty if no speech.
        """
        chunk_duration = classification.chunk_duration
        total_duration = classification.duration

        candidates = self._group_chunks(classification.labels, chunk_duration, total_duration)
        if not candidates:
            logger.warning("No speech chunks detected.")
            return []

        joined = self._bridge_gaps(candidates)
        kept = [(s, e) for s, e in joined if e - s >= self.min_speech_duration]
        dropped = len(joined) - len(kept)
        if dropped:
            logger.debug(f"Discarded {dropped} segments shorter than {self.min_speech_duration:.3f}s")

        segments = self._pad(kept, self.padding_chunks * chunk_duration, total_duration)

        logger.info(
            f"Merged {len(candidates)} speech runs → {len(segments)} segments "
            f"({total_speech_duration(segments):.1f}s speech)"
        )
        return segments

    @staticmethod
    def _group_chunks(labels, chunk_duration: float, total_duration: float) -> List[Tuple[float, float]]:
        """Runs of consecutive speech chunks as (start, end) pairs."""
        runs = []
        run_start = None

        for label in labels:
            if label.is_speech:
                if run_start is None:
                    run_start = label.start_time
            elif run_start is not None:
                runs.append((run_start, label.start_time))
                run_start = None

        if run_start is not None:
            last_end = labels[-1].start_time + chunk_duration
            runs.append((run_start, min(last_end, total_duration)))

        return runs

    def _bridge_gaps(self, runs: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
        joined = [runs[0]]
        for start, end in runs[1:]:
            prev_start, prev_end = joined[-1]
            if start - prev_end < self.merge_gap:
                joined[-1] = (prev_start, end)
            else:
                joined.append((start, end))
        return joined

    @staticmethod
    def _pad(runs: List[Tuple[float, float]], padding: float, total_duration: float) -> List[SpeechSegment]:
        segments: List[SpeechSegment] = []
        for start, end in runs:
            start = max(0.0, start - padding)
            end = min(total_duration, end + padding)
            if segments and start <= segments[-1].end_time:
                segments[-1] = SpeechSegment(segments[-1].start_time, max(end, segments[-1].end_time))
            else:
                segments.append(SpeechSegment(start, end))
        return segments
