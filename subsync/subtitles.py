"""
Subtitle I/O — pysubs2-backed cue provider and consumer.

Loads SRT/ASS/SSA/VTT files into plain SubtitleCue lists for the sync
core, and writes shifted cues back in the format implied by the output
extension. Styling, metadata and comment lines are carried over unchanged.
"""

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

import pysubs2

from .errors import SubtitleFormatError, SyncIOError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubtitleCue:
    """A single timed subtitle line, times in seconds."""
    start_time: float
    end_time: float
    text: str

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def __repr__(self):
        return (f"Cue({self.start_time:.3f}–{self.end_time:.3f}s, "
                f"'{self.text[:50]}')")


def _to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))


class SubtitleDocument:
    """
    A loaded subtitle file and the cues extracted from it.

    Usage:
        doc = SubtitleDocument.load("movie.srt")
        shifted = applier.apply(doc.cues, 1.5)
        doc.save(shifted, "movie_synced.srt")
    """

    def __init__(self, path: Path, subs: pysubs2.SSAFile):
        self.path = Path(path)
        self._subs = subs
        self._dialogue = [event for event in subs.events if not event.is_comment]
        self.cues: List[SubtitleCue] = [
            SubtitleCue(event.start / 1000.0, event.end / 1000.0, event.plaintext)
            for event in self._dialogue
        ]

    @classmethod
    def load(cls, path, encoding: str = "utf-8") -> "SubtitleDocument":
        """
        Parse a subtitle file.

        Raises:
            SyncIOError: If the file is missing or unreadable.
            SubtitleFormatError: If the content cannot be parsed.
        """
        path = Path(path)
        if not path.is_file():
            raise SyncIOError(f"Subtitle file not found: {path}")

        try:
            subs = pysubs2.load(str(path), encoding=encoding)
        except pysubs2.exceptions.Pysubs2Error as e:
            raise SubtitleFormatError(f"Cannot parse subtitle file {path.name}: {e}") from e
        except UnicodeDecodeError as e:
            raise SubtitleFormatError(f"Subtitle file {path.name} is not valid {encoding}") from e
        except OSError as e:
            raise SyncIOError(f"Could not read subtitle file {path}: {e}") from e

        doc = cls(path, subs)
        logger.info(f"Loaded {len(doc.cues)} cues from {path.name} ({getattr(subs, 'format', None) or 'unknown format'})")
        return doc

    def render(self, cues: List[SubtitleCue]) -> pysubs2.SSAFile:
        """A copy of the loaded file with dialogue times replaced by cues."""
        if len(cues) != len(self._dialogue):
            raise ValueError(
                f"Expected {len(self._dialogue)} cues for {self.path.name}, got {len(cues)}"
            )

        rendered = copy.deepcopy(self._subs)
        dialogue = [event for event in rendered.events if not event.is_comment]
        for event, cue in zip(dialogue, cues):
            event.start = _to_ms(cue.start_time)
            event.end = _to_ms(cue.end_time)
        return rendered

    def save(self, cues: List[SubtitleCue], output_path, encoding: str = "utf-8"):
        """
        Write cues to output_path; the extension picks the format.

        Args:
            cues: Shifted cues, one per dialogue line of the loaded file.
            output_path: Destination file; parent dirs are created.
        """
        output_path = Path(output_path)
        rendered = self.render(cues)

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            rendered.save(str(output_path), encoding=encoding)
        except pysubs2.exceptions.Pysubs2Error as e:
            raise SubtitleFormatError(f"Cannot write {output_path.name}: {e}") from e
        except OSError as e:
            raise SyncIOError(f"Could not write subtitle file {output_path}: {e}") from e

        logger.info(f"Subtitles written: {len(cues)} cues → {output_path}")


def format_timestamp(seconds: float) -> str:
    """
    Convert seconds to SRT timestamp format: HH:MM:SS,mmm

    Args:
        seconds: Time in seconds (e.g., 125.340)

    Returns:
        Formatted timestamp string (e.g., "00:02:05,340")
    """
    if seconds < 0:
        seconds = 0.0

    total_ms = _to_ms(seconds)
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def format_preview(cues: List[SubtitleCue], max_entries: int = 10) -> str:
    """Short text preview of the first few cues."""
    lines = []
    shown = min(len(cues), max_entries)

    for cue in cues[:shown]:
        text_preview = cue.text.replace("\n", " ")[:80]
        if len(cue.text) > 80:
            text_preview += "..."
        lines.append(
            f"  [{format_timestamp(cue.start_time)} → {format_timestamp(cue.end_time)}] {text_preview}"
        )

    if len(cues) > shown:
        lines.append(f"  ... and {len(cues) - shown} more entries")

    return "\n".join(lines)
