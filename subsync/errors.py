"""Exception hierarchy for the subtitle sync pipeline."""

from pathlib import Path
from typing import Optional


class SubSyncError(Exception):
    """Base class for every error raised by the sync pipeline."""


class ConfigurationError(SubSyncError):
    """Raised for invalid or unreadable configuration."""


class SyncIOError(SubSyncError):
    """Raised when a file cannot be read or written."""


# ── Audio decoding ──

class DecodeError(SubSyncError):
    """Base class for failures while turning a media file into PCM."""

    def __init__(self, path, message: str):
        self.path = Path(path)
        super().__init__(f"{message}: {self.path.name}")


class UnsupportedContainerError(DecodeError):
    pass


class NoAudioTrackError(DecodeError):
    pass


class DecodeFailureError(DecodeError):
    pass


class CorruptStreamError(DecodeFailureError):
    """The container opened but the audio stream broke mid-decode."""


class EmptySampleBufferError(DecodeError):
    """Decoding finished without producing a single sample."""


# ── Subtitles and offsets ──

class SubtitleFormatError(SubSyncError):
    pass


class NoSubtitleCuesError(SubSyncError):
    def __init__(self, path: Optional[Path] = None):
        self.path = path
        where = f": {Path(path).name}" if path else ""
        super().__init__(f"no subtitle cues found{where}")


class OffsetOutOfRangeError(SubSyncError):
    """A manually supplied offset exceeds the configured bound."""

    def __init__(self, offset_seconds: float, max_offset_seconds: float):
        self.offset_seconds = offset_seconds
        self.max_offset_seconds = max_offset_seconds
        super().__init__(
            f"offset {offset_seconds:.2f}s exceeds maximum allowed "
            f"±{max_offset_seconds:.2f}s"
        )


class LowConfidenceError(SubSyncError):
    def __init__(self, confidence: float, min_confidence: float):
        self.confidence = confidence
        self.min_confidence = min_confidence
        super().__init__(
            f"sync confidence {confidence:.2f} below required {min_confidence:.2f}, "
            f"manual adjustment recommended"
        )


class SyncTimeoutError(SubSyncError):
    """The pair's pipeline was abandoned before it could finish."""
