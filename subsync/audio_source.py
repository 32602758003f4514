"""
Audio Sample Source — decodes media files straight into PCM.

Two decoder families are available:
  - SoundFileDecoder: containers libsndfile reads natively (WAV, FLAC, OGG, ...)
  - FFmpegDecoder: everything else, streamed as raw s16le PCM over a pipe

Neither writes an intermediate file. Samples stay at their native rate and
channel layout; downstream stages pick the channel they need.
"""

import json
import shutil
import logging
import threading
import subprocess
from collections import deque
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

import numpy as np
import soundfile as sf

from .errors import (
    CorruptStreamError,
    DecodeFailureError,
    EmptySampleBufferError,
    NoAudioTrackError,
    SyncIOError,
    UnsupportedContainerError,
)

logger = logging.getLogger(__name__)

FALLBACK_SAMPLE_RATE = 16000
BLOCK_FRAMES = 65536
STDERR_TAIL_LINES = 20


@dataclass
class AudioInfo:
    """Stream metadata, from the container where available."""
    sample_rate: int
    channel_count: int
    duration: float


@dataclass
class PcmBuffer:
    """Decoded interleaved int16 PCM for one file."""
    samples: np.ndarray
    sample_rate: int
    channel_count: int
    duration: float

    @property
    def frame_count(self) -> int:
        return len(self.samples) // self.channel_count

    def channel(self, index: int = 0) -> np.ndarray:
        """Strided view of a single channel."""
        return self.samples[index::self.channel_count]

    def __repr__(self):
        return (f"PcmBuffer({self.sample_rate}Hz, {self.channel_count}ch, "
                f"{self.duration:.2f}s, {self.frame_count} frames)")


class Decoder(ABC):
    """One container/codec backend."""

    name = "decoder"

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    @abstractmethod
    def accepts(cls, path: Path) -> bool:
        """Whether this backend is worth trying for the given file."""

    @abstractmethod
    def open(self) -> AudioInfo:
        """Read stream metadata; raises a DecodeError subclass on failure."""

    @abstractmethod
    def frames(self) -> Iterator[np.ndarray]:
        """Yield interleaved int16 blocks in stream order."""

    def close(self):
        pass


class SoundFileDecoder(Decoder):
    """Decodes libsndfile-native containers with soundfile."""

    name = "soundfile"

    def __init__(self, path: Path):
        super().__init__(path)
        self._file = None

    @classmethod
    def accepts(cls, path: Path) -> bool:
        ext = Path(path).suffix.lstrip(".").upper()
        return bool(ext) and ext in sf.available_formats()

    def open(self) -> AudioInfo:
        try:
            self._file = sf.SoundFile(str(self.path))
        except RuntimeError as e:
            raise UnsupportedContainerError(self.path, f"libsndfile cannot open container ({e})") from e

        sample_rate = self._file.samplerate
        channels = self._file.channels
        duration = self._file.frames / sample_rate if self._file.frames > 0 else 0.0
        logger.debug(
            f"[soundfile] {self.path.name}: format={self._file.format}, "
            f"sample_rate={sample_rate}, channels={channels}, frames={self._file.frames}"
        )
        return AudioInfo(sample_rate=sample_rate, channel_count=channels, duration=duration)

    def frames(self) -> Iterator[np.ndarray]:
        if self._file is None:
            raise DecodeFailureError(self.path, "decoder used before open()")
        try:
            for block in self._file.blocks(blocksize=BLOCK_FRAMES, dtype="int16", always_2d=True):
                yield block.reshape(-1)
        except RuntimeError as e:
            raise CorruptStreamError(self.path, f"audio stream is corrupt ({e})") from e

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None


class FFmpegDecoder(Decoder):
    """
    Decodes any container ffmpeg understands.

    ffprobe supplies the metadata, then ffmpeg streams the first audio
    track to stdout as little-endian s16 PCM at its native rate.
    """

    name = "ffmpeg"

    def __init__(self, path: Path):
        super().__init__(path)
        self._info: Optional[AudioInfo] = None
        self._force_rate = False
        self._first_channel_only = False

    @classmethod
    def accepts(cls, path: Path) -> bool:
        return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None

    def open(self) -> AudioInfo:
        cmd = [
            "ffprobe",
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(self.path)
        ]
        logger.debug(f"ffprobe command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
        except (OSError, subprocess.SubprocessError) as e:
            raise UnsupportedContainerError(self.path, f"ffprobe could not run ({e})") from e

        if result.returncode != 0:
            raise UnsupportedContainerError(
                self.path, f"ffprobe does not recognise container ({result.stderr.strip()})"
            )

        try:
            probe = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise UnsupportedContainerError(self.path, "ffprobe returned unreadable metadata") from e

        audio_streams = [s for s in probe.get("streams", []) if s.get("codec_type") == "audio"]
        if not audio_streams:
            raise NoAudioTrackError(self.path, "no audio track")
        stream = audio_streams[0]

        sample_rate = _as_int(stream.get("sample_rate"))
        if not sample_rate:
            logger.warning(
                f"{self.path.name}: sample rate missing from metadata, "
                f"decoding at {FALLBACK_SAMPLE_RATE}Hz"
            )
            sample_rate = FALLBACK_SAMPLE_RATE
            self._force_rate = True

        channels = _as_int(stream.get("channels"))
        if not channels:
            logger.warning(f"{self.path.name}: channel count missing, decoding first channel only")
            channels = 1
            self._first_channel_only = True

        duration = (_as_float(stream.get("duration"))
                    or _as_float(probe.get("format", {}).get("duration"))
                    or 0.0)

        logger.debug(
            f"[ffmpeg] {self.path.name}: codec={stream.get('codec_name')}, "
            f"sample_rate={sample_rate}, channels={channels}, duration={duration:.3f}s"
        )
        self._info = AudioInfo(sample_rate=sample_rate, channel_count=channels, duration=duration)
        return self._info

    def _decode_command(self) -> List[str]:
        cmd = [
            "ffmpeg",
            "-nostdin",
            "-v", "error",
            "-i", str(self.path),
            "-map", "0:a:0",                # First audio track
            "-vn",                          # No video
            "-f", "s16le",
            "-acodec", "pcm_s16le",         # 16-bit PCM
        ]
        if self._force_rate:
            cmd += ["-ar", str(self._info.sample_rate)]
        if self._first_channel_only:
            cmd += ["-af", "pan=mono|c0=c0"]
        cmd.append("pipe:1")
        return cmd

    def frames(self) -> Iterator[np.ndarray]:
        if self._info is None:
            raise DecodeFailureError(self.path, "decoder used before open()")

        cmd = self._decode_command()
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        frame_bytes = 2 * self._info.channel_count
        block_bytes = BLOCK_FRAMES * frame_bytes

        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise DecodeFailureError(self.path, f"ffmpeg could not start ({e})") from e

        # stderr is drained concurrently; a full stderr pipe would stall stdout
        stderr_tail = deque(maxlen=STDERR_TAIL_LINES)
        drainer = threading.Thread(
            target=_drain_lines, args=(proc.stderr, stderr_tail), daemon=True
        )
        drainer.start()

        carry = b""
        try:
            while True:
                data = proc.stdout.read(block_bytes)
                if not data:
                    break
                data = carry + data
                usable = len(data) - (len(data) % frame_bytes)
                carry = data[usable:]
                if usable:
                    yield np.frombuffer(data[:usable], dtype="<i2").astype(np.int16)
            returncode = proc.wait()
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            drainer.join()

        if returncode != 0:
            stderr = b"".join(stderr_tail).decode("utf-8", errors="replace").strip()
            raise CorruptStreamError(
                self.path, f"ffmpeg failed mid-stream ({stderr or 'no stderr output'})"
            )
        if carry:
            logger.debug(f"Dropped {len(carry)} trailing bytes of an incomplete frame")


DECODERS = (SoundFileDecoder, FFmpegDecoder)


class AudioSampleSource:
    """
    Opens a media file with the first decoder that understands it.

    Usage:
        with AudioSampleSource.open("movie.mkv") as source:
            pcm = source.decode_all()
    """

    def __init__(self, path: Path, decoder: Decoder, info: AudioInfo):
        self.path = Path(path)
        self.decoder = decoder
        self.info = info

    @classmethod
    def open(cls, path) -> "AudioSampleSource":
        """
        Probe the file and pick a decoder.

        Raises:
            SyncIOError: If the path does not exist or is not a file.
            UnsupportedContainerError: If no decoder recognises the container.
            NoAudioTrackError: If the container holds no audio stream.
        """
        path = Path(path)
        if not path.is_file():
            raise SyncIOError(f"Media file not found: {path}")

        last_error = None
        for decoder_cls in DECODERS:
            if not decoder_cls.accepts(path):
                continue
            decoder = decoder_cls(path)
            try:
                info = decoder.open()
            except UnsupportedContainerError as e:
                logger.debug(f"{decoder_cls.name} rejected {path.name}: {e}")
                decoder.close()
                last_error = e
                continue
            except Exception:
                decoder.close()
                raise
            logger.info(
                f"Opened {path.name} with {decoder_cls.name} decoder: "
                f"{info.sample_rate}Hz, {info.channel_count}ch"
            )
            return cls(path, decoder, info)

        if last_error is not None:
            raise last_error
        raise UnsupportedContainerError(path, "no decoder available for container")

    def iter_frames(self) -> Iterator[np.ndarray]:
        """Pull decoded interleaved blocks, in order."""
        return self.decoder.frames()

    def decode_all(self) -> PcmBuffer:
        """
        Decode the whole stream in a single forward pass.

        Raises:
            CorruptStreamError: If the stream breaks mid-decode.
            EmptySampleBufferError: If nothing was decoded.
        """
        blocks = [block for block in self.iter_frames() if block.size]
        samples = np.concatenate(blocks) if blocks else np.zeros(0, dtype=np.int16)

        channels = self.info.channel_count
        remainder = samples.size % channels
        if remainder:
            samples = samples[:samples.size - remainder]
        if samples.size == 0:
            raise EmptySampleBufferError(self.path, "decoded zero audio samples")

        frames = samples.size // channels
        duration = self.info.duration if self.info.duration > 0 else frames / self.info.sample_rate

        pcm = PcmBuffer(
            samples=samples,
            sample_rate=self.info.sample_rate,
            channel_count=channels,
            duration=duration,
        )
        logger.info(f"Decoded {self.path.name}: {pcm}")
        return pcm

    def close(self):
        self.decoder.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def load_pcm(path) -> PcmBuffer:
    """Open and fully decode a media file."""
    with AudioSampleSource.open(path) as source:
        return source.decode_all()


def _drain_lines(stream, tail: deque):
    """Read a pipe to EOF, keeping only the last lines."""
    for line in iter(stream.readline, b""):
        tail.append(line)


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
