"""
Voice Activity Detection — chunked speech/non-speech classifier.

Splits the first channel of a PcmBuffer into fixed-size chunks and labels
each one as speech or silence. The chunk size follows the real sample rate
of the input, so files decoded at 8kHz, 44.1kHz or 48kHz are all handled
without resampling.

Two probability backends are available:
  - silero: Silero VAD model, lazily loaded through torch.hub
  - energy: RMS level in dBFS mapped onto [0, 1]

A chunk counts as speech when its probability exceeds 1 - sensitivity.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, NamedTuple

import numpy as np

logger = logging.getLogger(__name__)

NATIVE_CHUNK_SIZES = {8000: 512, 16000: 512}
MIN_CHUNKS_PER_SECOND = 31.25
MIN_GENERIC_CHUNK = 1024
INT16_SCALE = 32768.0


def calculate_chunk_size(sample_rate: int, chunk_ms: float = 30.0) -> int:
    """
    Number of samples per VAD decision for the given sample rate.

    8kHz and 16kHz use the model-native 512 samples; other rates target
    chunk_ms of audio, never fewer than 1024 samples and never fewer than
    needed to keep chunks at most 32ms apart.
    """
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")

    if sample_rate in NATIVE_CHUNK_SIZES:
        chunk_size = NATIVE_CHUNK_SIZES[sample_rate]
    else:
        chunk_size = max(int(round(sample_rate * chunk_ms / 1000.0)), MIN_GENERIC_CHUNK)

    min_chunk_size = int(math.ceil(sample_rate / MIN_CHUNKS_PER_SECOND))
    if chunk_size < min_chunk_size:
        logger.warning(
            f"Chunk size {chunk_size} too small for sample_rate {sample_rate}, "
            f"adjusting to {min_chunk_size}"
        )
        chunk_size = min_chunk_size

    logger.debug(f"chunk_size for sample_rate {sample_rate}: {chunk_size}")
    return chunk_size


class ChunkLabel(NamedTuple):
    start_time: float
    is_speech: bool


@dataclass
class ChunkClassification:
    """Per-chunk labels covering a whole buffer."""
    labels: List[ChunkLabel]
    chunk_size: int
    sample_rate: int
    duration: float

    @property
    def chunk_duration(self) -> float:
        return self.chunk_size / self.sample_rate

    @property
    def speech_chunks(self) -> int:
        return sum(1 for label in self.labels if label.is_speech)


class EnergyScorer:
    """Speech probability from the chunk's RMS level."""

    name = "energy"

    def __init__(self, floor_db: float = -60.0, ceiling_db: float = -10.0):
        self.floor_db = floor_db
        self.ceiling_db = ceiling_db

    def reset(self):
        pass

    def score(self, chunk: np.ndarray) -> float:
        if chunk.size == 0:
            return 0.0
        rms = float(np.sqrt(np.mean(np.square(chunk, dtype=np.float64))))
        db = 20.0 * math.log10(rms + 1e-10)
        probability = (db - self.floor_db) / (self.ceiling_db - self.floor_db)
        return min(1.0, max(0.0, probability))


class SileroScorer:
    """
    Speech probability from the Silero VAD model.

    The model is stateful across windows, so one scorer must only ever
    see one stream at a time; reset() starts a new stream.
    """

    name = "silero"

    def __init__(self, sample_rate: int):
        if not self.supports(sample_rate):
            raise ValueError(f"Silero VAD cannot process {sample_rate}Hz audio")
        self.sample_rate = sample_rate
        self.window = 256 if sample_rate == 8000 else 512 * (sample_rate // 16000)
        self._model = None
        self._torch = None

    @staticmethod
    def supports(sample_rate: int) -> bool:
        return sample_rate == 8000 or (sample_rate > 0 and sample_rate % 16000 == 0)

    def _load_model(self):
        """Load the Silero VAD model (JIT) on first use."""
        if self._model is not None:
            return

        import torch

        logger.info("Loading Silero VAD model...")
        model, _utils = torch.hub.load(
            repo_or_dir="snakers4/silero-vad",
            model="silero_vad",
            onnx=False,
            trust_repo=True
        )
        self._model = model
        self._torch = torch
        logger.info("Silero VAD loaded successfully.")

    def reset(self):
        self._load_model()
        self._model.reset_states()

    def score(self, chunk: np.ndarray) -> float:
        self._load_model()
        best = 0.0
        for offset in range(0, len(chunk), self.window):
            window = chunk[offset:offset + self.window]
            if len(window) < self.window:
                window = np.pad(window, (0, self.window - len(window)))
            tensor = self._torch.from_numpy(np.ascontiguousarray(window, dtype=np.float32))
            with self._torch.no_grad():
                probability = float(self._model(tensor, self.sample_rate).item())
            best = max(best, probability)
        return best


class SpeechActivityDetector:
    """
    Labels fixed-size chunks of the first channel as speech or silence.

    One detector serves one pipeline at a time; the Silero backend carries
    model state between chunks of the same stream.
    """

    def __init__(self, config):
        self.backend = getattr(config, "backend", "silero")
        self.sensitivity = float(getattr(config, "sensitivity", 0.75))
        self.chunk_ms = getattr(config, "chunk_ms", 30.0)
        self.energy_floor_db = getattr(config, "energy_floor_db", -60.0)
        self.energy_ceiling_db = getattr(config, "energy_ceiling_db", -10.0)

        if not 0.0 <= self.sensitivity <= 1.0:
            raise ValueError(f"sensitivity must be within [0.0, 1.0], got {self.sensitivity}")

        # Lazy-loaded, one per sample rate
        self._scorers = {}

    @property
    def threshold(self) -> float:
        """Decision threshold; inversely tied to sensitivity."""
        return 1.0 - self.sensitivity

    def _scorer_for(self, sample_rate: int):
        if sample_rate in self._scorers:
            return self._scorers[sample_rate]

        if self.backend == "silero" and SileroScorer.supports(sample_rate):
            scorer = SileroScorer(sample_rate)
        else:
            if self.backend == "silero":
                logger.warning(
                    f"Silero VAD does not support {sample_rate}Hz, "
                    f"using energy detection for this file"
                )
            scorer = EnergyScorer(self.energy_floor_db, self.energy_ceiling_db)

        self._scorers[sample_rate] = scorer
        return scorer

    def chunk_probabilities(self, pcm) -> np.ndarray:
        """Speech probability for every chunk of the first channel."""
        chunk_size = calculate_chunk_size(pcm.sample_rate, self.chunk_ms)
        mono = pcm.channel(0).astype(np.float32) / INT16_SCALE
        scorer = self._scorer_for(pcm.sample_rate)
        scorer.reset()

        n_chunks = int(math.ceil(len(mono) / chunk_size))
        probabilities = np.empty(n_chunks, dtype=np.float64)
        for i in range(n_chunks):
            probabilities[i] = scorer.score(mono[i * chunk_size:(i + 1) * chunk_size])
        return probabilities

    def classify(self, pcm) -> ChunkClassification:
        """
        Label every chunk of the buffer.

        Args:
            pcm: PcmBuffer; only channel 0 is analysed.

        Returns:
            ChunkClassification with one label per chunk, no gaps.
        """
        chunk_size = calculate_chunk_size(pcm.sample_rate, self.chunk_ms)
        chunk_duration = chunk_size / pcm.sample_rate

        logger.info(
            f"Running VAD on {pcm.duration:.1f}s audio "
            f"(chunk={chunk_size} samples, threshold={self.threshold:.2f})"
        )

        probabilities = self.chunk_probabilities(pcm)
        labels = [
            ChunkLabel(i * chunk_duration, bool(p > self.threshold))
            for i, p in enumerate(probabilities)
        ]

        result = ChunkClassification(
            labels=labels,
            chunk_size=chunk_size,
            sample_rate=pcm.sample_rate,
            duration=pcm.frame_count / pcm.sample_rate,
        )
        logger.info(f"VAD complete: {result.speech_chunks}/{len(labels)} chunks labelled speech")
        return result
