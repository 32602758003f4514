"""
Shared fixtures: synthetic audio, subtitle files and configs.
"""

import shutil

import numpy as np
import pytest
import soundfile as sf

from config import AppConfig, VADConfig
from subsync.audio_source import PcmBuffer

SAMPLE_RATE = 16000


def _tone(duration: float, sample_rate: int, amplitude: float, freq: float = 440.0) -> np.ndarray:
    t = np.arange(int(round(duration * sample_rate))) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq * t)


@pytest.fixture
def build_signal():
    """Concatenate (duration, amplitude) parts into a float signal in [-1, 1]."""
    def _build(parts, sample_rate=SAMPLE_RATE):
        pieces = [
            _tone(duration, sample_rate, amplitude) if amplitude > 0
            else np.zeros(int(round(duration * sample_rate)))
            for duration, amplitude in parts
        ]
        return np.concatenate(pieces)
    return _build


@pytest.fixture
def make_pcm():
    """PcmBuffer from one float signal per channel."""
    def _make(*channels, sample_rate=SAMPLE_RATE):
        stacked = np.stack([np.round(c * 32767).astype(np.int16) for c in channels], axis=1)
        return PcmBuffer(
            samples=stacked.reshape(-1),
            sample_rate=sample_rate,
            channel_count=len(channels),
            duration=stacked.shape[0] / sample_rate,
        )
    return _make


@pytest.fixture
def write_wav(tmp_path):
    """Write a float signal (1-D mono or 2-D frames x channels) as 16-bit WAV."""
    def _write(name, signal, sample_rate=SAMPLE_RATE):
        path = tmp_path / name
        data = np.round(np.asarray(signal) * 32767).astype(np.int16)
        sf.write(str(path), data, sample_rate, subtype="PCM_16")
        return path
    return _write


@pytest.fixture
def write_srt(tmp_path):
    """Write an SRT file from (start, end, text) tuples in seconds."""
    def _fmt(seconds):
        ms = int(round(seconds * 1000))
        h, rem = divmod(ms, 3_600_000)
        m, rem = divmod(rem, 60_000)
        s, ms = divmod(rem, 1000)
        return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"

    def _write(name, entries):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        blocks = [
            f"{i}\n{_fmt(start)} --> {_fmt(end)}\n{text}\n"
            for i, (start, end, text) in enumerate(entries, 1)
        ]
        path.write_text("\n".join(blocks), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def energy_vad_config():
    return VADConfig(
        backend="energy",
        sensitivity=0.75,
        padding_chunks=0,
        min_speech_duration_ms=100,
        speech_merge_gap_ms=200,
    )


@pytest.fixture
def app_config(energy_vad_config):
    config = AppConfig(vad=energy_vad_config)
    config.sync.max_offset_seconds = 30.0
    return config


@pytest.fixture
def no_ffmpeg(monkeypatch):
    """Pretend ffmpeg/ffprobe are not installed."""
    monkeypatch.setattr(shutil, "which", lambda name: None)
