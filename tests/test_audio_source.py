"""
Tests for the Audio Sample Source module.
"""

import io
import json
import shutil
import subprocess
import threading

import numpy as np
import pytest

from subsync import audio_source
from subsync.audio_source import AudioSampleSource, FFmpegDecoder, SoundFileDecoder, load_pcm
from subsync.errors import (
    CorruptStreamError,
    EmptySampleBufferError,
    NoAudioTrackError,
    SyncIOError,
    UnsupportedContainerError,
)


def _probe_output(streams, duration="2.0"):
    return json.dumps({"streams": streams, "format": {"duration": duration}})


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    """
    Stand-ins for ffprobe (subprocess.run) and ffmpeg (subprocess.Popen).

    Configure through the returned dict: probe_stdout, probe_returncode,
    payload, decode_returncode, decode_stderr. Launched commands are
    collected in "commands".
    """
    state = {
        "probe_stdout": _probe_output(
            [{"codec_type": "audio", "codec_name": "aac", "sample_rate": "48000", "channels": 2}]
        ),
        "probe_returncode": 0,
        "payload": b"",
        "decode_returncode": 0,
        "decode_stderr": b"",
        "commands": [],
    }

    def fake_run(cmd, **kwargs):
        state["commands"].append(cmd)
        return subprocess.CompletedProcess(
            cmd, state["probe_returncode"], stdout=state["probe_stdout"], stderr="probe failed"
        )

    class FakeProcess:
        def __init__(self, cmd, stdout=None, stderr=None):
            state["commands"].append(cmd)
            self.stdout = io.BytesIO(state["payload"])
            self.stderr = io.BytesIO(state["decode_stderr"])
            self.returncode = None

        def poll(self):
            return self.returncode

        def wait(self):
            self.returncode = state["decode_returncode"]
            return self.returncode

        def kill(self):
            self.returncode = -9

    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(audio_source.subprocess, "run", fake_run)
    monkeypatch.setattr(audio_source.subprocess, "Popen", FakeProcess)
    return state


@pytest.fixture
def media_file(tmp_path):
    path = tmp_path / "movie.mkv"
    path.write_bytes(b"not really a matroska file")
    return path


class TestSoundFileDecoding:
    """Test decoding libsndfile-native containers."""

    def test_stereo_wav_keeps_layout(self, write_wav):
        left = np.linspace(-0.5, 0.5, 1600)
        path = write_wav("stereo.wav", np.stack([left, -left], axis=1))

        pcm = load_pcm(path)

        assert pcm.sample_rate == 16000
        assert pcm.channel_count == 2
        assert pcm.frame_count == 1600
        assert pcm.samples.dtype == np.int16
        np.testing.assert_array_equal(pcm.channel(1), -pcm.channel(0))

    def test_duration_from_metadata(self, write_wav):
        path = write_wav("tone.wav", np.zeros(8000), sample_rate=8000)
        pcm = load_pcm(path)
        assert pcm.duration == pytest.approx(1.0)
        assert pcm.sample_rate == 8000

    def test_native_rate_preserved(self, write_wav):
        path = write_wav("hifi.wav", np.zeros(4410), sample_rate=44100)
        with AudioSampleSource.open(path) as source:
            assert source.info.sample_rate == 44100
            assert isinstance(source.decoder, SoundFileDecoder)
            pcm = source.decode_all()
        assert pcm.sample_rate == 44100

    def test_empty_file_raises(self, write_wav):
        path = write_wav("empty.wav", np.zeros((0, 1)))
        with pytest.raises(EmptySampleBufferError):
            load_pcm(path)

    def test_iter_frames_in_order(self, write_wav):
        signal = np.linspace(-0.9, 0.9, 200000)
        path = write_wav("long.wav", signal)
        with AudioSampleSource.open(path) as source:
            blocks = list(source.iter_frames())
        assert len(blocks) > 1
        joined = np.concatenate(blocks)
        assert joined.size == 200000
        assert joined[0] < joined[-1]


class TestOpenFailures:
    """Test failures that happen before any sample is decoded."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(SyncIOError):
            AudioSampleSource.open(tmp_path / "nope.wav")

    def test_garbage_wav_without_ffmpeg(self, tmp_path, no_ffmpeg):
        path = tmp_path / "broken.wav"
        path.write_bytes(b"RIFF this is not audio at all")
        with pytest.raises(UnsupportedContainerError) as exc_info:
            AudioSampleSource.open(path)
        assert "broken.wav" in str(exc_info.value)

    def test_unknown_container_without_ffmpeg(self, media_file, no_ffmpeg):
        with pytest.raises(UnsupportedContainerError, match="no decoder available"):
            AudioSampleSource.open(media_file)


class TestFFmpegDecoding:
    """Test the ffprobe/ffmpeg pipe path with faked processes."""

    def test_streams_interleaved_pcm(self, media_file, fake_ffmpeg):
        frames = np.arange(-3000, 3000, dtype=np.int16)
        fake_ffmpeg["payload"] = frames.astype("<i2").tobytes()

        with AudioSampleSource.open(media_file) as source:
            assert isinstance(source.decoder, FFmpegDecoder)
            pcm = source.decode_all()

        assert pcm.sample_rate == 48000
        assert pcm.channel_count == 2
        assert pcm.frame_count == 3000
        np.testing.assert_array_equal(pcm.samples, frames)
        assert pcm.duration == pytest.approx(2.0)

    def test_trailing_partial_frame_dropped(self, media_file, fake_ffmpeg):
        frames = np.arange(10, dtype=np.int16)
        fake_ffmpeg["payload"] = frames.astype("<i2").tobytes() + b"\x01\x00"
        pcm = load_pcm(media_file)
        assert pcm.samples.size == 10

    def test_native_rate_not_forced(self, media_file, fake_ffmpeg):
        fake_ffmpeg["payload"] = np.zeros(4, dtype=np.int16).tobytes()
        load_pcm(media_file)
        decode_cmd = fake_ffmpeg["commands"][-1]
        assert decode_cmd[0] == "ffmpeg"
        assert "-ar" not in decode_cmd
        assert decode_cmd[-1] == "pipe:1"

    def test_missing_metadata_falls_back(self, media_file, fake_ffmpeg):
        fake_ffmpeg["probe_stdout"] = _probe_output([{"codec_type": "audio"}], duration="N/A")
        fake_ffmpeg["payload"] = np.zeros(16000, dtype=np.int16).tobytes()

        pcm = load_pcm(media_file)

        decode_cmd = fake_ffmpeg["commands"][-1]
        assert decode_cmd[decode_cmd.index("-ar") + 1] == "16000"
        assert "pan=mono|c0=c0" in decode_cmd
        assert pcm.sample_rate == 16000
        assert pcm.channel_count == 1
        assert pcm.duration == pytest.approx(1.0)

    def test_no_audio_track(self, media_file, fake_ffmpeg):
        fake_ffmpeg["probe_stdout"] = _probe_output([{"codec_type": "video"}])
        with pytest.raises(NoAudioTrackError):
            AudioSampleSource.open(media_file)

    def test_probe_failure_is_unsupported(self, media_file, fake_ffmpeg):
        fake_ffmpeg["probe_returncode"] = 1
        with pytest.raises(UnsupportedContainerError):
            AudioSampleSource.open(media_file)

    def test_failure_mid_stream(self, media_file, fake_ffmpeg):
        fake_ffmpeg["payload"] = np.zeros(64, dtype=np.int16).tobytes()
        fake_ffmpeg["decode_returncode"] = 1
        fake_ffmpeg["decode_stderr"] = b"Invalid data found when processing input"

        with pytest.raises(CorruptStreamError, match="Invalid data"):
            load_pcm(media_file)

    def test_no_samples_decoded(self, media_file, fake_ffmpeg):
        with pytest.raises(EmptySampleBufferError):
            load_pcm(media_file)


class TestNoisyStderr:
    """Test that heavy ffmpeg stderr output never blocks the PCM pipe."""

    @pytest.fixture
    def noisy_ffmpeg(self, fake_ffmpeg, monkeypatch):
        """
        ffmpeg that floods stderr (~1MB) and, like a real process, only
        produces stdout once somebody reads its stderr.
        """
        noise = b"[aac @ 0x55d0] Invalid data found when processing input\n" * 20000
        frames = np.arange(-8000, 8000, dtype=np.int16)
        stderr_drained = threading.Event()

        class Stderr(io.BytesIO):
            def readline(self, *args):
                line = super().readline(*args)
                if not line:
                    stderr_drained.set()
                return line

        class Stdout(io.BytesIO):
            def read(self, *args):
                if not stderr_drained.wait(timeout=5):
                    raise AssertionError("stdout stalled behind an unread stderr pipe")
                return super().read(*args)

        class NoisyProcess:
            def __init__(self, cmd, stdout=None, stderr=None):
                self.stdout = Stdout(frames.astype("<i2").tobytes())
                self.stderr = Stderr(noise)
                self.returncode = None

            def poll(self):
                return self.returncode

            def wait(self):
                self.returncode = fake_ffmpeg["decode_returncode"]
                return self.returncode

            def kill(self):
                self.returncode = -9

        monkeypatch.setattr(audio_source.subprocess, "Popen", NoisyProcess)
        return fake_ffmpeg

    def test_decodes_despite_flood(self, media_file, noisy_ffmpeg):
        pcm = load_pcm(media_file)
        assert pcm.samples.size == 16000
        assert pcm.frame_count == 8000

    def test_failure_keeps_only_tail(self, media_file, noisy_ffmpeg):
        noisy_ffmpeg["decode_returncode"] = 1
        with pytest.raises(CorruptStreamError, match="Invalid data") as exc_info:
            load_pcm(media_file)
        assert len(str(exc_info.value)) < 5000
