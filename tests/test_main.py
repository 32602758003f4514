"""
Tests for the CLI entry point.
"""

import logging
from pathlib import Path

import pytest

from main import build_parser, main, resolve_single_request
from subsync.errors import SubSyncError


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestResolveSingleRequest:

    def test_video_and_subtitle(self):
        request = resolve_single_request(parse("movie.mkv", "movie.srt", "--dry-run"))
        assert request.video == Path("movie.mkv")
        assert request.subtitle == Path("movie.srt")
        assert request.dry_run and not request.is_manual

    def test_manual_without_video(self):
        request = resolve_single_request(parse("movie.srt", "--offset", "-2.5"))
        assert request.video is None
        assert request.manual_offset == -2.5

    @pytest.mark.parametrize("argv", [
        ("movie.srt",),
        ("movie.mkv",),
        ("a.srt", "b.srt", "movie.mkv"),
        ("a.mkv", "b.mkv", "movie.srt"),
        ("movie.mkv", "notes.txt", "movie.srt"),
    ])
    def test_rejected(self, argv):
        with pytest.raises(SubSyncError):
            resolve_single_request(parse(*argv))


class TestMain:
    """Test exit codes and console output of whole runs."""

    def test_manual_run(self, write_srt, monkeypatch, capsys):
        subtitle = write_srt("movie.srt", [(1.0, 2.0, "Hi")])
        monkeypatch.setattr("sys.argv", ["main.py", str(subtitle), "--offset", "1", "-q"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        assert subtitle.with_name("movie_synced.srt").exists()
        assert "✓ movie.srt" in capsys.readouterr().out

    def test_out_of_range_exit_code(self, write_srt, monkeypatch, capsys):
        subtitle = write_srt("movie.srt", [(1.0, 2.0, "Hi")])
        monkeypatch.setattr(
            "sys.argv", ["main.py", str(subtitle), "--offset", "1000", "--range", "30", "-q"]
        )

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "exceeds maximum" in capsys.readouterr().out

    def test_batch_reports_skips(self, tmp_path, write_srt, monkeypatch, capsys):
        (tmp_path / "ep01.mkv").write_bytes(b"video")
        (tmp_path / "ep02.mkv").write_bytes(b"video")
        write_srt("ep01.srt", [(1.0, 2.0, "Hi")])
        write_srt("extra.srt", [(1.0, 2.0, "Hi")])
        monkeypatch.setattr(
            "sys.argv", ["main.py", str(tmp_path), "--offset", "0.5", "--dry-run", "-q"]
        )

        with pytest.raises(SystemExit) as exc_info:
            main()

        out = capsys.readouterr().out
        assert exc_info.value.code == 0
        assert "✗ Skip sync for" in out
        assert "1 synced, 0 failed, 2 skipped" in out

    def test_bad_config_exit_code(self, tmp_path, write_srt, monkeypatch):
        subtitle = write_srt("movie.srt", [(1.0, 2.0, "Hi")])
        bad = tmp_path / "bad.yaml"
        bad.write_text("vad:\n  sensitivity: 7\n")
        monkeypatch.setattr(
            "sys.argv", ["main.py", str(subtitle), "--offset", "1", "--config", str(bad)]
        )

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 2

    def test_wrongly_typed_config_exit_code(self, tmp_path, write_srt, monkeypatch):
        subtitle = write_srt("movie.srt", [(1.0, 2.0, "Hi")])
        bad = tmp_path / "bad.yaml"
        bad.write_text("batch:\n  max_workers: many\n")
        monkeypatch.setattr(
            "sys.argv", ["main.py", str(subtitle), "--offset", "1", "--config", str(bad)]
        )

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 2
