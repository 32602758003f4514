"""
Offline Subtitle Sync — CLI Entry Point

Usage:
    python main.py movie.mkv movie.srt
    python main.py movie.srt --offset -2.5
    python main.py season1/ --batch --recursive
    python main.py movie.mkv movie.srt --vad-sensitivity 0.6 --dry-run
"""

import sys
import argparse
import logging
from pathlib import Path

from config import load_config
from subsync.errors import ConfigurationError, SubSyncError
from subsync.orchestrator import BatchSync, SyncJob, SyncRequest
from subsync.pairing import classify
from subsync.subtitles import format_preview


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-24s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers,
        force=True
    )

    # Suppress noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("torch").setLevel(logging.WARNING)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
          Offline Subtitle Sync

  Voice Activity Detection  +  Offset Correction
  Local audio analysis, no uploads
==========================================================
"""
    print(banner)


def print_progress(message: str, percent: int):
    """Console progress callback with progress bar."""
    bar_width = 30
    filled = int(bar_width * percent / 100)
    bar = "#" * filled + "-" * (bar_width - filled)
    print(f"\r  [{bar}] {percent:3d}%  {message[:50]:<50}", end="", flush=True)
    if percent >= 100:
        print()  # Newline at completion


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Offline Subtitle Sync — Align subtitle timing to a video's "
                    "audio using local voice activity detection.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py movie.mkv movie.srt              # Auto-detect the offset
  python main.py movie.srt --offset 1.5           # Shift by +1.5s
  python main.py movie.mkv movie.srt -o out.srt   # Custom output path
  python main.py season1/ --batch                 # Pair and sync a folder
  python main.py season1/ --batch -r --workers 4  # Recursive, 4 at a time
  python main.py movie.mkv movie.srt --dry-run    # Compute only, write nothing
        """
    )

    parser.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help="Video and subtitle files, or directories with --batch"
    )
    parser.add_argument(
        "--offset",
        type=float,
        default=None,
        help="Apply this offset in seconds instead of detecting one"
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Pair videos and subtitles found in the inputs and sync each pair"
    )
    parser.add_argument(
        "-r", "--recursive",
        action="store_true",
        help="Descend into subdirectories in batch mode"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output subtitle path (default: <subtitle>_synced.<ext>; single pair only)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and report offsets without writing any file"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing output files"
    )
    parser.add_argument(
        "--range",
        type=float,
        default=None,
        help="Maximum offset in seconds (default: from config.yaml, usually 60)"
    )
    parser.add_argument(
        "--vad-sensitivity",
        type=float,
        default=None,
        help="Speech detection sensitivity 0.0-1.0 (higher = more speech)"
    )
    parser.add_argument(
        "--vad-backend",
        default=None,
        choices=["silero", "energy"],
        help="Speech probability backend (default: from config.yaml)"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Pairs to process concurrently in batch mode"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abandon a pair that takes longer than this many seconds"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except the progress bar"
    )
    return parser


def resolve_single_request(args) -> SyncRequest:
    """Split positional inputs into one video and one subtitle."""
    videos = [p for p in args.inputs if classify(p) == "video"]
    subtitles = [p for p in args.inputs if classify(p) == "subtitle"]
    unknown = [p for p in args.inputs if classify(p) is None]

    if unknown:
        raise SubSyncError(f"Unrecognised input file type: {', '.join(str(p) for p in unknown)}")
    if len(subtitles) != 1:
        raise SubSyncError("Expected exactly one subtitle file (use --batch for several)")
    if len(videos) > 1:
        raise SubSyncError("Expected at most one video file (use --batch for several)")
    if not videos and args.offset is None:
        raise SubSyncError("A video file is required unless --offset is given")

    return SyncRequest(
        subtitle=subtitles[0],
        video=videos[0] if videos else None,
        output=args.output,
        manual_offset=args.offset,
        dry_run=args.dry_run,
        force=args.force,
    )


def print_pair_result(result, quiet: bool = False):
    subtitle = result.request.subtitle
    if result.ok:
        print(f"  ✓ {subtitle.name} - Offset: {result.offset}")
        for warning in result.warnings:
            print(f"    [WARN] {warning}")
        if result.written:
            print(f"    → {result.output_path}")
        elif not quiet:
            print(f"    Dry run mode, nothing written")
            preview = format_preview(result.cues, max_entries=3)
            if preview:
                print(preview)
    else:
        print(f"  ✗ {subtitle.name} - failed: {result.error}")


def run_single(args, config) -> int:
    request = resolve_single_request(args)
    progress_fn = print_progress if not args.quiet else None
    result = SyncJob(request, config, progress_cb=progress_fn).run()
    print()
    print_pair_result(result, args.quiet)
    return 0 if result.ok else 1


def run_batch(args, config) -> int:
    if args.output is not None:
        print("  [ERROR] --output cannot be used with --batch")
        return 2

    batch = BatchSync(config)
    result = batch.run_paths(
        args.inputs,
        manual_offset=args.offset,
        dry_run=args.dry_run,
        force=args.force,
    )

    print()
    for entry in result:
        if entry.result is None:
            print(f"  ✗ Skip sync for {entry.subject}: {entry.outcome.reason}")
        else:
            print_pair_result(entry.result, args.quiet)

    print(f"\n  [INFO] {result.summary()}")
    return 1 if result.failed else 0


def main():
    parser = build_parser()
    args = parser.parse_args()

    # ── Load config ──
    try:
        config = load_config(args.config)
        config.update_from_args(args)
        config.validate()
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(2)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    batch_mode = args.batch or any(p.is_dir() for p in args.inputs)

    # ── Banner ──
    if not args.quiet:
        print_banner()
        print(f"  Inputs:      {', '.join(str(p) for p in args.inputs)}")
        print(f"  Mode:        {'Batch' if batch_mode else 'Single pair'}")
        print(f"  Method:      {'Manual' if args.offset is not None else 'Auto (VAD)'}")
        print(f"  VAD:         {config.vad.backend}, sensitivity {config.vad.sensitivity:.2f}")
        print(f"  Max offset:  ±{config.sync.max_offset_seconds:.1f}s")
        print()

    try:
        code = run_batch(args, config) if batch_mode else run_single(args, config)
    except KeyboardInterrupt:
        print("\n\n  [WARN] Processing interrupted by user.")
        sys.exit(130)
    except SubSyncError as e:
        print(f"\n  [ERROR] {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
