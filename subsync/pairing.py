"""
Batch Pairing — decides which subtitle belongs to which video.

pair() is pure: it only looks at the paths it is given. Directory walking
lives in discover_candidates(), which callers run beforehand.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset({".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".m4v", ".webm"})
SUBTITLE_EXTENSIONS = frozenset({".srt", ".ass", ".ssa", ".vtt", ".sub"})

REASON_NO_VIDEOS = "no video files found in directory"
REASON_NO_MATCHING_VIDEO = "no matching video"
REASON_NO_MATCHING_SUBTITLE = "no matching subtitle"


@dataclass(frozen=True)
class Paired:
    video: Path
    subtitle: Path

    def __str__(self):
        return f"{self.video.name} ↔ {self.subtitle.name}"


@dataclass(frozen=True)
class Skipped:
    path: Path
    reason: str

    def __str__(self):
        return f"{self.path.name}: {self.reason}"


PairingOutcome = Union[Paired, Skipped]


def _best_video(subtitle: Path, videos: Sequence[Path]) -> Optional[Path]:
    """Video whose stem prefixes the subtitle stem; the longest stem wins."""
    best = None
    for video in videos:
        if subtitle.stem.startswith(video.stem):
            if best is None or len(video.stem) > len(best.stem):
                best = video
    return best


def pair(videos: Sequence[Path], subtitles: Sequence[Path]) -> List[PairingOutcome]:
    """
    Match subtitles to videos.

    Rules, first match wins:
    1. No videos: every subtitle is skipped
    2. Exactly one video and one subtitle: paired regardless of names
    3. Otherwise a subtitle pairs with the video whose stem its own stem
       starts with; leftovers on either side are skipped

    Returns:
        Outcomes in subtitle order, followed by skipped videos.
    """
    videos = [Path(v) for v in videos]
    subtitles = [Path(s) for s in subtitles]

    if not videos:
        return [Skipped(s, REASON_NO_VIDEOS) for s in subtitles]

    if len(videos) == 1 and len(subtitles) == 1:
        return [Paired(videos[0], subtitles[0])]

    outcomes: List[PairingOutcome] = []
    used_videos = set()

    for subtitle in subtitles:
        video = _best_video(subtitle, videos)
        if video is None:
            outcomes.append(Skipped(subtitle, REASON_NO_MATCHING_VIDEO))
        else:
            outcomes.append(Paired(video, subtitle))
            used_videos.add(video)

    for video in videos:
        if video not in used_videos:
            outcomes.append(Skipped(video, REASON_NO_MATCHING_SUBTITLE))

    return outcomes


def classify(path: Path) -> Optional[str]:
    """'video', 'subtitle' or None, by extension."""
    ext = Path(path).suffix.lower()
    if ext in VIDEO_EXTENSIONS:
        return "video"
    if ext in SUBTITLE_EXTENSIONS:
        return "subtitle"
    return None


def discover_candidates(
    paths: Iterable,
    recursive: bool = False,
    output_suffix: Optional[str] = None
) -> Tuple[List[Path], List[Path]]:
    """
    Collect candidate videos and subtitles from files and directories.

    Args:
        paths: Explicit files and/or directories.
        recursive: Descend into subdirectories of directory inputs.
        output_suffix: Subtitles whose stem ends with this are earlier sync
            outputs and are left out.

    Returns:
        (videos, subtitles), each sorted and de-duplicated.
    """
    videos, subtitles = set(), set()

    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            entries = path.rglob("*") if recursive else path.iterdir()
            files = [p for p in entries if p.is_file()]
        elif path.is_file():
            files = [path]
        else:
            logger.warning(f"Input path not found, ignoring: {path}")
            continue

        for file in files:
            kind = classify(file)
            if kind == "video":
                videos.add(file)
            elif kind == "subtitle":
                if output_suffix and file.stem.endswith(output_suffix):
                    logger.debug(f"Ignoring previous sync output: {file}")
                    continue
                subtitles.add(file)

    logger.info(f"Discovered {len(videos)} video(s) and {len(subtitles)} subtitle(s)")
    return sorted(videos), sorted(subtitles)
