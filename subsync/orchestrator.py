"""
Sync Orchestrator — Drives one subtitle/video pair through the pipeline.

States:
  IDLE → RESOLVING_INPUTS → AUTO_ANALYZING | MANUAL_APPLYING → WRITING → DONE
  ERROR is reachable from every non-terminal state.

Automatic mode:
  1. Audio decoding (soundfile / ffmpeg pipe)
  2. Chunked VAD on the first channel
  3. Segment merging
  4. Offset estimate (first speech vs first cue) + application

Manual mode skips 1-3 entirely.

BatchSync runs one independent SyncJob per pair; a failing pair never
stops its siblings.
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .applier import OffsetApplier
from .audio_source import load_pcm
from .errors import LowConfidenceError, SubSyncError, SyncIOError, SyncTimeoutError
from .merger import SpeechSegmentMerger
from .offset import OffsetCalculator, SyncOffset, require_cues
from .pairing import Paired, PairingOutcome, Skipped, discover_candidates, pair
from .subtitles import SubtitleCue, SubtitleDocument
from .vad import SpeechActivityDetector

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: (message: str, percent: int) -> None
ProgressCallback = Optional[Callable[[str, int], None]]


class SyncState(Enum):
    IDLE = "idle"
    RESOLVING_INPUTS = "resolving_inputs"
    AUTO_ANALYZING = "auto_analyzing"
    MANUAL_APPLYING = "manual_applying"
    WRITING = "writing"
    DONE = "done"
    ERROR = "error"


_TRANSITIONS: Dict[SyncState, frozenset] = {
    SyncState.IDLE: frozenset({SyncState.RESOLVING_INPUTS, SyncState.ERROR}),
    SyncState.RESOLVING_INPUTS: frozenset({
        SyncState.AUTO_ANALYZING, SyncState.MANUAL_APPLYING, SyncState.ERROR
    }),
    SyncState.AUTO_ANALYZING: frozenset({SyncState.WRITING, SyncState.ERROR}),
    SyncState.MANUAL_APPLYING: frozenset({SyncState.WRITING, SyncState.ERROR}),
    SyncState.WRITING: frozenset({SyncState.DONE, SyncState.ERROR}),
    SyncState.DONE: frozenset(),
    SyncState.ERROR: frozenset(),
}


@dataclass
class SyncRequest:
    """What to sync and where to put the result."""
    subtitle: Path
    video: Optional[Path] = None
    output: Optional[Path] = None
    manual_offset: Optional[float] = None
    dry_run: bool = False
    force: bool = False

    @property
    def is_manual(self) -> bool:
        return self.manual_offset is not None


@dataclass
class PairResult:
    """Final state of one SyncJob."""
    request: SyncRequest
    state: SyncState = SyncState.IDLE
    history: List[SyncState] = field(default_factory=lambda: [SyncState.IDLE])
    offset: Optional[SyncOffset] = None
    cues: List[SubtitleCue] = field(default_factory=list)
    output_path: Optional[Path] = None
    written: bool = False
    error: Optional[Exception] = None
    warnings: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is SyncState.DONE


class SyncJob:
    """
    One pipeline instance for one file pair.

    Usage:
        job = SyncJob(SyncRequest(subtitle=Path("ep01.srt"), video=Path("ep01.mkv")), config)
        result = job.run()
    """

    def __init__(
        self,
        request: SyncRequest,
        config,
        detector: Optional[SpeechActivityDetector] = None,
        progress_cb: ProgressCallback = None
    ):
        self.request = request
        self.config = config
        self.progress_cb = progress_cb
        self.result = PairResult(request=request)

        self.detector = detector
        self.merger = SpeechSegmentMerger(config.vad)
        self.calculator = OffsetCalculator(config.sync.max_offset_seconds)
        self.applier = OffsetApplier()

        self.timeout = config.batch.pair_timeout_sec
        self._abandoned = threading.Event()
        self._started = None

    @property
    def state(self) -> SyncState:
        return self.result.state

    def abandon(self):
        """Ask the job to stop at its next stage boundary; it will not write."""
        self._abandoned.set()

    def run(self) -> PairResult:
        """Run the pipeline to DONE or ERROR. Never raises SubSyncError."""
        if self.state is not SyncState.IDLE:
            raise RuntimeError(f"SyncJob already ran (state={self.state.value})")

        self._started = time.monotonic()
        label = self.request.subtitle.name

        try:
            self._transition(SyncState.RESOLVING_INPUTS)
            self._report(f"{label}: loading subtitles...", 5)
            document = self._resolve_inputs()

            if self.request.is_manual:
                self._transition(SyncState.MANUAL_APPLYING)
                cues = self._apply_manual(document)
            else:
                self._transition(SyncState.AUTO_ANALYZING)
                cues = self._analyze(document)

            self._checkpoint("before writing")
            self._transition(SyncState.WRITING)
            self._write(document, cues)
            self._transition(SyncState.DONE)
            self._report(f"{label}: done ({self.result.offset})", 100)

        except SubSyncError as e:
            self.fail(e)

        self.result.elapsed = time.monotonic() - self._started
        return self.result

    def fail(self, error: Exception) -> PairResult:
        """Record error and move to ERROR."""
        self.result.error = error
        logger.error(f"Sync failed for {self.request.subtitle.name} in state "
                     f"{self.state.value}: {error}")
        self._transition(SyncState.ERROR)
        return self.result

    # ── Stages ──

    def _resolve_inputs(self) -> SubtitleDocument:
        request = self.request
        document = SubtitleDocument.load(request.subtitle)
        require_cues(document.cues, request.subtitle)

        if not request.is_manual:
            if request.video is None:
                raise SyncIOError(f"Automatic sync of {request.subtitle.name} needs a video file")
            if not Path(request.video).is_file():
                raise SyncIOError(f"Video file not found: {request.video}")

        output = Path(request.output) if request.output else default_output_path(
            request.subtitle, self.config.batch.output_suffix
        )
        if not request.dry_run and output.exists() and not request.force:
            raise SyncIOError(f"Output file already exists: {output} (use --force to overwrite)")
        self.result.output_path = output

        self._checkpoint("after resolving inputs")
        return document

    def _apply_manual(self, document: SubtitleDocument) -> List[SubtitleCue]:
        offset = self.calculator.manual(self.request.manual_offset)
        self.result.offset = offset
        self._report(f"{self.request.subtitle.name}: applying manual offset {offset.offset_seconds:+.3f}s", 60)
        return self._shift(document.cues, offset)

    def _analyze(self, document: SubtitleDocument) -> List[SubtitleCue]:
        label = self.request.subtitle.name

        self._report(f"{label}: decoding audio from {Path(self.request.video).name}...", 15)
        pcm = load_pcm(self.request.video)
        self._checkpoint("after decoding")

        self._report(f"{label}: detecting speech...", 40)
        classification = self._get_detector().classify(pcm)
        del pcm
        self._checkpoint("after speech detection")

        self._report(f"{label}: merging speech segments...", 70)
        segments = self.merger.merge(classification)

        offset = self.calculator.automatic(segments, document.cues, classification.duration)
        self.result.offset = offset
        self.result.warnings.extend(offset.warnings)

        min_confidence = self.config.sync.min_confidence
        if offset.confidence < min_confidence:
            raise LowConfidenceError(offset.confidence, min_confidence)

        self._report(f"{label}: applying offset {offset.offset_seconds:+.3f}s", 85)
        return self._shift(document.cues, offset)

    def _shift(self, cues: List[SubtitleCue], offset: SyncOffset) -> List[SubtitleCue]:
        shifted = self.applier.apply(cues, offset.offset_seconds)
        if self.applier.last_clamped:
            self.result.warnings.append(
                f"{self.applier.last_clamped} cue(s) clamped to start at 0.000s"
            )
        return shifted

    def _write(self, document: SubtitleDocument, cues: List[SubtitleCue]):
        self.result.cues = cues
        if self.request.dry_run:
            logger.info(f"Dry run mode, not writing {self.result.output_path}")
            return
        self._report(f"{self.request.subtitle.name}: writing {self.result.output_path.name}", 95)
        document.save(cues, self.result.output_path)
        self.result.written = True

    # ── Utilities ──

    def _get_detector(self) -> SpeechActivityDetector:
        if self.detector is None:
            self.detector = SpeechActivityDetector(self.config.vad)
        return self.detector

    def _transition(self, new_state: SyncState):
        current = self.result.state
        if new_state not in _TRANSITIONS[current]:
            raise RuntimeError(f"Illegal transition {current.value} → {new_state.value}")
        logger.debug(f"{self.request.subtitle.name}: {current.value} → {new_state.value}")
        self.result.state = new_state
        self.result.history.append(new_state)

    def _checkpoint(self, stage: str):
        if self._abandoned.is_set():
            raise SyncTimeoutError(f"pipeline abandoned {stage}")
        if self.timeout is not None and self._started is not None:
            elapsed = time.monotonic() - self._started
            if elapsed > self.timeout:
                raise SyncTimeoutError(f"timed out after {elapsed:.1f}s (limit {self.timeout:.1f}s) {stage}")

    def _report(self, msg: str, pct: int):
        """Report progress to logger and optional callback."""
        logger.info(f"[{pct:3d}%] {msg}")
        if self.progress_cb:
            self.progress_cb(msg, pct)


def default_output_path(subtitle: Path, suffix: str = "_synced") -> Path:
    subtitle = Path(subtitle)
    return subtitle.with_name(f"{subtitle.stem}{suffix}{subtitle.suffix}")


@dataclass
class BatchEntry:
    """One pairing outcome and, if it was paired, its sync result."""
    outcome: PairingOutcome
    result: Optional[PairResult] = None

    @property
    def subject(self) -> Path:
        if isinstance(self.outcome, Skipped):
            return self.outcome.path
        return self.outcome.subtitle

    @property
    def status(self) -> str:
        if isinstance(self.outcome, Skipped):
            return f"skipped: {self.outcome.reason}"
        if self.result is not None and self.result.ok:
            return "paired"
        error = self.result.error if self.result is not None else None
        return f"failed: {error}" if error is not None else "failed: pipeline did not run"


@dataclass
class BatchResult:
    entries: List[BatchEntry] = field(default_factory=list)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    @property
    def succeeded(self) -> List[BatchEntry]:
        return [e for e in self.entries if e.result is not None and e.result.ok]

    @property
    def failed(self) -> List[BatchEntry]:
        return [e for e in self.entries if isinstance(e.outcome, Paired)
                and (e.result is None or not e.result.ok)]

    @property
    def skipped(self) -> List[BatchEntry]:
        return [e for e in self.entries if isinstance(e.outcome, Skipped)]

    def summary(self) -> str:
        return (f"{len(self.succeeded)} synced, {len(self.failed)} failed, "
                f"{len(self.skipped)} skipped")


class BatchSync:
    """
    Runs a SyncJob for every Paired outcome.

    Usage:
        result = BatchSync(config).run_paths([Path("season1/")])
        for entry in result:
            print(entry.subject, entry.status)
    """

    def __init__(self, config, progress_cb: ProgressCallback = None):
        self.config = config
        self.progress_cb = progress_cb
        self._local = threading.local()

    def run_paths(self, paths, **kwargs) -> BatchResult:
        """Discover candidates under paths, pair them, and sync."""
        videos, subtitles = discover_candidates(
            paths,
            recursive=self.config.batch.recursive,
            output_suffix=self.config.batch.output_suffix,
        )
        return self.run(pair(videos, subtitles), **kwargs)

    def run(
        self,
        outcomes: List[PairingOutcome],
        manual_offset: Optional[float] = None,
        dry_run: bool = False,
        force: bool = False
    ) -> BatchResult:
        """
        Sync every paired outcome; skipped outcomes pass straight through.

        Returns:
            BatchResult in the same order as outcomes.
        """
        entries = [BatchEntry(outcome) for outcome in outcomes]
        jobs = []
        for entry in entries:
            if isinstance(entry.outcome, Skipped):
                logger.warning(f"Skip sync for {entry.outcome.path}: {entry.outcome.reason}")
                continue
            request = SyncRequest(
                subtitle=entry.outcome.subtitle,
                video=entry.outcome.video,
                manual_offset=manual_offset,
                dry_run=dry_run,
                force=force,
            )
            jobs.append((entry, request))

        workers = max(1, self.config.batch.max_workers)
        logger.info(f"Batch: {len(jobs)} pair(s) to sync, {len(entries) - len(jobs)} skipped, "
                    f"{workers} worker(s)")

        if workers == 1 or len(jobs) <= 1:
            for entry, request in jobs:
                entry.result = self._run_one(request)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [(entry, executor.submit(self._run_one, request)) for entry, request in jobs]
                for entry, future in futures:
                    entry.result = future.result()

        result = BatchResult(entries)
        logger.info(f"Batch complete: {result.summary()}")
        return result

    def _detector(self) -> SpeechActivityDetector:
        """One detector per worker thread; never shared mid-stream."""
        detector = getattr(self._local, "detector", None)
        if detector is None:
            detector = SpeechActivityDetector(self.config.vad)
            self._local.detector = detector
        return detector

    def _run_one(self, request: SyncRequest) -> PairResult:
        job = None
        try:
            detector = None if request.is_manual else self._detector()
            job = SyncJob(request, self.config, detector=detector, progress_cb=self.progress_cb)
            return job.run()
        except Exception as e:
            logger.exception(f"Unexpected error while syncing {request.subtitle}")
            result = job.result if job is not None else PairResult(request=request)
            result.error = e
            result.state = SyncState.ERROR
            result.history.append(SyncState.ERROR)
            return result
