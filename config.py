"""
Configuration loader for Offline Subtitle Sync.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from subsync.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

VAD_BACKENDS = ("silero", "energy")

_INTEGER_FIELDS = {
    "vad": ("padding_chunks", "min_speech_duration_ms", "speech_merge_gap_ms"),
    "batch": ("max_workers",),
}
_NUMBER_FIELDS = {
    "vad": ("sensitivity", "chunk_ms", "energy_floor_db", "energy_ceiling_db"),
    "sync": ("max_offset_seconds", "min_confidence"),
}


@dataclass
class VADConfig:
    backend: str = "silero"
    sensitivity: float = 0.75
    chunk_ms: float = 30.0       # target chunk length for non-native sample rates
    padding_chunks: int = 3
    min_speech_duration_ms: int = 300
    speech_merge_gap_ms: int = 200
    energy_floor_db: float = -60.0
    energy_ceiling_db: float = -10.0


@dataclass
class SyncConfig:
    max_offset_seconds: float = 60.0
    min_confidence: float = 0.0  # 0 = never reject on confidence


@dataclass
class BatchConfig:
    recursive: bool = False
    max_workers: int = 1
    pair_timeout_sec: Optional[float] = None
    output_suffix: str = "_synced"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    vad: VADConfig = field(default_factory=VADConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def max_offset_seconds(self) -> float:
        return self.sync.max_offset_seconds

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "range", None) is not None:
            self.sync.max_offset_seconds = args.range
        if getattr(args, "vad_sensitivity", None) is not None:
            self.vad.sensitivity = args.vad_sensitivity
        if getattr(args, "vad_backend", None):
            self.vad.backend = args.vad_backend
        if getattr(args, "recursive", False):
            self.batch.recursive = True
        if getattr(args, "workers", None):
            self.batch.max_workers = args.workers
        if getattr(args, "timeout", None) is not None:
            self.batch.pair_timeout_sec = args.timeout

    def validate(self) -> "AppConfig":
        """Reject values the pipeline cannot work with."""
        self._check_types()
        if not 0.0 <= self.vad.sensitivity <= 1.0:
            raise ConfigurationError(
                f"vad.sensitivity must be within [0.0, 1.0], got {self.vad.sensitivity}"
            )
        if self.vad.backend not in VAD_BACKENDS:
            raise ConfigurationError(
                f"vad.backend must be one of {', '.join(VAD_BACKENDS)}, got '{self.vad.backend}'"
            )
        if self.vad.chunk_ms <= 0:
            raise ConfigurationError("vad.chunk_ms must be positive")
        for name in ("padding_chunks", "min_speech_duration_ms", "speech_merge_gap_ms"):
            if getattr(self.vad, name) < 0:
                raise ConfigurationError(f"vad.{name} must not be negative")
        if self.vad.energy_floor_db >= self.vad.energy_ceiling_db:
            raise ConfigurationError("vad.energy_floor_db must be below vad.energy_ceiling_db")
        if self.sync.max_offset_seconds <= 0:
            raise ConfigurationError(
                f"sync.max_offset_seconds must be positive, got {self.sync.max_offset_seconds}"
            )
        if not 0.0 <= self.sync.min_confidence <= 1.0:
            raise ConfigurationError("sync.min_confidence must be within [0.0, 1.0]")
        if self.batch.max_workers < 1:
            raise ConfigurationError("batch.max_workers must be at least 1")
        if self.batch.pair_timeout_sec is not None and self.batch.pair_timeout_sec <= 0:
            raise ConfigurationError("batch.pair_timeout_sec must be positive when set")
        return self

    def _check_types(self):
        """Values read from YAML may be strings or lists; catch them before comparing."""
        for section, names in _INTEGER_FIELDS.items():
            for name in names:
                value = getattr(getattr(self, section), name)
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ConfigurationError(f"{section}.{name} must be an integer, got {value!r}")
        for section, names in _NUMBER_FIELDS.items():
            for name in names:
                value = getattr(getattr(self, section), name)
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigurationError(f"{section}.{name} must be a number, got {value!r}")
        timeout = self.batch.pair_timeout_sec
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
            raise ConfigurationError(f"batch.pair_timeout_sec must be a number, got {timeout!r}")
        for section, name in (("vad", "backend"), ("batch", "output_suffix"), ("logging", "level")):
            value = getattr(getattr(self, section), name)
            if not isinstance(value, str):
                raise ConfigurationError(f"{section}.{name} must be a string, got {value!r}")


def _dict_to_dataclass(cls, data: dict):
    """Convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section for {cls.__name__} must be a mapping")
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read configuration file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Invalid YAML structure in {path}, root must be a mapping")

    config = AppConfig(
        vad=_dict_to_dataclass(VADConfig, raw.get("vad")),
        sync=_dict_to_dataclass(SyncConfig, raw.get("sync")),
        batch=_dict_to_dataclass(BatchConfig, raw.get("batch")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
    )

    logger.info(f"Configuration loaded from {path}")
    return config.validate()
