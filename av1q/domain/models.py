from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps (older state files) are taken as local time."""
    return value if value.tzinfo is not None else value.astimezone(timezone.utc)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class FailureReason(str, Enum):
    QUALITY_NOT_REACHED = "QualityNotReached"
    ENCODER_ERROR = "EncoderError"
    SCORER_ERROR = "ScorerError"
    ENCODED_TOO_LARGE = "EncodedTooLarge"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"


class MediaFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    container: str
    size_bytes: int
    mtime: float


class EncoderPreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    encoder: str = "libsvtav1"
    preset: str = "6"
    extra_args: List[str] = Field(default_factory=list)
    audio_codec: str = "copy"

    @property
    def quality_flag(self) -> str:
        """ffmpeg option that carries the quality parameter for this encoder."""
        return "-cq" if self.encoder.endswith("_nvenc") else "-crf"


class SearchParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    tolerance: float = Field(default=1.0, ge=0.0)
    max_iterations: int = Field(default=8, ge=1)
    initial_cq: int = 32
    min_cq: int = 15
    max_cq: int = 50
    step: int = Field(default=4, ge=1)
    best_effort: bool = False


class JobSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: MediaFile
    output_path: Path
    target_score: float
    search: SearchParams
    preset: EncoderPreset
    max_encoded_percent: int = 100
    keep_original: bool = True
    failed_path: Optional[Path] = None  # where the source goes if the job fails


class QualityProbe(BaseModel):
    """One encode+score attempt. A failed attempt has `error` set and no score."""

    quality_param: int
    attempt: int = 1
    size_bytes: Optional[int] = None
    score: Optional[float] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.score is not None


class JobOutcome(BaseModel):
    source: Path
    status: OutcomeStatus
    reason: Optional[FailureReason] = None
    message: Optional[str] = None
    output_path: Optional[Path] = None
    score: Optional[float] = None
    quality_param: Optional[int] = None
    iterations: int = 0
    probes: List[QualityProbe] = Field(default_factory=list)
    moved_to: Optional[Path] = None
    finished_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def succeeded(cls, spec: JobSpec, probe: QualityProbe, iterations: int, probes: List[QualityProbe]) -> "JobOutcome":
        return cls(
            source=spec.source.path,
            status=OutcomeStatus.SUCCEEDED,
            output_path=spec.output_path,
            score=probe.score,
            quality_param=probe.quality_param,
            iterations=iterations,
            probes=list(probes),
        )

    @classmethod
    def failed(
        cls,
        spec: JobSpec,
        reason: FailureReason,
        message: str,
        iterations: int = 0,
        probes: Optional[List[QualityProbe]] = None,
        best: Optional[QualityProbe] = None,
        output_path: Optional[Path] = None,
    ) -> "JobOutcome":
        return cls(
            source=spec.source.path,
            status=OutcomeStatus.FAILED,
            reason=reason,
            message=message,
            output_path=output_path,
            score=best.score if best else None,
            quality_param=best.quality_param if best else None,
            iterations=iterations,
            probes=list(probes or []),
        )

    @classmethod
    def skipped(cls, spec: JobSpec, message: str = "already satisfied") -> "JobOutcome":
        return cls(
            source=spec.source.path,
            status=OutcomeStatus.SKIPPED,
            message=message,
            output_path=spec.output_path,
        )


class StateEntry(BaseModel):
    run_started: datetime
    outcome: JobOutcome


class BatchState(BaseModel):
    """Last known outcome per source path, persisted between runs."""

    version: int = 1
    entries: Dict[str, StateEntry] = Field(default_factory=dict)

    def get(self, source: Path) -> Optional[StateEntry]:
        return self.entries.get(str(source))

    def record(self, outcome: JobOutcome, run_started: datetime) -> bool:
        """Stores the outcome unless an entry from the same or a newer run exists."""
        key = str(outcome.source)
        existing = self.entries.get(key)
        if existing is not None and _as_utc(existing.run_started) >= _as_utc(run_started):
            return False
        stored = outcome.model_copy(update={"probes": []})
        self.entries[key] = StateEntry(run_started=run_started, outcome=stored)
        return True

    def is_satisfied(self, source: Path, output_path: Path) -> bool:
        entry = self.get(source)
        if entry is None or entry.outcome.status != OutcomeStatus.SUCCEEDED:
            return False
        return output_path.exists()


class DiscoveryWarningEntry(BaseModel):
    """A per-file problem found while walking the tree; the file is excluded."""

    path: Path
    message: str


class FailedSource(BaseModel):
    source: Path
    reason: FailureReason
    message: Optional[str] = None


class BatchSummary(BaseModel):
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    not_started: int = 0
    abandoned: int = 0
    interrupted: bool = False
    failures: List[FailedSource] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped
