from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from av1q.domain.models import EncoderPreset, SearchParams

DEFAULT_EXTENSIONS = [".mp4", ".mkv", ".mov", ".avi", ".webm", ".m4v", ".ts", ".flv", ".wmv", ".mpg"]

# ffmpeg muxer names for the supported output extensions
OUTPUT_MUXERS = {".mkv": "matroska", ".mp4": "mp4", ".webm": "webm"}


class GeneralConfig(BaseModel):
    threads: int = Field(default=1, gt=0)
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    min_size_bytes: int = Field(default=0, ge=0)
    output_dir: Optional[str] = None
    output_extension: str = ".mkv"
    state_file: Optional[str] = None
    keep_original: bool = True
    max_encoded_percent: int = Field(default=100, ge=1, le=1000)
    stop_on_error: bool = False
    move_failed_files: bool = False
    failed_dir: Optional[str] = None  # default: <output_dir>/failed
    force: bool = False
    verify_outputs: bool = True
    interrupt_grace_s: float = Field(default=10.0, ge=0.0)
    debug: bool = False
    log_path: Optional[str] = None

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("extensions must not be empty")
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

    @field_validator("output_extension")
    @classmethod
    def validate_output_extension(cls, v: str) -> str:
        ext = (v if v.startswith(".") else f".{v}").lower()
        if ext not in OUTPUT_MUXERS:
            raise ValueError(f"Unsupported output extension: {v}. Use one of {sorted(OUTPUT_MUXERS)}")
        return ext


class SearchConfig(BaseModel):
    tolerance: float = Field(default=1.0, ge=0.0)
    max_iterations: int = Field(default=8, ge=1)
    initial_cq: int = Field(default=32, ge=0, le=63)
    min_cq: int = Field(default=15, ge=0, le=63)
    max_cq: int = Field(default=50, ge=0, le=63)
    step: int = Field(default=4, ge=1)
    probe_retries: int = Field(default=2, ge=0)
    best_effort: bool = False

    @model_validator(mode="after")
    def validate_bounds(self):
        if not (self.min_cq <= self.initial_cq <= self.max_cq):
            raise ValueError("initial_cq must be between min_cq and max_cq")
        return self

    def to_params(self) -> SearchParams:
        return SearchParams(
            tolerance=self.tolerance,
            max_iterations=self.max_iterations,
            initial_cq=self.initial_cq,
            min_cq=self.min_cq,
            max_cq=self.max_cq,
            step=self.step,
            best_effort=self.best_effort,
        )


class ScorerConfig(BaseModel):
    """libvmaf scorer settings; the valid score range bounds the target."""
    score_min: float = 0.0
    score_max: float = 100.0
    n_threads: int = Field(default=0, ge=0)
    subsample: int = Field(default=1, ge=1)
    model: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self):
        if self.score_min >= self.score_max:
            raise ValueError("score_min must be < score_max")
        return self


def _default_presets() -> Dict[str, EncoderPreset]:
    return {"default": EncoderPreset()}


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    presets: Dict[str, EncoderPreset] = Field(default_factory=_default_presets)

    @field_validator("presets")
    @classmethod
    def ensure_default_preset(cls, v: Dict[str, EncoderPreset]) -> Dict[str, EncoderPreset]:
        normalized = {key.lower().lstrip("."): preset for key, preset in v.items()}
        normalized.setdefault("default", EncoderPreset())
        return normalized

    def preset_for(self, container: str) -> EncoderPreset:
        return self.presets.get(container.lower().lstrip("."), self.presets["default"])
