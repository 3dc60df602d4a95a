import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from av1q.config.models import AppConfig
from av1q.domain.errors import ConfigurationError
from av1q.domain.models import JobSpec, MediaFile


def default_output_dir(root: Path) -> Path:
    """`<root>_out` beside the input root."""
    root = Path(root).resolve()
    return root.with_name(f"{root.name}_out")


def default_failed_dir(output_dir: Path) -> Path:
    return Path(output_dir) / "failed"


class JobBuilder:
    """Derives immutable JobSpecs from discovered media files.

    Output paths mirror the source's path relative to `root` under
    `output_dir` with the configured extension. Collisions are detected
    incrementally as jobs are built: two sources resolving to the same output
    (e.g. `a.mp4` and `a.mov`) is a ConfigurationError naming both.

    With `move_failed_files`, each job also gets a failed-source destination
    under `failed_dir` (same relative path, original extension). It must not
    exist yet and must not coincide with any output.
    """

    def __init__(
        self,
        config: AppConfig,
        root: Path,
        output_dir: Path,
        target_score: float,
        failed_dir: Optional[Path] = None,
    ):
        self.config = config
        self.root = Path(root).resolve()
        self.output_dir = Path(output_dir).resolve()
        self.target_score = target_score
        self.failed_dir = Path(failed_dir).resolve() if failed_dir else default_failed_dir(self.output_dir)
        self._outputs: Dict[Path, Path] = {}  # output path -> source path
        self.logger = logging.getLogger(__name__)
        self._validate_target()

    def _validate_target(self):
        scorer = self.config.scorer
        if not (scorer.score_min <= self.target_score <= scorer.score_max):
            raise ConfigurationError(
                f"Target score {self.target_score} outside valid range "
                f"[{scorer.score_min}, {scorer.score_max}]"
            )

    def _relative(self, media: MediaFile) -> Path:
        try:
            return media.path.resolve().relative_to(self.root)
        except ValueError:
            return Path(media.path.name)

    def output_path_for(self, media: MediaFile) -> Path:
        return self.output_dir / self._relative(media).with_suffix(self.config.general.output_extension)

    def failed_path_for(self, media: MediaFile) -> Optional[Path]:
        if not self.config.general.move_failed_files:
            return None
        return self.failed_dir / self._relative(media)

    def build(self, media: MediaFile) -> JobSpec:
        output_path = self.output_path_for(media)
        existing = self._outputs.get(output_path)
        if existing is not None and existing != media.path:
            raise ConfigurationError(
                f"Output collision: {existing} and {media.path} both resolve to {output_path}"
            )
        if output_path.resolve() == media.path.resolve():
            raise ConfigurationError(f"Output path equals source path: {media.path}")
        self._outputs[output_path] = media.path

        failed_path = self.failed_path_for(media)
        if failed_path is not None:
            if failed_path.exists():
                raise ConfigurationError(f"Failed-source destination already exists: {failed_path} (for {media.path})")
            existing = self._outputs.get(failed_path)
            if failed_path == output_path or (existing is not None and existing != media.path):
                raise ConfigurationError(
                    f"Output collision: failed-source destination {failed_path} of {media.path} is also an output"
                )
            self._outputs[failed_path] = media.path

        return JobSpec(
            source=media,
            output_path=output_path,
            target_score=self.target_score,
            search=self.config.search.to_params(),
            preset=self.config.preset_for(media.container),
            max_encoded_percent=self.config.general.max_encoded_percent,
            keep_original=self.config.general.keep_original,
            failed_path=failed_path,
        )

    def build_all(self, files: Iterable[MediaFile]) -> List[JobSpec]:
        specs = [self.build(media) for media in files]
        self.logger.info(f"JOBS_BUILT: {len(specs)} jobs (output_dir={self.output_dir})")
        return specs
