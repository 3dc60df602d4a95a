import logging
import shutil
from av1q.domain.models import FailureReason, JobOutcome, JobSpec, OutcomeStatus


class FailedSourceMover:
    """Moves the source of a failed job to its failed-source destination.

    Only applies to jobs built with a `failed_path` (move_failed_files).
    Cancelled jobs are left in place so the next run retries them.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def move(self, spec: JobSpec, outcome: JobOutcome) -> JobOutcome:
        if spec.failed_path is None or outcome.status != OutcomeStatus.FAILED:
            return outcome
        if outcome.reason == FailureReason.CANCELLED:
            return outcome

        source = spec.source.path
        if not source.exists():
            self.logger.warning(f"Failed source file not found for relocation: {source}")
            return outcome

        try:
            spec.failed_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(spec.failed_path))
        except OSError as e:
            self.logger.error(f"FAILED_MOVE_ERROR: {source} -> {spec.failed_path}: {e}")
            return outcome.model_copy(update={"message": f"{outcome.message} (move to failed dir failed: {e})"})

        self.logger.info(f"FAILED_MOVED: {source} -> {spec.failed_path}")
        return outcome.model_copy(update={"moved_to": spec.failed_path})
