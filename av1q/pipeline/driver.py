"""Quality-targeting encoder driver.

Drives one JobSpec through Pending -> Probing -> {Succeeded, Failed,
Exhausted-BestEffort}. Each probe encodes a candidate next to the final output
(`<stem>.cq<N><ext>.tmp`) and scores it against the source. Only the closest
candidate so far is kept on disk; the accepted one is promoted to the output
path with os.replace, so a partially written output never appears.

The driver never raises for per-job problems: every encoder, scorer or
cancellation failure is turned into a JobOutcome.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple
from av1q.domain.errors import EncoderError, ProbeCancelled, ScorerError
from av1q.domain.events import JobStarted, ProbeCompleted
from av1q.domain.models import FailureReason, JobOutcome, JobSpec, QualityProbe
from av1q.infrastructure.event_bus import EventBus
from av1q.infrastructure.interface import Encoder, Scorer
from av1q.pipeline.search import CqSearch


def candidate_path_for(output_path: Path, quality_param: int) -> Path:
    return output_path.with_name(f"{output_path.stem}.cq{quality_param}{output_path.suffix}.tmp")


class QualityDriver:
    """Runs the search-and-verify loop for a single job.

    Args:
        encoder: Encoder capability (FFmpegEncoder or a stub).
        scorer: Scorer capability (VmafScorer or a stub).
        event_bus: Optional bus for JobStarted/ProbeCompleted events.
        probe_retries: Extra attempts for a failing encoder or scorer call
            with the same parameter before the job fails.
        debug: Log per-probe details at INFO instead of DEBUG.
    """

    def __init__(
        self,
        encoder: Encoder,
        scorer: Scorer,
        event_bus: Optional[EventBus] = None,
        probe_retries: int = 2,
        debug: bool = False,
    ):
        self.encoder = encoder
        self.scorer = scorer
        self.event_bus = event_bus
        self.probe_retries = probe_retries
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _publish(self, event):
        if self.event_bus is not None:
            self.event_bus.publish(event)

    def run(self, spec: JobSpec, cancel_event: Optional[threading.Event] = None) -> JobOutcome:
        filename = spec.source.path.name
        search = CqSearch(spec.target_score, spec.search)
        probes: List[QualityProbe] = []
        best: Optional[Tuple[QualityProbe, Path]] = None
        iterations = 0

        self.logger.info(f"JOB_START: {filename} target={spec.target_score} tolerance={spec.search.tolerance}")
        self._publish(JobStarted(spec=spec))
        spec.output_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            quality_param = search.next_value
            while quality_param is not None and iterations < spec.search.max_iterations:
                if cancel_event is not None and cancel_event.is_set():
                    raise ProbeCancelled(spec.source.path)

                candidate = candidate_path_for(spec.output_path, quality_param)
                probe = self._probe(spec, quality_param, candidate, probes, cancel_event)
                iterations += 1
                if cancel_event is not None and cancel_event.is_set():
                    # cancelled while a tool ignored the token: never commit its result
                    self._discard(candidate)
                    raise ProbeCancelled(spec.source.path)

                if search.within_tolerance(probe.score):
                    if best is not None and best[1] != candidate:
                        self._discard(best[1])
                    best = None
                    return self._accept(spec, probe, candidate, iterations, probes)

                if best is None or self._closer(spec, probe, best[0]):
                    if best is not None:
                        self._discard(best[1])
                    best = (probe, candidate)
                else:
                    self._discard(candidate)

                search.record(quality_param, probe.score)
                quality_param = search.next_value

            return self._exhausted(spec, best, iterations, probes)

        except ProbeCancelled:
            self.logger.info(f"JOB_END: {filename} status=cancelled iterations={iterations}")
            return JobOutcome.failed(spec, FailureReason.CANCELLED, "Cancelled by operator", iterations, probes)
        except EncoderError as e:
            self.logger.error(f"JOB_END: {filename} status=encoder_error: {e}")
            return JobOutcome.failed(spec, FailureReason.ENCODER_ERROR, str(e), iterations, probes)
        except ScorerError as e:
            self.logger.error(f"JOB_END: {filename} status=scorer_error: {e}")
            return JobOutcome.failed(spec, FailureReason.SCORER_ERROR, str(e), iterations, probes)
        finally:
            if best is not None and best[1].exists():
                self._discard(best[1])

    def _probe(
        self,
        spec: JobSpec,
        quality_param: int,
        candidate: Path,
        probes: List[QualityProbe],
        cancel_event: Optional[threading.Event],
    ) -> QualityProbe:
        """Encodes and scores one candidate, retrying each step with the same parameter."""
        attempts = self.probe_retries + 1
        start_time = time.monotonic()

        for attempt in range(1, attempts + 1):
            try:
                self.encoder.encode(spec.source.path, candidate, quality_param, spec.preset, cancel_event=cancel_event)
                break
            except EncoderError as e:
                self._record(spec, probes, QualityProbe(
                    quality_param=quality_param, attempt=attempt, error=f"encoder: {e}",
                    elapsed_seconds=time.monotonic() - start_time,
                ))
                self.logger.warning(f"PROBE_RETRY: {spec.source.path.name} cq={quality_param} encoder attempt {attempt}/{attempts}: {e}")
                if attempt == attempts:
                    raise

        for attempt in range(1, attempts + 1):
            try:
                score = self.scorer.score(spec.source.path, candidate, cancel_event=cancel_event)
                break
            except ScorerError as e:
                self._record(spec, probes, QualityProbe(
                    quality_param=quality_param, attempt=attempt, error=f"scorer: {e}",
                    elapsed_seconds=time.monotonic() - start_time,
                ))
                self.logger.warning(f"PROBE_RETRY: {spec.source.path.name} cq={quality_param} scorer attempt {attempt}/{attempts}: {e}")
                if attempt == attempts:
                    self._discard(candidate)
                    raise
            except ProbeCancelled:
                self._discard(candidate)
                raise

        size_bytes = candidate.stat().st_size if candidate.exists() else None
        probe = QualityProbe(
            quality_param=quality_param,
            size_bytes=size_bytes,
            score=score,
            elapsed_seconds=time.monotonic() - start_time,
        )
        self._record(spec, probes, probe)
        log = self.logger.info if self.debug else self.logger.debug
        log(f"PROBE: {spec.source.path.name} cq={quality_param} score={score:.2f} size={size_bytes}")
        return probe

    def _record(self, spec: JobSpec, probes: List[QualityProbe], probe: QualityProbe):
        probes.append(probe)
        self._publish(ProbeCompleted(spec=spec, probe=probe))

    @staticmethod
    def _closer(spec: JobSpec, probe: QualityProbe, other: QualityProbe) -> bool:
        """Closest score to target wins; a smaller file breaks ties."""
        distance = abs(probe.score - spec.target_score)
        other_distance = abs(other.score - spec.target_score)
        if distance != other_distance:
            return distance < other_distance
        return (probe.size_bytes or 0) < (other.size_bytes or 0)

    def _accept(self, spec: JobSpec, probe: QualityProbe, candidate: Path, iterations: int, probes: List[QualityProbe]) -> JobOutcome:
        filename = spec.source.path.name
        if self._too_large(spec, probe):
            self._discard(candidate)
            message = self._size_message(spec, probe)
            self.logger.info(f"JOB_END: {filename} status=too_large {message}")
            return JobOutcome.failed(spec, FailureReason.ENCODED_TOO_LARGE, message, iterations, probes, best=probe)

        self._promote(candidate, spec.output_path)
        self.logger.info(
            f"JOB_END: {filename} status=succeeded score={probe.score:.2f} "
            f"cq={probe.quality_param} iterations={iterations}"
        )
        if not spec.keep_original:
            spec.source.path.unlink()
            self.logger.info(f"Removed original {spec.source.path}")
        return JobOutcome.succeeded(spec, probe, iterations, probes)

    def _exhausted(self, spec: JobSpec, best: Optional[Tuple[QualityProbe, Path]], iterations: int, probes: List[QualityProbe]) -> JobOutcome:
        filename = spec.source.path.name
        best_probe = best[0] if best else None
        closest = f", closest score {best_probe.score:.2f} at cq={best_probe.quality_param}" if best_probe else ""
        message = f"Target {spec.target_score}±{spec.search.tolerance} not reached after {iterations} probes{closest}"

        output_path = None
        if best is not None and spec.search.best_effort:
            if self._too_large(spec, best_probe):
                # the run loop's cleanup removes the candidate
                message += f" (best-effort output discarded: {self._size_message(spec, best_probe)})"
            else:
                self._promote(best[1], spec.output_path)
                output_path = spec.output_path
                message += " (best-effort output kept)"
        self.logger.warning(f"JOB_END: {filename} status=quality_not_reached {message}")
        return JobOutcome.failed(
            spec, FailureReason.QUALITY_NOT_REACHED, message, iterations, probes,
            best=best_probe, output_path=output_path,
        )

    @staticmethod
    def _too_large(spec: JobSpec, probe: QualityProbe) -> bool:
        if probe.size_bytes is None or spec.source.size_bytes <= 0:
            return False
        return probe.size_bytes > spec.source.size_bytes * spec.max_encoded_percent / 100

    @staticmethod
    def _size_message(spec: JobSpec, probe: QualityProbe) -> str:
        percent = probe.size_bytes * 100 / spec.source.size_bytes
        return f"Encoded size {percent:.0f}% of source exceeds {spec.max_encoded_percent}%"

    def _promote(self, candidate: Path, output_path: Path):
        os.replace(candidate, output_path)

    def _discard(self, path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove candidate {path}: {e}")

    def encode_fixed(self, spec: JobSpec, quality_param: int, cancel_event: Optional[threading.Event] = None) -> JobOutcome:
        """Single encode at a fixed parameter with no scoring.

        Used where the metric disagrees with human judgement (e.g. sources
        with frame jitter); the result carries no score.
        """
        filename = spec.source.path.name
        candidate = candidate_path_for(spec.output_path, quality_param)
        spec.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"JOB_START: {filename} fixed cq={quality_param}")
        start_time = time.monotonic()
        try:
            self.encoder.encode(spec.source.path, candidate, quality_param, spec.preset, cancel_event=cancel_event)
        except ProbeCancelled:
            return JobOutcome.failed(spec, FailureReason.CANCELLED, "Cancelled by operator")
        except EncoderError as e:
            self.logger.error(f"JOB_END: {filename} status=encoder_error: {e}")
            return JobOutcome.failed(spec, FailureReason.ENCODER_ERROR, str(e))

        probe = QualityProbe(
            quality_param=quality_param,
            size_bytes=candidate.stat().st_size,
            elapsed_seconds=time.monotonic() - start_time,
        )
        self._promote(candidate, spec.output_path)
        self.logger.info(f"JOB_END: {filename} status=succeeded cq={quality_param} (fixed)")
        if not spec.keep_original:
            spec.source.path.unlink()
            self.logger.info(f"Removed original {spec.source.path}")
        return JobOutcome.succeeded(spec, probe, 1, [probe])
