"""Batch scheduler for quality-targeted encode jobs.

Coordinates discovery, job construction, bounded-concurrency execution of the
quality driver, and the hand-off of outcomes to the progress tracker.

Key responsibilities:
- Walk the input root and build every JobSpec before anything runs, so output
  collisions abort the batch before a single encode starts
- Report already-satisfied files as Skipped without invoking any tool
- Submit jobs on demand: at most `threads` jobs are in flight, a new one is
  submitted only when a worker frees up
- Continue on per-job failure (or stop submitting on the first one when
  `stop_on_error` is set)
- Abort on operator interrupt: no new submissions, in-flight external
  processes are terminated and their jobs end Failed(Cancelled)
- Bound the wait for in-flight jobs by `interrupt_grace_s`; jobs still
  running after it are abandoned and left unrecorded
- Move sources of failed jobs aside when `move_failed_files` is set
"""

import concurrent.futures
import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Tuple
from av1q.config.models import AppConfig
from av1q.domain.events import (
    DiscoveryFinished, DiscoveryStarted, InterruptRequested, JobFinished, ProcessingFinished,
)
from av1q.domain.models import BatchSummary, FailureReason, JobOutcome, JobSpec, OutcomeStatus
from av1q.infrastructure.event_bus import EventBus
from av1q.infrastructure.file_scanner import FileScanner
from av1q.pipeline.driver import QualityDriver
from av1q.pipeline.failed_mover import FailedSourceMover
from av1q.pipeline.jobs import JobBuilder
from av1q.pipeline.tracker import ProgressTracker


class Orchestrator:
    """Runs a batch: discovery -> job specs -> worker pool -> tracker.

    Args:
        config: AppConfig with general, search, scorer and preset settings.
        event_bus: EventBus for lifecycle events (JobFinished feeds the tracker).
        file_scanner: FileScanner for discovering media files.
        job_builder: JobBuilder deriving output paths and per-file parameters.
        driver: QualityDriver executing one job's search loop.
        tracker: ProgressTracker owning BatchState writes.
        failed_mover: FailedSourceMover relocating sources of failed jobs.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        job_builder: JobBuilder,
        driver: QualityDriver,
        tracker: ProgressTracker,
        failed_mover: Optional[FailedSourceMover] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.job_builder = job_builder
        self.driver = driver
        self.tracker = tracker
        self.failed_mover = failed_mover or FailedSourceMover()
        self.logger = logging.getLogger(__name__)

        self._shutdown_requested = False
        self._lock = threading.RLock()  # re-entered from the SIGTERM handler
        self._cancel_event = threading.Event()  # propagated to external processes
        self._not_started = 0
        self._abandoned = 0
        self._interrupt_deadline: Optional[float] = None

        self.event_bus.subscribe(InterruptRequested, self._on_interrupt_requested)

    # ------------------------------------------------------------------ control

    def request_shutdown(self):
        """Stop submitting new jobs; in-flight jobs run to completion."""
        with self._lock:
            if not self._shutdown_requested:
                self.logger.info("Shutdown requested - no new jobs will be started")
            self._shutdown_requested = True

    def request_interrupt(self):
        """Stop submitting and cancel in-flight jobs (terminates their processes).

        Jobs still running `interrupt_grace_s` after the first interrupt are
        abandoned: the batch returns without them and their outcomes are not
        recorded.
        """
        self.logger.info("Interrupt requested - cancelling active jobs...")
        with self._lock:
            if self._interrupt_deadline is None:
                self._interrupt_deadline = time.monotonic() + self.config.general.interrupt_grace_s
        self.request_shutdown()
        self._cancel_event.set()

    def _on_interrupt_requested(self, event: InterruptRequested):
        self.request_interrupt()

    @property
    def interrupted(self) -> bool:
        return self._cancel_event.is_set()

    def _grace_expired(self) -> bool:
        return self._interrupt_deadline is not None and time.monotonic() >= self._interrupt_deadline

    # ---------------------------------------------------------------- discovery

    def _perform_discovery(self, root: Path) -> Tuple[List[JobSpec], List[JobSpec]]:
        """Builds every job spec; returns (to_process, already_satisfied)."""
        self.logger.info(f"DISCOVERY_STARTED: {root}")
        self.event_bus.publish(DiscoveryStarted(directory=root))

        specs = self.job_builder.build_all(self.file_scanner.scan(root))
        to_process: List[JobSpec] = []
        satisfied: List[JobSpec] = []
        for spec in specs:
            if not self.config.general.force and self.tracker.is_satisfied(spec.source.path, spec.output_path):
                satisfied.append(spec)
            else:
                to_process.append(spec)

        warnings = list(self.file_scanner.warnings)
        self.logger.info(
            f"DISCOVERY_FINISHED: found={len(specs)}, to_process={len(to_process)}, "
            f"already_satisfied={len(satisfied)}, warnings={len(warnings)}"
        )
        self.event_bus.publish(DiscoveryFinished(
            files_found=len(specs),
            files_to_process=len(to_process),
            already_satisfied=len(satisfied),
            warnings=warnings,
        ))
        return to_process, satisfied

    # ---------------------------------------------------------------- execution

    def run(self, root: Path) -> BatchSummary:
        """Discovers, schedules and tracks a whole batch.

        ConfigurationError/DiscoveryError propagate before anything is scheduled.
        KeyboardInterrupt cancels in-flight jobs, flushes state, then re-raises.
        """
        self.logger.info(f"Batch started: root={root}")
        try:
            to_process, satisfied = self._perform_discovery(Path(root))
            self.tracker.expected_total = len(to_process) + len(satisfied)
            self.tracker.start()
            for spec in satisfied:
                self.event_bus.publish(JobFinished(outcome=JobOutcome.skipped(spec)))
            self.process(to_process)
        finally:
            summary = self.tracker.close()

        summary.interrupted = self.interrupted
        summary.not_started = self._not_started
        summary.abandoned = self._abandoned
        return summary

    def process(self, specs: List[JobSpec]):
        """Runs job specs through the driver with at most `threads` in flight."""
        pending: Deque[JobSpec] = deque(specs)
        in_flight: Dict[concurrent.futures.Future, JobSpec] = {}
        max_inflight = self.config.general.threads

        if not pending:
            self.logger.info("No files to process")
            self.event_bus.publish(ProcessingFinished())
            return

        # Not a `with` block: its exit would join workers past the interrupt grace period
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_inflight, thread_name_prefix="av1q-worker")

        def submit_batch():
            """Submit jobs up to max_inflight limit"""
            while len(in_flight) < max_inflight and pending and not self._shutdown_requested:
                spec = pending.popleft()
                future = executor.submit(self._process_job, spec)
                in_flight[future] = spec

        try:
            submit_batch()

            while in_flight:
                if self._grace_expired():
                    self._harvest(in_flight)
                    self._abandon(in_flight)
                    break
                done, _ = concurrent.futures.wait(
                    set(in_flight.keys()),
                    timeout=0.2 if self.interrupted else 1.0,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    spec = in_flight.pop(future)
                    outcome = future.result()
                    if outcome is None:
                        self._not_started += 1
                        continue
                    if outcome.status == OutcomeStatus.FAILED and self.config.general.stop_on_error:
                        self.logger.info(f"stop_on_error: {spec.source.path.name} failed, stopping submissions")
                        self.request_shutdown()
                submit_batch()

        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping new tasks and interrupting active jobs...")
            self.request_interrupt()
            for future in list(in_flight):
                if future.cancel():
                    in_flight.pop(future)
                    self._not_started += 1
            self._wait_for_in_flight(in_flight)
            executor.shutdown(wait=False, cancel_futures=True)
            self._log_not_started(pending)
            self.event_bus.publish(ProcessingFinished(interrupted=True))
            raise

        executor.shutdown(wait=not self._abandoned, cancel_futures=True)
        self._log_not_started(pending)
        self.event_bus.publish(ProcessingFinished(interrupted=self.interrupted))
        self.logger.info("All submitted jobs finished")

    def _wait_for_in_flight(self, in_flight: Dict[concurrent.futures.Future, JobSpec]):
        """Gives cancelled workers until the interrupt deadline to report their outcome."""
        self.logger.info(f"Waiting for active jobs to terminate (max {self.config.general.interrupt_grace_s}s)...")
        while True:
            self._harvest(in_flight)
            running = list(in_flight)
            if not running:
                return
            remaining = self._interrupt_deadline - time.monotonic()
            if remaining <= 0:
                self._abandon(in_flight)
                return
            concurrent.futures.wait(running, timeout=min(0.2, remaining), return_when=concurrent.futures.FIRST_COMPLETED)

    def _harvest(self, in_flight: Dict[concurrent.futures.Future, JobSpec]):
        """Drops finished futures; their outcomes were already published by the worker."""
        for future in [f for f in in_flight if f.done()]:
            in_flight.pop(future)
            if future.result() is None:
                self._not_started += 1

    def _abandon(self, in_flight: Dict[concurrent.futures.Future, JobSpec]):
        running = list(in_flight.values())
        self._abandoned += len(running)
        names = ", ".join(spec.source.path.name for spec in running)
        self.logger.warning(
            f"{len(running)} jobs did not terminate within the grace period; "
            f"their outcomes will not be recorded: {names}"
        )

    def _log_not_started(self, pending: Deque[JobSpec]):
        self._not_started += len(pending)
        if self._not_started:
            self.logger.info(f"{self._not_started} jobs were not started")

    def _process_job(self, spec: JobSpec):
        """Worker body: runs the driver and hands the outcome to the tracker."""
        if self._shutdown_requested:
            return None

        try:
            outcome = self.driver.run(spec, cancel_event=self._cancel_event)
            if outcome.status == OutcomeStatus.FAILED and not self._grace_expired():
                outcome = self.failed_mover.move(spec, outcome)
        except Exception as e:
            self.logger.exception(f"Unexpected error while processing {spec.source.path}")
            outcome = JobOutcome.failed(spec, FailureReason.INTERNAL_ERROR, f"{type(e).__name__}: {e}")

        self.event_bus.publish(JobFinished(outcome=outcome))
        return outcome
