import logging
import queue
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from rich.console import Console
from av1q.domain.events import JobFinished
from av1q.domain.models import (
    BatchState, BatchSummary, FailedSource, JobOutcome, OutcomeStatus,
)
from av1q.infrastructure.event_bus import EventBus
from av1q.infrastructure.state_store import StateStore

_STOP = object()


class ProgressTracker:
    """Single writer of BatchState.

    Workers never touch the state: JobFinished events (published on worker
    threads) are only put on a queue, and one writer thread applies them in
    arrival order, prints a progress line and updates the summary counters.
    close() drains the queue and saves the state atomically.

    Skipped outcomes are counted but leave the stored Succeeded entry intact,
    so the next run skips the file again.
    """

    def __init__(
        self,
        store: StateStore,
        event_bus: Optional[EventBus] = None,
        console: Optional[Console] = None,
        run_started: Optional[datetime] = None,
    ):
        self.store = store
        self.console = console or Console()
        self.run_started = run_started or datetime.now(timezone.utc)
        self.state: BatchState = store.load()
        self.summary = BatchSummary()
        self.expected_total = 0
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._accepting = True
        self._submit_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)
        if event_bus is not None:
            event_bus.subscribe(JobFinished, self._on_job_finished)

    def is_satisfied(self, source: Path, output_path: Path) -> bool:
        return self.state.is_satisfied(source, output_path)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="progress-tracker", daemon=True)
        self._thread.start()

    def _on_job_finished(self, event: JobFinished):
        self.submit(event.outcome)

    def submit(self, outcome: JobOutcome):
        """Hands an outcome to the writer thread. Safe to call from any thread.

        Outcomes arriving after close() (workers abandoned past the interrupt
        grace period) are logged and dropped; the state is already saved.
        """
        with self._submit_lock:
            if self._accepting:
                self._queue.put(outcome)
                return
        self.logger.warning(f"OUTCOME_NOT_RECORDED: {outcome.source} finished after the batch was closed")

    def _run(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            try:
                self._apply(item)
            except Exception:
                self.logger.exception(f"Failed to record outcome for {item.source}")

    def _apply(self, outcome: JobOutcome):
        if outcome.status == OutcomeStatus.SUCCEEDED:
            self.summary.succeeded += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            self.summary.skipped += 1
        else:
            self.summary.failed += 1
            self.summary.failures.append(
                FailedSource(source=outcome.source, reason=outcome.reason, message=outcome.message)
            )

        if outcome.status != OutcomeStatus.SKIPPED:
            self.state.record(outcome, self.run_started)

        line = self.format_line(outcome)
        self.logger.info(f"OUTCOME: {line}")
        self.console.print(line, markup=False, highlight=False)

    def format_line(self, outcome: JobOutcome) -> str:
        done = self.summary.total
        total = max(self.expected_total, done)
        prefix = f"[{done}/{total}]"
        name = outcome.source.name
        if outcome.status == OutcomeStatus.SUCCEEDED:
            return (
                f"{prefix} OK    {name}: score {outcome.score:.2f} at cq {outcome.quality_param} "
                f"({outcome.iterations} probes) -> {outcome.output_path}"
            )
        if outcome.status == OutcomeStatus.SKIPPED:
            return f"{prefix} SKIP  {name}: {outcome.message}"
        moved = f" (moved to {outcome.moved_to})" if outcome.moved_to else ""
        return f"{prefix} FAIL  {name}: {outcome.reason.value}: {outcome.message}{moved}"

    def close(self) -> BatchSummary:
        """Drains pending outcomes, persists the state and returns the summary."""
        if self._closed:
            return self.summary
        with self._submit_lock:
            self._accepting = False
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join()
        else:
            # Never started: apply anything queued on the caller's thread
            while not self._queue.empty():
                item = self._queue.get()
                if item is not _STOP:
                    self._apply(item)
        self.flush()
        self._closed = True
        return self.summary

    def flush(self):
        self.store.save(self.state)
