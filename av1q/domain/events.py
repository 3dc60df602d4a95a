"""Domain events for the quality-targeted encode pipeline.

Events flow through the EventBus, decoupling the scheduler and the
quality driver from the progress tracker and the console.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List
from pydantic import BaseModel, Field
from .models import DiscoveryWarningEntry, JobOutcome, JobSpec, QualityProbe


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class DiscoveryStarted(Event):
    """Emitted when the discovery walk begins."""

    directory: Path


class DiscoveryFinished(Event):
    """Emitted after discovery and job construction completed."""

    files_found: int
    files_to_process: int = 0
    already_satisfied: int = 0
    warnings: List[DiscoveryWarningEntry] = Field(default_factory=list)


class JobStarted(Event):
    """Emitted by a worker before the first probe of a job."""

    spec: JobSpec


class ProbeCompleted(Event):
    """Emitted after each encode+score attempt, successful or not."""

    spec: JobSpec
    probe: QualityProbe


class JobFinished(Event):
    """Emitted once per job with its terminal outcome."""

    outcome: JobOutcome


class InterruptRequested(Event):
    """Operator abort: stop submitting and cancel in-flight jobs."""

    pass


class ProcessingFinished(Event):
    """Emitted when the scheduler has drained all in-flight jobs."""

    interrupted: bool = False
