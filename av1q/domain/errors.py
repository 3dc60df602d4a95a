"""Exception taxonomy for av1q.

Batch-fatal errors (ConfigurationError and its DiscoveryError subclass) abort
before any job is scheduled. Probe errors are raised by the external tool
adapters and are converted into JobOutcomes by the driver; they never escape a
worker.
"""

from pathlib import Path
from typing import Optional


class Av1qError(Exception):
    """Base class for all av1q errors."""


class ConfigurationError(Av1qError):
    """Invalid configuration or batch construction (bad target, output collision)."""


class DiscoveryError(ConfigurationError):
    """The discovery root is missing or unreadable."""


class ProbeError(Av1qError):
    """An external tool invocation failed during a probe."""

    def __init__(self, message: str, returncode: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class EncoderError(ProbeError):
    """Encoder exited non-zero or did not produce a usable output file."""


class ScorerError(ProbeError):
    """Scorer exited non-zero or did not report a parseable score."""


class ProbeCancelled(Av1qError):
    """The external process was terminated because cancellation was requested."""

    def __init__(self, path: Optional[Path] = None):
        super().__init__(f"Cancelled: {path}" if path else "Cancelled")
        self.path = path
