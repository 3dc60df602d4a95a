"""Capability protocols for the external encoder and scorer.

The quality driver depends only on these two narrow interfaces, so its search
logic runs unchanged against the ffmpeg-backed adapters or against test stubs.
"""

import threading
from pathlib import Path
from typing import Optional, Protocol
from av1q.domain.models import EncoderPreset


class Encoder(Protocol):
    """Produces one candidate encode per call."""

    def encode(
        self,
        source: Path,
        output: Path,
        quality_param: int,
        preset: EncoderPreset,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Encode `source` into `output` at the given quality parameter.

        Raises:
            EncoderError: non-zero exit or missing/invalid output.
            ProbeCancelled: the cancellation token was set mid-encode.
        """
        ...


class Scorer(Protocol):
    """Measures perceptual quality of a candidate against its reference."""

    def score(
        self,
        reference: Path,
        candidate: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> float:
        """Return the measured score.

        Raises:
            ScorerError: non-zero exit or no parseable score.
            ProbeCancelled: the cancellation token was set mid-scoring.
        """
        ...
