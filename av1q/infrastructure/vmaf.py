import logging
import re
import threading
import time
from pathlib import Path
from typing import List, Optional
from av1q.config.models import ScorerConfig
from av1q.domain.errors import ScorerError
from av1q.infrastructure.process import run_process

VMAF_SCORE_RE = re.compile(r"VMAF score\s*[:=]\s*([-+]?\d+(?:\.\d+)?)")


def parse_vmaf_score(output: str) -> Optional[float]:
    """Extracts the pooled score from ffmpeg libvmaf output (last match wins)."""
    matches = VMAF_SCORE_RE.findall(output)
    if not matches:
        return None
    return float(matches[-1])


class VmafScorer:
    """Scores a candidate against its reference with ffmpeg's libvmaf filter."""

    def __init__(self, config: Optional[ScorerConfig] = None, debug: bool = False):
        self.config = config or ScorerConfig()
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _build_command(self, reference: Path, candidate: Path) -> List[str]:
        opts = []
        if self.config.n_threads > 0:
            opts.append(f"n_threads={self.config.n_threads}")
        if self.config.subsample > 1:
            opts.append(f"n_subsample={self.config.subsample}")
        if self.config.model:
            opts.append(f"model={self.config.model}")
        opt_str = f"={':'.join(opts)}" if opts else ""

        return [
            "ffmpeg", "-hide_banner", "-nostdin", "-loglevel", "info",
            "-i", str(candidate),   # distorted first
            "-i", str(reference),   # reference second
            "-lavfi", f"[0:v][1:v]libvmaf{opt_str}",
            "-f", "null", "-",
        ]

    def score(self, reference: Path, candidate: Path, cancel_event: Optional[threading.Event] = None) -> float:
        start_time = time.monotonic()
        cmd = self._build_command(reference, candidate)
        self.logger.debug(f"SCORER_CMD: {' '.join(cmd)}")

        try:
            returncode, out = run_process(cmd, cancel_event=cancel_event)
        except OSError as e:
            raise ScorerError(f"ffmpeg could not be executed: {e}") from e

        if returncode != 0:
            raise ScorerError(f"libvmaf exited with code {returncode}", returncode=returncode, output=out)

        score = parse_vmaf_score(out)
        if score is None:
            raise ScorerError("No VMAF score found in scorer output", returncode=returncode, output=out)
        if not (self.config.score_min <= score <= self.config.score_max):
            raise ScorerError(
                f"VMAF score {score} outside [{self.config.score_min}, {self.config.score_max}]",
                returncode=returncode,
                output=out,
            )

        if self.debug:
            self.logger.info(f"SCORER_END: {candidate.name} score={score:.2f} elapsed={time.monotonic() - start_time:.2f}s")
        return score
