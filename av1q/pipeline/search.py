"""Quality-parameter search for one job.

The encoder's quality parameter (CRF/CQ) is inverse to quality: raising it
lowers the measured score. The search keeps a bracket between the highest
parameter known to score at or above target (`lower`) and the lowest one known
to score below it (`upper`), bisecting when both exist and stepping by a fixed
amount otherwise.

The newest probe always wins: if it contradicts a bracket bound (noisy,
non-monotone scores), the contradicted bound is dropped. Convergence is judged
only by the distance of a measured score from the target.
"""

from typing import Optional, Set
from av1q.domain.models import SearchParams


class CqSearch:
    def __init__(self, target: float, params: SearchParams):
        self.target = target
        self.params = params
        self.lower: Optional[int] = None
        self.upper: Optional[int] = None
        self._tried: Set[int] = set()
        self._next: Optional[int] = self._clamp(params.initial_cq)

    def _clamp(self, value: int) -> int:
        return max(self.params.min_cq, min(self.params.max_cq, value))

    @property
    def next_value(self) -> Optional[int]:
        """Parameter for the next probe, or None once the search space is exhausted."""
        return self._next

    def within_tolerance(self, score: float) -> bool:
        return abs(score - self.target) <= self.params.tolerance

    def record(self, quality_param: int, score: float):
        self._tried.add(quality_param)
        if score < self.target:
            # Too low quality: every parameter >= this one is too high
            self.upper = quality_param
            if self.lower is not None and self.lower >= quality_param:
                self.lower = None
        else:
            self.lower = quality_param
            if self.upper is not None and self.upper <= quality_param:
                self.upper = None
        self._next = self._propose()

    def _propose(self) -> Optional[int]:
        if self.lower is not None and self.upper is not None:
            return self._bisect(self.lower, self.upper)
        elif self.upper is not None:
            candidate = self._clamp(self.upper - self.params.step)
        elif self.lower is not None:
            candidate = self._clamp(self.lower + self.params.step)
        else:
            return None
        if candidate in self._tried:
            return None
        return candidate

    def _bisect(self, lower: int, upper: int) -> Optional[int]:
        """Untried parameter strictly inside (lower, upper) closest to the midpoint."""
        mid = (lower + upper) // 2
        inside = [v for v in range(lower + 1, upper) if v not in self._tried]
        if not inside:
            return None
        return min(inside, key=lambda v: (abs(v - mid), v))
