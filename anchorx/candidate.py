"""Candidate anchors, their running statistics, and finalized results.

Hierarchy:
  CandidateEvaluationState  -- thread-safe (samples, positives) counter
  EvaluationSnapshot        -- immutable copy of a state at one point
  AnchorCandidate           -- canonical feature set + evaluation state
  AnchorResult              -- frozen record of a finalized candidate
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable, NamedTuple, Optional

__all__ = [
    "AnchorCandidate",
    "AnchorResult",
    "CandidateEvaluationState",
    "EvaluationSnapshot",
]


class EvaluationSnapshot(NamedTuple):
    samples: int
    positives: int


class CandidateEvaluationState:
    """Running sample statistics of one candidate (the bandit's arm state).

    Both counters only grow while a run is in progress. Updates are taken
    under a lock so that concurrent sampling calls never lose increments.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples = 0
        self._positives = 0

    @property
    def samples(self) -> int:
        """Samples registered so far.

        Read together with :attr:`positives` this is not atomic; use
        :meth:`snapshot` when both counters must agree.
        """
        return self._samples

    @property
    def positives(self) -> int:
        """Matching samples registered so far; see :attr:`samples`."""
        return self._positives

    @property
    def precision(self) -> float:
        """Empirical precision; ``0.0`` before any sample was drawn."""
        samples, positives = self.snapshot()
        if samples == 0:
            return 0.0
        return positives / samples

    def register_samples(self, samples: int, positives: int) -> None:
        """Add one evaluated batch to the statistics.

        Raises:
            ValueError: If either count is negative or ``positives`` exceeds
                ``samples``.
        """
        if samples < 0 or positives < 0:
            raise ValueError("Sample counts must not be negative")
        if positives > samples:
            raise ValueError(
                f"Batch reports {positives} positives for only {samples} samples"
            )
        with self._lock:
            self._samples += samples
            self._positives += positives

    def snapshot(self) -> EvaluationSnapshot:
        """Both counters read under the lock, so ``positives <= samples`` holds."""
        with self._lock:
            return EvaluationSnapshot(self._samples, self._positives)

    def restore(self, snapshot: EvaluationSnapshot) -> None:
        """Reset the counters to *snapshot*.

        Only used to discard the samples of an identification run that failed,
        so that no caller sees statistics of an aborted run.
        """
        with self._lock:
            self._samples, self._positives = snapshot

    def __repr__(self) -> str:
        samples, positives = self.snapshot()
        return f"CandidateEvaluationState(samples={samples}, positives={positives})"


class AnchorCandidate:
    """A set of feature indices held fixed, plus its evaluation state.

    Args:
        features: Canonical feature indices. Must be non-empty and
            non-negative; duplicates collapse.
        parent: The candidate this one was extended from, if any.

    Raises:
        ValueError: On an empty or negative feature set.
    """

    def __init__(
        self,
        features: Iterable[int],
        parent: Optional["AnchorCandidate"] = None,
    ) -> None:
        canonical = frozenset(int(f) for f in features)
        if not canonical:
            raise ValueError("An anchor candidate needs at least one feature")
        if min(canonical) < 0:
            raise ValueError(f"Feature indices must be non-negative: {sorted(canonical)}")
        self.canonical_features: frozenset[int] = canonical
        self.parent = parent
        self.state = CandidateEvaluationState()
        self._coverage: Optional[float] = None

    # ------------------------------------------------------------------
    # Statistics shortcuts
    # ------------------------------------------------------------------

    @property
    def samples_taken(self) -> int:
        return self.state.samples

    @property
    def positive_samples(self) -> int:
        """Use ``state.snapshot()`` to read this together with :attr:`samples_taken`."""
        return self.state.positives

    @property
    def precision(self) -> float:
        return self.state.precision

    @property
    def coverage(self) -> Optional[float]:
        return self._coverage

    @coverage.setter
    def coverage(self, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"Coverage must lie in [0, 1], got {value}")
        self._coverage = float(value)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def extend(self, feature: int) -> "AnchorCandidate":
        """Return a child candidate fixing one more feature."""
        if feature in self.canonical_features:
            raise ValueError(f"Feature {feature} is already part of the candidate")
        return AnchorCandidate(self.canonical_features | {feature}, parent=self)

    def __repr__(self) -> str:
        return (
            f"AnchorCandidate(features={sorted(self.canonical_features)}, "
            f"precision={self.precision:.3f}, samples={self.samples_taken})"
        )


@dataclass(frozen=True)
class AnchorResult:
    """A finalized anchor for one explained instance.

    ``coverage`` is the fraction of a reference dataset for which the
    candidate's constraints hold.
    """

    instance: Any
    label: Any
    canonical_features: frozenset[int]
    precision: float
    coverage: float
    samples_taken: int = 0

    def __post_init__(self) -> None:
        if not self.canonical_features:
            raise ValueError("An anchor result needs at least one feature")
        if not 0.0 <= self.coverage <= 1.0:
            raise ValueError(f"Coverage must lie in [0, 1], got {self.coverage}")

    @classmethod
    def from_candidate(
        cls,
        candidate: AnchorCandidate,
        instance: Any,
        label: Any,
    ) -> "AnchorResult":
        """Freeze *candidate* into a result.

        Raises:
            ValueError: If the candidate's coverage has not been set.
        """
        if candidate.coverage is None:
            raise ValueError("Candidate coverage must be set before finalizing")
        samples, positives = candidate.state.snapshot()
        return cls(
            instance=instance,
            label=label,
            canonical_features=candidate.canonical_features,
            precision=positives / samples if samples else 0.0,
            coverage=candidate.coverage,
            samples_taken=samples,
        )
