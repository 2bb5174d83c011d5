"""Contract shared by all best-candidate identification strategies.

Formally, the returned candidates should satisfy, with high probability,

    P(prec(A) >= tau) >= 1 - delta

which is usually cast as a pure-exploration multi-armed bandit problem. The
strategies do not enforce the precision threshold ``tau`` themselves; the
calling explanation procedure checks it afterwards and may re-sample or
reject candidates.

:class:`BestCandidateIdentifier` implements everything the strategies share
(argument validation, the session lifecycle, budget tracking, rollback on
failure); subclasses implement :meth:`BestCandidateIdentifier._explore`.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence

from anchorx.candidate import AnchorCandidate, EvaluationSnapshot
from anchorx.config import Settings, get_settings
from anchorx.execution.sampling import SamplingService, SamplingSession

logger = logging.getLogger(__name__)

__all__ = [
    "BestCandidateIdentifier",
    "IdentificationError",
    "IdentificationResult",
    "RunTracker",
    "SamplingBudget",
    "build_identifier",
    "rank_by_precision",
    "sample_round",
]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class IdentificationError(Exception):
    """Raised when a collaborator failed during an identification run.

    The original exception is chained as ``__cause__``. Statistics gathered by
    the failed run have been discarded.
    """


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SamplingBudget:
    """Upper limits for one identification run. ``None`` means unlimited."""

    max_samples: Optional[int] = None
    max_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_samples is not None and self.max_samples <= 0:
            raise ValueError("max_samples must be positive")
        if self.max_seconds is not None and self.max_seconds <= 0:
            raise ValueError("max_seconds must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SamplingBudget":
        return cls(max_samples=settings.max_samples, max_seconds=settings.max_seconds)


@dataclass
class IdentificationResult:
    """Outcome of :meth:`BestCandidateIdentifier.identify`.

    Iterating, indexing and ``len`` operate on ``candidates``. Callers that
    need the confidence guarantee must check ``certified``: a result produced
    after the budget ran out is a best-effort estimate.
    """

    candidates: list[AnchorCandidate] = field(default_factory=list)
    certified: bool = True
    """True when the strategy's stopping rule was met."""

    budget_exhausted: bool = False
    rounds: int = 0
    samples_drawn: int = 0
    elapsed: float = 0.0
    """Wall-clock seconds of the run."""

    def __iter__(self) -> Iterator[AnchorCandidate]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    def __getitem__(self, index: int) -> AnchorCandidate:
        return self.candidates[index]


class RunTracker:
    """Tracks samples and time spent by one run against its budget."""

    def __init__(
        self,
        candidates: Sequence[AnchorCandidate],
        budget: SamplingBudget,
    ) -> None:
        self._candidates = candidates
        self._budget = budget
        self._start = time.monotonic()
        self.snapshots: list[EvaluationSnapshot] = [c.state.snapshot() for c in candidates]
        self._truncated = False

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start

    @property
    def samples_drawn(self) -> int:
        return sum(
            c.samples_taken - snap.samples
            for c, snap in zip(self._candidates, self.snapshots)
        )

    def exhausted(self) -> bool:
        if self._truncated:
            return True
        if self._budget.max_samples is not None and self.samples_drawn >= self._budget.max_samples:
            return True
        if self._budget.max_seconds is not None and self.elapsed >= self._budget.max_seconds:
            return True
        return False

    def fit(self, requests: dict[AnchorCandidate, int]) -> dict[AnchorCandidate, int]:
        """Shrink *requests* so that the round stays within the sample budget.

        A round that had to be shrunk is the last one of the run:
        :meth:`exhausted` reports true from then on.
        """
        if self._budget.max_samples is None:
            return requests
        left = self._budget.max_samples - self.samples_drawn
        if sum(requests.values()) <= left:
            return requests

        self._truncated = True
        if left <= 0:
            return {}
        share = left // len(requests)
        if share == 0:
            return {c: 1 for c in list(requests)[:left]}
        return {c: min(n, share) for c, n in requests.items()}

    def remaining_seconds(self) -> Optional[float]:
        """Seconds left for the round in progress, or ``None`` without a time budget."""
        if self._budget.max_seconds is None:
            return None
        return max(0.0, self._budget.max_seconds - self.elapsed)

    def rollback(self) -> None:
        for candidate, snapshot in zip(self._candidates, self.snapshots):
            candidate.state.restore(snapshot)


def rank_by_precision(candidates: Sequence[AnchorCandidate]) -> list[AnchorCandidate]:
    """Order candidates by empirical precision, best first.

    Stable: equal precisions keep their input order. Candidates without any
    sample rank after all sampled ones.
    """
    return sorted(
        candidates,
        key=lambda c: (c.samples_taken > 0, c.precision),
        reverse=True,
    )


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class BestCandidateIdentifier(ABC):
    """Identifies the ``k`` candidates most likely to have the highest precision.

    Parameters:
        batch_size: Samples drawn per candidate per pull.
        budget: Sample/time limits of one run.
    """

    #: Short strategy name used in log lines.
    name: str = "identifier"

    def __init__(
        self,
        *,
        batch_size: int = 100,
        budget: Optional[SamplingBudget] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.budget = budget or SamplingBudget()

    def identify(
        self,
        candidates: Sequence[AnchorCandidate],
        sampling_service: SamplingService,
        delta: float,
        k: int,
        *,
        label: Any,
    ) -> IdentificationResult:
        """Explore the candidates by repeatedly sampling them.

        Args:
            candidates: Candidates to inspect. Their states are updated.
            sampling_service: Service used to open a session for *label*.
            delta: Confidence parameter in (0, 1).
            k: Number of best candidates to return.
            label: The explained instance's label.

        Returns:
            An :class:`IdentificationResult` holding at most *k* candidates,
            best first.

        Raises:
            ValueError: If ``delta`` is outside (0, 1) or ``k < 1``.
            IdentificationError: If sampling failed. All statistics the run
                had accumulated are rolled back.
        """
        if not 0.0 < delta < 1.0:
            raise ValueError(f"delta must lie in (0, 1), got {delta}")
        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")

        candidates = list(candidates)
        if not candidates:
            return IdentificationResult()
        if k >= len(candidates):
            return IdentificationResult(candidates=rank_by_precision(candidates))

        tracker = RunTracker(candidates, self.budget)
        try:
            with sampling_service.create_session(label) as session:
                chosen, certified, rounds = self._explore(
                    candidates, session, delta, k, tracker
                )
        except Exception as exc:
            tracker.rollback()
            logger.error("%s run failed after %.0fms: %s", self.name, tracker.elapsed * 1000, exc)
            raise IdentificationError(f"{self.name} identification failed: {exc}") from exc

        result = IdentificationResult(
            candidates=chosen,
            certified=certified,
            budget_exhausted=not certified,
            rounds=rounds,
            samples_drawn=tracker.samples_drawn,
            elapsed=tracker.elapsed,
        )
        if certified:
            logger.info(
                "%s finished: %d candidates, %d rounds, %d samples, %dms",
                self.name, len(candidates), rounds, result.samples_drawn,
                round(result.elapsed * 1000),
            )
        else:
            logger.warning(
                "%s budget exhausted after %d rounds and %d samples; "
                "returning best-effort estimate",
                self.name, rounds, result.samples_drawn,
            )
        return result

    @abstractmethod
    def _explore(
        self,
        candidates: list[AnchorCandidate],
        session: SamplingSession,
        delta: float,
        k: int,
        tracker: RunTracker,
    ) -> tuple[list[AnchorCandidate], bool, int]:
        """Run the bandit.

        Returns:
            ``(chosen, certified, rounds)`` where *chosen* holds exactly *k*
            candidates best first and *certified* is false when the budget
            stopped the run.
        """


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_identifier(settings: Optional[Settings] = None) -> BestCandidateIdentifier:
    """Create the strategy named by ``settings.strategy``."""
    from anchorx.exploration.batch_sar import BatchSAR
    from anchorx.exploration.kl_lucb import KLLUCB

    settings = settings or get_settings()
    budget = SamplingBudget.from_settings(settings)
    if settings.strategy == "batch_sar":
        return BatchSAR(
            batch_size=settings.batch_size,
            elimination_fraction=settings.sar_elimination_fraction,
            budget=budget,
        )
    return KLLUCB(batch_size=settings.batch_size, epsilon=settings.epsilon, budget=budget)


def sample_round(
    session: SamplingSession,
    requests: dict[AnchorCandidate, int],
    tracker: RunTracker,
) -> None:
    """Issue one round of requests, bounded by the budget left."""
    requests = tracker.fit(requests)
    if requests:
        session.run(requests, timeout=tracker.remaining_seconds())
