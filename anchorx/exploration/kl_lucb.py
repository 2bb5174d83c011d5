"""KL-LUCB: pure-exploration top-k identification with KL confidence bounds.

Every round the strategy looks at the k empirically best candidates (``J``)
and the rest, computes KL lower bounds for ``J`` and KL upper bounds for the
rest, and samples the two candidates whose bounds overlap the most: the
weakest member of ``J`` and the strongest outsider. It stops once the
outsider's upper bound exceeds the weakest lower bound by at most
``epsilon``.

The pair to pull is chosen with bounds at the fixed :data:`SELECTION_DELTA`;
only the stopping test uses the caller's ``delta``. For a fixed random
stream the pulls are therefore identical for every ``delta``, and a looser
``delta`` can only stop earlier. See :mod:`anchorx.exploration.bounds` for
the bound formulas.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from anchorx.candidate import AnchorCandidate
from anchorx.execution.sampling import SamplingSession
from anchorx.exploration.base import (
    BestCandidateIdentifier,
    RunTracker,
    SamplingBudget,
    sample_round,
)
from anchorx.exploration.bounds import compute_beta, confidence_bounds

logger = logging.getLogger(__name__)

__all__ = ["KLLUCB", "SELECTION_DELTA"]

#: Confidence level of the bounds that choose which candidates to pull.
SELECTION_DELTA: float = 0.1


class KLLUCB(BestCandidateIdentifier):
    """KL-LUCB strategy (Kaufmann & Kalyanakrishnan, 2013).

    Parameters:
        batch_size: Samples per pull of one candidate.
        epsilon: Tolerated overlap between the bounds at stopping time.
            ``0`` requires the weakest selected lower bound to reach the
            strongest outsider's upper bound.
        budget: Sample/time limits of one run.
    """

    name = "KL-LUCB"

    def __init__(
        self,
        *,
        batch_size: int = 100,
        epsilon: float = 0.2,
        budget: Optional[SamplingBudget] = None,
    ) -> None:
        super().__init__(batch_size=batch_size, budget=budget)
        if epsilon < 0:
            raise ValueError(f"epsilon must not be negative, got {epsilon}")
        self.epsilon = epsilon

    def _explore(
        self,
        candidates: list[AnchorCandidate],
        session: SamplingSession,
        delta: float,
        k: int,
        tracker: RunTracker,
    ) -> tuple[list[AnchorCandidate], bool, int]:
        sample_round(session, {c: self.batch_size for c in candidates}, tracker)

        t = 1
        rounds = 0
        while True:
            ranked, ut, lt, gap = self._ambiguous_pair(candidates, delta, k, t)
            chosen = [candidates[i] for i in ranked[:k]]
            if gap <= self.epsilon:
                return chosen, True, rounds
            if tracker.exhausted():
                return chosen, False, rounds

            logger.debug(
                "Round %d: sampling %s and %s (bound gap %.4f)",
                t, sorted(candidates[ut].canonical_features),
                sorted(candidates[lt].canonical_features), gap,
            )
            sample_round(
                session,
                {candidates[ut]: self.batch_size, candidates[lt]: self.batch_size},
                tracker,
            )
            t += 1
            rounds += 1

    @staticmethod
    def _ambiguous_pair(
        candidates: list[AnchorCandidate],
        delta: float,
        k: int,
        t: int,
    ) -> tuple[list[int], int, int, float]:
        """Find the outsider and the selected candidate whose bounds overlap most.

        ``ut`` and ``lt`` are chosen with bounds at :data:`SELECTION_DELTA`, so
        the sequence of pulls is the same for every ``delta``. The returned gap
        uses the bounds at ``delta``: the largest outsider upper bound minus
        the smallest selected lower bound.

        Returns:
            ``(ranked, ut, lt, gap)``: candidate indices best first, the index
            of the outsider to sample, the index of the selected candidate to
            sample, and the stopping gap.
        """
        snapshots = [c.state.snapshot() for c in candidates]
        samples = np.array([s.samples for s in snapshots], dtype=float)
        positives = np.array([s.positives for s in snapshots], dtype=float)
        means = np.divide(positives, samples, out=np.zeros_like(positives), where=samples > 0)

        ranked = sorted(
            range(len(candidates)),
            key=lambda i: (samples[i] > 0, means[i]),
            reverse=True,
        )
        selected = np.array(ranked[:k])
        outsiders = np.array(ranked[k:])

        beta = compute_beta(len(candidates), t, SELECTION_DELTA)
        lower, upper = confidence_bounds(means, samples, beta)
        ut = int(outsiders[np.argmax(upper[outsiders])])
        lt = int(selected[np.argmin(lower[selected])])

        if delta != SELECTION_DELTA:
            beta = compute_beta(len(candidates), t, delta)
            lower, upper = confidence_bounds(means, samples, beta)
        gap = float(np.max(upper[outsiders]) - np.min(lower[selected]))
        return ranked, ut, lt, gap
