"""Batch successive accept/reject (SAR) top-k identification.

A fixed-budget strategy in the spirit of Bubeck, Wang & Viswanathan (2013)
and the batched variant of Jun et al. (2016). The pool is processed in
rounds; every round splits a share of the budget still left equally across
the still-active candidates and then either

- **accepts** the empirical leader, when its lead over the first outsider is
  larger than the spread between the last insider and the worst candidate, or
- **rejects** the empirically worst ``elimination_fraction`` of the active
  candidates (at least one, never dropping below the picks still needed).

A run spends exactly its total budget ``B``: whatever the rounds leave over
is drawn for the returned candidates once the decisions are made. ``B``
grows as ``log(K / delta)``, so a looser ``delta`` never draws more samples.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from anchorx.candidate import AnchorCandidate
from anchorx.execution.sampling import SamplingSession
from anchorx.exploration.base import (
    BestCandidateIdentifier,
    RunTracker,
    SamplingBudget,
    rank_by_precision,
    sample_round,
)

logger = logging.getLogger(__name__)

__all__ = ["BatchSAR"]


class BatchSAR(BestCandidateIdentifier):
    """Batch successive accept/reject strategy.

    Parameters:
        batch_size: Scales the total budget (``batch_size`` pulls per
            candidate per unit of ``log(K / delta)``).
        elimination_fraction: Share of active candidates rejected per round.
        budget: Sample/time limits of one run.
    """

    name = "BatchSAR"

    def __init__(
        self,
        *,
        batch_size: int = 100,
        elimination_fraction: float = 0.5,
        budget: Optional[SamplingBudget] = None,
    ) -> None:
        super().__init__(batch_size=batch_size, budget=budget)
        if not 0.0 < elimination_fraction < 1.0:
            raise ValueError(
                f"elimination_fraction must lie in (0, 1), got {elimination_fraction}"
            )
        self.elimination_fraction = elimination_fraction

    def total_budget(self, n_candidates: int, delta: float) -> int:
        """Samples the run plans to spend across all rounds."""
        scale = max(1, math.ceil(math.log(n_candidates / delta)))
        return self.batch_size * n_candidates * scale

    def planned_rounds(self, n_candidates: int, k: int) -> int:
        """Rounds needed to shrink *n_candidates* to *k* by rejections alone."""
        shrink = -math.log(1.0 - self.elimination_fraction)
        return max(1, math.ceil(math.log(n_candidates / k) / shrink))

    def _explore(
        self,
        candidates: list[AnchorCandidate],
        session: SamplingSession,
        delta: float,
        k: int,
        tracker: RunTracker,
    ) -> tuple[list[AnchorCandidate], bool, int]:
        budget_left = self.total_budget(len(candidates), delta)

        active = list(candidates)
        accepted: list[AnchorCandidate] = []
        remaining = k
        rounds = 0

        while remaining > 0 and len(active) > remaining:
            if tracker.exhausted():
                return accepted + rank_by_precision(active)[:remaining], False, rounds

            # One share is held back for accept rounds and the final refinement.
            shares = self.planned_rounds(len(active), remaining) + 1
            per_candidate = (budget_left // shares) // len(active)
            if per_candidate == 0 and budget_left >= len(active):
                per_candidate = 1
            if per_candidate > 0:
                sample_round(session, {c: per_candidate for c in active}, tracker)
                budget_left -= per_candidate * len(active)
            rounds += 1

            ranked = rank_by_precision(active)
            precisions = [c.precision for c in ranked]
            accept_gap = precisions[0] - precisions[remaining]
            reject_gap = precisions[remaining - 1] - precisions[-1]

            if accept_gap > reject_gap:
                accepted.append(ranked[0])
                active = ranked[1:]
                remaining -= 1
                logger.debug("Round %d: accepted %s", rounds, sorted(ranked[0].canonical_features))
            else:
                n_reject = max(1, math.floor(self.elimination_fraction * len(ranked)))
                n_reject = min(n_reject, len(ranked) - remaining)
                active = ranked[: len(ranked) - n_reject]
                logger.debug(
                    "Round %d: rejected %d, %d still active", rounds, n_reject, len(active)
                )

        chosen = accepted + rank_by_precision(active)[:remaining]
        if tracker.exhausted():
            return chosen, False, rounds
        self._refine(chosen, budget_left, session, tracker)
        return chosen, True, rounds

    @staticmethod
    def _refine(
        chosen: list[AnchorCandidate],
        budget_left: int,
        session: SamplingSession,
        tracker: RunTracker,
    ) -> None:
        """Spend what is left of the total budget on the returned candidates.

        The decisions are final at this point; the extra samples only sharpen
        the precision estimates the caller checks against its threshold.
        """
        if budget_left <= 0:
            return
        per_candidate, extra = divmod(budget_left, len(chosen))
        requests = {
            c: per_candidate + (1 if i < extra else 0) for i, c in enumerate(chosen)
        }
        sample_round(session, {c: n for c, n in requests.items() if n > 0}, tracker)
