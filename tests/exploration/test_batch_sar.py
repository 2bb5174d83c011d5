"""Tests for the batch successive accept/reject strategy."""

from __future__ import annotations

import pytest

from anchorx.candidate import AnchorCandidate
from anchorx.exploration import BatchSAR, IdentificationError, SamplingBudget
from anchorx.execution.sampling import PerturbationSizeError

RATES = {
    frozenset({0}): 0.2,
    frozenset({1}): 0.4,
    frozenset({2}): 0.6,
    frozenset({3}): 0.95,
}


def _pool(n: int) -> list[AnchorCandidate]:
    return [AnchorCandidate([i]) for i in range(n)]


class TestBudgetPlanning:
    def test_total_budget_shrinks_with_looser_delta(self):
        sar = BatchSAR(batch_size=10)
        assert sar.total_budget(8, 0.3) <= sar.total_budget(8, 0.1) <= sar.total_budget(8, 0.01)

    def test_planned_rounds(self):
        """Halving eight candidates down to two takes two rounds."""
        assert BatchSAR(elimination_fraction=0.5).planned_rounds(8, 2) == 2
        assert BatchSAR(elimination_fraction=0.5).planned_rounds(3, 3) == 1

    @pytest.mark.parametrize("fraction", [0.0, 1.0, 1.5])
    def test_invalid_fraction_rejected(self, fraction):
        with pytest.raises(ValueError):
            BatchSAR(elimination_fraction=fraction)


class TestIdentification:
    def test_finds_best_candidate(self, make_service, bernoulli_provider):
        candidates = _pool(4)
        service = make_service(bernoulli_provider(RATES, seed=7))

        result = BatchSAR(batch_size=20).identify(candidates, service, 0.1, 1, label=1)

        assert result.certified
        assert len(result) == 1
        assert result[0] is candidates[3]

    def test_returns_exactly_k(self, make_service, bernoulli_provider):
        candidates = _pool(4)
        service = make_service(bernoulli_provider(RATES, seed=9))

        result = BatchSAR(batch_size=50).identify(candidates, service, 0.1, 2, label=1)

        assert len(result) == 2
        assert {c.canonical_features for c in result} == {frozenset({3}), frozenset({2})}

    def test_equal_candidates_are_rejected_in_halves(self, make_service, pattern_provider):
        """With no empirical gap every round rejects the worst half."""
        candidates = _pool(8)
        service = make_service(pattern_provider())

        result = BatchSAR(batch_size=10).identify(candidates, service, 0.1, 2, label=1)

        assert result.certified
        assert result.rounds == 2
        assert len(result) == 2
        # 8 x 16 in round one, 4 x 34 in round two, 2 x 68 refining the picks
        assert result.samples_drawn == 400

    def test_same_stream_same_result(self, make_service, bernoulli_provider):
        def run():
            candidates = _pool(4)
            service = make_service(bernoulli_provider(RATES, seed=13))
            result = BatchSAR(batch_size=10).identify(candidates, service, 0.1, 1, label=1)
            return [c.canonical_features for c in result], [c.samples_taken for c in candidates]

        assert run() == run()

    def test_looser_delta_never_samples_more(self, make_service, pattern_provider):
        drawn = []
        for delta in (0.01, 0.1, 0.3):
            service = make_service(pattern_provider())
            result = BatchSAR(batch_size=10).identify(_pool(8), service, delta, 2, label=1)
            drawn.append(result.samples_drawn)
        assert drawn[0] >= drawn[1] >= drawn[2]

    @pytest.mark.parametrize("seed", [2, 3])
    def test_distinct_rates_draw_exactly_the_planned_budget(self, make_service, bernoulli_provider, seed):
        """Accept rounds do not add to the total; a looser delta draws fewer samples."""
        rates = {frozenset({i}): 0.1 + 0.09 * i for i in range(10)}
        sar = BatchSAR(batch_size=10)
        drawn = []
        for delta in (0.01, 0.1, 0.5):
            service = make_service(bernoulli_provider(rates, seed=seed))
            result = sar.identify(_pool(10), service, delta, 5, label=1)
            assert result.certified
            assert len(result) == 5
            drawn.append(result.samples_drawn)

        assert drawn == [sar.total_budget(10, d) for d in (0.01, 0.1, 0.5)]
        assert drawn == [700, 500, 300]

    def test_leftover_budget_refines_returned_candidates(self, make_service, bernoulli_provider):
        candidates = _pool(4)
        service = make_service(bernoulli_provider(RATES, seed=7))

        result = BatchSAR(batch_size=20).identify(candidates, service, 0.1, 1, label=1)

        assert result.samples_drawn == 320
        assert result[0].samples_taken > max(
            c.samples_taken for c in candidates if c is not result[0]
        )


class TestBudgetAndFailure:
    def test_budget_returns_best_effort(self, make_service, pattern_provider):
        identifier = BatchSAR(batch_size=10, budget=SamplingBudget(max_samples=50))

        result = identifier.identify(_pool(8), make_service(pattern_provider()), 0.1, 2, label=1)

        assert result.budget_exhausted
        assert not result.certified
        assert result.rounds == 1
        assert len(result) == 2
        assert result.samples_drawn <= 50

    def test_size_mismatch_is_fatal(self, make_service, short_provider):
        candidates = _pool(4)
        with pytest.raises(IdentificationError) as info:
            BatchSAR(batch_size=10).identify(candidates, make_service(short_provider), 0.1, 1, label=1)
        assert isinstance(info.value.__cause__, PerturbationSizeError)
        assert all(c.samples_taken == 0 for c in candidates)
