"""Tests for candidate statistics and finalized results."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from anchorx.candidate import (
    AnchorCandidate,
    AnchorResult,
    CandidateEvaluationState,
    EvaluationSnapshot,
)


class TestCandidateEvaluationState:
    def test_starts_empty(self):
        """A fresh state has no samples and precision 0."""
        state = CandidateEvaluationState()
        assert state.samples == 0
        assert state.positives == 0
        assert state.precision == 0.0

    def test_register_accumulates(self):
        """Batches add up and precision follows."""
        state = CandidateEvaluationState()
        state.register_samples(10, 7)
        state.register_samples(10, 9)
        assert state.snapshot() == EvaluationSnapshot(20, 16)
        assert state.precision == pytest.approx(0.8)

    def test_rejects_more_positives_than_samples(self):
        state = CandidateEvaluationState()
        with pytest.raises(ValueError):
            state.register_samples(3, 4)

    def test_rejects_negative_counts(self):
        state = CandidateEvaluationState()
        with pytest.raises(ValueError):
            state.register_samples(-1, 0)

    def test_restore_resets_to_snapshot(self):
        """restore() brings the counters back to an earlier snapshot."""
        state = CandidateEvaluationState()
        state.register_samples(5, 5)
        snap = state.snapshot()
        state.register_samples(100, 0)
        state.restore(snap)
        assert state.snapshot() == (5, 5)

    def test_concurrent_registration_loses_no_updates(self):
        """Eight threads registering 1000 batches each end with exact totals."""
        state = CandidateEvaluationState()
        observed: list[EvaluationSnapshot] = []

        def worker():
            for _ in range(1000):
                state.register_samples(2, 1)
                observed.append(state.snapshot())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert state.snapshot() == (16000, 8000)
        assert all(snap.positives <= snap.samples for snap in observed)

    def test_snapshot_never_tears_under_concurrent_writes(self):
        """A reader's snapshot always pairs counters from the same update."""
        state = CandidateEvaluationState()
        done = threading.Event()
        torn: list[EvaluationSnapshot] = []

        def writer():
            for _ in range(5000):
                state.register_samples(1, 1)

        def reader():
            while not done.is_set():
                snap = state.snapshot()
                if snap.samples != snap.positives:
                    torn.append(snap)

        writers = [threading.Thread(target=writer) for _ in range(4)]
        readers = [threading.Thread(target=reader) for _ in range(2)]
        for thread in readers + writers:
            thread.start()
        for thread in writers:
            thread.join()
        done.set()
        for thread in readers:
            thread.join()

        assert torn == []
        assert state.snapshot() == (20000, 20000)


class TestAnchorCandidate:
    def test_canonical_features_are_frozen(self):
        candidate = AnchorCandidate([2, 0, 2])
        assert candidate.canonical_features == frozenset({0, 2})

    def test_empty_features_rejected(self):
        with pytest.raises(ValueError):
            AnchorCandidate([])

    def test_negative_feature_rejected(self):
        with pytest.raises(ValueError):
            AnchorCandidate([0, -1])

    def test_extend_builds_child(self):
        """extend() adds one feature and links the parent."""
        parent = AnchorCandidate([0])
        child = parent.extend(3)
        assert child.canonical_features == frozenset({0, 3})
        assert child.parent is parent
        assert child.samples_taken == 0

    def test_extend_with_existing_feature_rejected(self):
        with pytest.raises(ValueError):
            AnchorCandidate([0]).extend(0)

    def test_coverage_must_be_a_fraction(self):
        candidate = AnchorCandidate([1])
        candidate.coverage = 0.25
        assert candidate.coverage == 0.25
        with pytest.raises(ValueError):
            candidate.coverage = 1.5


class TestAnchorResult:
    def test_from_candidate_copies_statistics(self):
        """from_candidate freezes precision, coverage and sample count."""
        candidate = AnchorCandidate([0, 1])
        candidate.state.register_samples(40, 30)
        candidate.coverage = 0.2
        instance = np.array([1, 2, 3])

        result = AnchorResult.from_candidate(candidate, instance, label=1)

        assert result.canonical_features == frozenset({0, 1})
        assert result.precision == pytest.approx(0.75)
        assert result.coverage == 0.2
        assert result.samples_taken == 40
        assert result.label == 1

    def test_from_candidate_requires_coverage(self):
        with pytest.raises(ValueError):
            AnchorResult.from_candidate(AnchorCandidate([0]), [1], label=0)

    def test_result_is_immutable(self):
        result = AnchorResult([1], 0, frozenset({0}), 1.0, 0.5)
        with pytest.raises(AttributeError):
            result.coverage = 0.9  # type: ignore[misc]
