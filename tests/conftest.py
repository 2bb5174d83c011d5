"""Shared fixtures: scripted perturbation providers, classifiers and services."""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

import numpy as np
import pytest

from anchorx.config import Settings
from anchorx.execution.sampling import SamplingService
from anchorx.perturbation import PerturbationResult

#: Label the scripted classifiers predict for a "positive" perturbation.
POSITIVE_LABEL = 1

#: Seven positives in every ten perturbations.
SEVENTY_PERCENT = (1, 1, 1, 1, 1, 1, 1, 0, 0, 0)


class PatternProvider:
    """Provider whose perturbations repeat a fixed 0/1 pattern.

    Combined with :func:`identity_classifier` every batch of ten yields
    exactly the pattern's share of positives, for every candidate alike.
    """

    def __init__(
        self,
        patterns: Optional[dict[frozenset, tuple]] = None,
        default: tuple = SEVENTY_PERCENT,
    ) -> None:
        self.patterns = patterns or {}
        self.default = default
        self.calls: list[tuple[frozenset, int]] = []
        self._lock = threading.Lock()

    def create_for_instance(self, instance: Any) -> "PatternProvider":
        return self

    def perturb(self, fixed_features: frozenset, count: int) -> PerturbationResult:
        if count <= 0:
            raise ValueError("count must be positive")
        with self._lock:
            self.calls.append((frozenset(fixed_features), count))
        pattern = self.patterns.get(frozenset(fixed_features), self.default)
        raw = np.resize(np.asarray(pattern), count)
        return PerturbationResult(raw, np.zeros((count, 1), dtype=bool))


class BernoulliProvider:
    """Provider drawing Bernoulli outcomes from a seeded generator."""

    def __init__(self, rates: dict[frozenset, float], seed: int = 0) -> None:
        self.rates = rates
        self._rng = np.random.default_rng(seed)

    def create_for_instance(self, instance: Any) -> "BernoulliProvider":
        return self

    def perturb(self, fixed_features: frozenset, count: int) -> PerturbationResult:
        if count <= 0:
            raise ValueError("count must be positive")
        rate = self.rates[frozenset(fixed_features)]
        raw = (self._rng.random(count) < rate).astype(int)
        return PerturbationResult(raw, np.zeros((count, 1), dtype=bool))


class ShortProvider:
    """Provider that always returns three perturbations, whatever was requested."""

    def create_for_instance(self, instance: Any) -> "ShortProvider":
        return self

    def perturb(self, fixed_features: frozenset, count: int) -> PerturbationResult:
        return PerturbationResult(np.ones(3, dtype=int), np.zeros((3, 1), dtype=bool))


def identity_classifier(instances: Any) -> np.ndarray:
    """Predicts each perturbed value as its own label."""
    return np.asarray(instances)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Return single-threaded settings with test-safe defaults."""
    return Settings(
        strategy="kl_lucb",
        delta=0.1,
        epsilon=0.1,
        batch_size=10,
        candidate_workers=1,
        sample_workers=1,
        model_parallelism=1,
        sampling_retries=0,
    )


@pytest.fixture
def pattern_provider() -> Callable[..., PatternProvider]:
    """Factory for :class:`PatternProvider`."""
    return PatternProvider


@pytest.fixture
def bernoulli_provider() -> Callable[..., BernoulliProvider]:
    """Factory for :class:`BernoulliProvider`."""
    return BernoulliProvider


@pytest.fixture
def short_provider() -> ShortProvider:
    return ShortProvider()


@pytest.fixture
def make_service(test_settings) -> Callable[..., SamplingService]:
    """Factory building a SamplingService around the identity classifier.

    Keyword arguments override fields of ``test_settings``.
    """

    def _make(provider, classifier=identity_classifier, **overrides) -> SamplingService:
        settings = test_settings.model_copy(update=overrides)
        return SamplingService(classifier, provider, settings=settings)

    return _make
