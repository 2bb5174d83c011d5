"""Tabular perturbation by row resampling.

A perturbation is a row drawn from a reference dataset whose fixed features
are overwritten with the explained instance's values. The same reference
data also defines coverage: the share of rows that already agree with the
instance on every fixed feature.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

import numpy as np

from anchorx.perturbation import PerturbationResult

__all__ = ["TabularPerturbation", "coverage_of"]


class TabularPerturbation:
    """Perturbation provider for rows of a 2-D feature matrix.

    Parameters:
        reference: Reference rows, shape ``(n_rows, n_features)``.
        instance: Row to perturb; may be bound later via
            :meth:`create_for_instance`.
        seed: Seed or generator for the row sampling stream.
    """

    def __init__(
        self,
        reference: Any,
        *,
        instance: Optional[Any] = None,
        seed: Optional[int | np.random.Generator] = None,
    ) -> None:
        reference = np.asarray(reference)
        if reference.ndim != 2 or len(reference) == 0:
            raise ValueError("Reference data must be a non-empty 2-D array")
        self._reference = reference
        self._rng = np.random.default_rng(seed)
        self._instance: Optional[np.ndarray] = None
        if instance is not None:
            self._instance = self._check_instance(instance)

    @property
    def n_features(self) -> int:
        return self._reference.shape[1]

    @property
    def instance(self) -> Optional[np.ndarray]:
        return self._instance

    def create_for_instance(self, instance: Any) -> "TabularPerturbation":
        """Return a provider bound to *instance*, sharing the reference data.

        The new provider draws from a child stream of this provider's
        generator, so a seeded parent yields reproducible children.
        """
        return TabularPerturbation(
            self._reference,
            instance=instance,
            seed=self._rng.spawn(1)[0],
        )

    def perturb(self, fixed_features: Iterable[int], count: int) -> PerturbationResult:
        """Draw *count* reference rows and pin *fixed_features* to the instance.

        Raises:
            ValueError: If ``count <= 0`` or a feature index is out of range.
            RuntimeError: If no instance has been bound yet.
        """
        if count <= 0:
            raise ValueError(f"Perturbation count must be positive, got {count}")
        if self._instance is None:
            raise RuntimeError("No instance bound; call create_for_instance() first")

        fixed = sorted(fixed_features)
        if fixed and (fixed[0] < 0 or fixed[-1] >= self.n_features):
            raise ValueError(f"Feature indices {fixed} out of range for {self.n_features} features")

        rows = self._rng.integers(0, len(self._reference), size=count)
        samples = self._reference[rows].copy()
        if fixed:
            samples[:, fixed] = self._instance[fixed]
        return PerturbationResult(samples, samples != self._instance)

    def _check_instance(self, instance: Any) -> np.ndarray:
        instance = np.asarray(instance)
        if instance.shape != (self.n_features,):
            raise ValueError(
                f"Instance shape {instance.shape} does not match {self.n_features} features"
            )
        return instance


def coverage_of(reference: Any, instance: Any, features: Iterable[int]) -> float:
    """Fraction of reference rows equal to *instance* on every feature in *features*."""
    reference = np.asarray(reference)
    instance = np.asarray(instance)
    features = sorted(features)
    if len(reference) == 0:
        return 0.0
    if not features:
        return 1.0
    matches = np.all(reference[:, features] == instance[features], axis=1)
    return float(np.count_nonzero(matches)) / len(reference)
