"""Perturbation capability and its result container.

A perturbation provider creates variants of one reference instance while
keeping a given set of features fixed. How it does that is domain-specific
(tabular rows, text tokens, image superpixels); the sampling core only
relies on the :class:`PerturbationProvider` protocol below.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

import numpy as np

__all__ = ["PerturbationProvider", "PerturbationResult"]


class PerturbationResult:
    """Perturbed instances plus a per-feature change mask.

    Args:
        raw_result: The N perturbed instances, in order.
        feature_changed: Boolean array of shape ``(N, n_features)``; entry
            ``[i, f]`` is true when feature ``f`` of instance ``i`` differs
            from the original.

    Raises:
        ValueError: If both inputs do not describe the same number of
            perturbations.
    """

    __slots__ = ("raw_result", "feature_changed")

    def __init__(self, raw_result: Sequence[Any], feature_changed: Any) -> None:
        feature_changed = np.asarray(feature_changed, dtype=bool)
        if len(raw_result) != len(feature_changed):
            raise ValueError(
                f"Raw result holds {len(raw_result)} perturbations but "
                f"feature_changed holds {len(feature_changed)}"
            )
        self.raw_result = raw_result
        self.feature_changed = feature_changed

    def __len__(self) -> int:
        return len(self.raw_result)

    def __repr__(self) -> str:
        return f"PerturbationResult(n={len(self)})"


@runtime_checkable
class PerturbationProvider(Protocol):
    """Capability for disturbing one reference instance."""

    def create_for_instance(self, instance: Any) -> "PerturbationProvider":
        """Return a provider bound to *instance*.

        Stateless providers may return themselves.
        """
        ...

    def perturb(self, fixed_features: frozenset[int], count: int) -> PerturbationResult:
        """Create *count* perturbations keeping *fixed_features* unchanged.

        Must raise ``ValueError`` when ``count <= 0``.
        """
        ...
