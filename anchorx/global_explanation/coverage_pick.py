"""Greedy global explainer maximizing additive coverage.

:class:`CoveragePick` turns a pool of finalized local anchors into a small
explanation set. It only returns results whose coverage is additive: once a
result is picked, every remaining result that constrains one of its
features to the same value is dropped, so no region of the input space is
counted twice.

Usage::

    picker = CoveragePick(include_target_value=True)
    selection = picker.pick(results, 5)
    for label, covered in selection.summary.per_label.items():
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from anchorx.candidate import AnchorResult
from anchorx.config import Settings, get_settings

logger = logging.getLogger(__name__)

__all__ = ["CoveragePick", "CoverageSelection", "CoverageSummary"]


class CoverageSummary(BaseModel):
    """Cumulative coverage of a selection.

    ``total`` is set when coverage is aggregated over all labels,
    ``per_label`` when the picker stratifies by explained label.
    """

    model_config = ConfigDict(frozen=True)

    count: int
    total: Optional[float] = None
    per_label: Optional[dict[Any, float]] = None


@dataclass
class CoverageSelection:
    """Picked results in pick order, plus their coverage summary."""

    results: list[AnchorResult] = field(default_factory=list)
    summary: CoverageSummary = field(default_factory=lambda: CoverageSummary(count=0, total=0.0))

    def __iter__(self) -> Iterator[AnchorResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, index: int) -> AnchorResult:
        return self.results[index]


class CoveragePick:
    """Greedy maximal-coverage picker.

    Parameters:
        include_target_value: When true, the explained label acts like one more
            feature value: results only exclude each other within the same
            label, and coverage is only additive (and reported) per label.
    """

    def __init__(self, include_target_value: bool = False) -> None:
        self.include_target_value = include_target_value

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CoveragePick":
        settings = settings or get_settings()
        return cls(include_target_value=settings.include_target_value)

    def pick(self, results: Sequence[AnchorResult], count: int) -> CoverageSelection:
        """Select up to *count* results with non-overlapping coverage.

        Each step takes the survivor with the strictly greatest coverage
        (first one on ties) and then drops every comparable survivor sharing a
        fixed feature value with it.

        Raises:
            ValueError: If *count* is negative.
        """
        if count < 0:
            raise ValueError(f"count must not be negative, got {count}")

        survivors = list(results)
        picked: list[AnchorResult] = []

        for _ in range(count):
            best_index = -1
            best_coverage = -1.0
            for index, current in enumerate(survivors):
                if current.coverage > best_coverage:
                    best_coverage = current.coverage
                    best_index = index
            if best_index < 0:
                break

            best = survivors.pop(best_index)
            picked.append(best)
            survivors = [r for r in survivors if not self._overlaps(best, r)]

        summary = self._summarize(picked)
        self._log_summary(summary)
        return CoverageSelection(results=picked, summary=summary)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _overlaps(self, best: AnchorResult, other: AnchorResult) -> bool:
        if self.include_target_value and best.label != other.label:
            return False
        shared = best.canonical_features & other.canonical_features
        return any(bool(other.instance[f] == best.instance[f]) for f in shared)

    def _summarize(self, picked: list[AnchorResult]) -> CoverageSummary:
        if not self.include_target_value:
            return CoverageSummary(count=len(picked), total=sum(r.coverage for r in picked))

        per_label: dict[Any, float] = {}
        for result in picked:
            per_label[result.label] = per_label.get(result.label, 0.0) + result.coverage
        return CoverageSummary(count=len(picked), per_label=per_label)

    @staticmethod
    def _log_summary(summary: CoverageSummary) -> None:
        if summary.per_label is not None:
            for label, covered in summary.per_label.items():
                logger.info(
                    "The returned %d results for label %r exclusively cover %.1f%% of the model's input",
                    summary.count, label, covered * 100,
                )
        else:
            logger.info(
                "The returned %d results exclusively cover %.1f%% of the model's input",
                summary.count, (summary.total or 0.0) * 100,
            )
