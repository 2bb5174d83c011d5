"""Global explanation from a pool of local anchors."""

from .coverage_pick import CoveragePick, CoverageSelection, CoverageSummary

__all__ = ["CoveragePick", "CoverageSelection", "CoverageSummary"]
