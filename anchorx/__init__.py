"""anchorx: anchor explanations for opaque classifiers.

Local anchors are identified by a pure-exploration bandit over candidate
feature sets; a greedy coverage picker turns many local anchors into a
non-redundant global explanation.
"""

from .candidate import AnchorCandidate, AnchorResult, CandidateEvaluationState
from .config import Settings, get_settings
from .execution import PerturbationSizeError, SamplingService, SamplingSession
from .exploration import (
    BatchSAR,
    BestCandidateIdentifier,
    IdentificationError,
    IdentificationResult,
    KLLUCB,
    SamplingBudget,
    build_identifier,
)
from .global_explanation import CoveragePick, CoverageSelection, CoverageSummary
from .perturbation import PerturbationProvider, PerturbationResult

__all__ = [
    "AnchorCandidate",
    "AnchorResult",
    "BatchSAR",
    "BestCandidateIdentifier",
    "CandidateEvaluationState",
    "CoveragePick",
    "CoverageSelection",
    "CoverageSummary",
    "IdentificationError",
    "IdentificationResult",
    "KLLUCB",
    "PerturbationProvider",
    "PerturbationResult",
    "PerturbationSizeError",
    "SamplingBudget",
    "SamplingService",
    "SamplingSession",
    "Settings",
    "build_identifier",
    "get_settings",
]
