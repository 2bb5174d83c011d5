"""Best-candidate identification strategies."""

from .base import (
    BestCandidateIdentifier,
    IdentificationError,
    IdentificationResult,
    SamplingBudget,
    build_identifier,
)
from .batch_sar import BatchSAR
from .kl_lucb import KLLUCB

__all__ = [
    "BatchSAR",
    "BestCandidateIdentifier",
    "IdentificationError",
    "IdentificationResult",
    "KLLUCB",
    "SamplingBudget",
    "build_identifier",
]
