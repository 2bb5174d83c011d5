"""Sampling substrate: service, sessions and their errors."""

from .sampling import PerturbationSizeError, SamplingService, SamplingSession

__all__ = ["PerturbationSizeError", "SamplingService", "SamplingSession"]
