"""Tabular perturbation provider and coverage statistic."""

from .perturbation import TabularPerturbation, coverage_of

__all__ = ["TabularPerturbation", "coverage_of"]
