"""Pydantic-settings based configuration for anchor identification.

Values are read from ``ANCHORX_*`` environment variables or a ``.env`` file
and exposed as a typed :class:`Settings` object. Components take an optional
``Settings`` so tests can inject their own.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for sampling, identification and global picking.

    Attributes:
        strategy: Bandit strategy used by :func:`build_identifier`.
        delta: Confidence parameter; results are correct with
            probability at least ``1 - delta``.
        epsilon: KL-LUCB stopping tolerance between the bounds.
        batch_size: Samples drawn per candidate per pull.
        max_samples: Total sample budget for one identification run.
        max_seconds: Wall-clock budget for one identification run.
        candidate_workers: Threads sampling different candidates.
        sample_workers: Threads evaluating chunks of one batch.
        sample_chunk_size: Perturbations per chunk; ``None`` keeps a batch whole.
        model_parallelism: Maximum concurrent classifier calls.
        model_reentrant: ``False`` serializes classifier access.
        model_accepts_batches: Whether the classifier takes a batch.
        sampling_retries: Extra attempts for a failing collaborator call.
        retry_wait_seconds: Base of the exponential retry backoff.
        sar_elimination_fraction: Share of candidates rejected per SAR round.
        include_target_value: Stratify coverage picking by explained label.
    """

    # Identification
    strategy: Literal["kl_lucb", "batch_sar"] = "kl_lucb"
    delta: float = Field(0.1, gt=0.0, lt=1.0)
    epsilon: float = Field(0.2, ge=0.0)
    batch_size: int = Field(100, gt=0)
    max_samples: Optional[int] = Field(None, gt=0)
    max_seconds: Optional[float] = Field(None, gt=0.0)
    sar_elimination_fraction: float = Field(0.5, gt=0.0, lt=1.0)

    # Execution
    candidate_workers: int = Field(1, ge=1)
    sample_workers: int = Field(1, ge=1)
    sample_chunk_size: Optional[int] = Field(None, gt=0)
    model_parallelism: int = Field(1, ge=1)
    model_reentrant: bool = True
    model_accepts_batches: bool = True

    # Retry policy
    sampling_retries: int = Field(0, ge=0)
    retry_wait_seconds: float = Field(0.0, ge=0.0)

    # Global picking
    include_target_value: bool = False

    model_config = SettingsConfigDict(
        env_prefix="ANCHORX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Uses ``lru_cache`` so the .env file is read at most once per process.
    """
    return Settings()
