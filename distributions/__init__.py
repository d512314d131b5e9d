"""
Distributions package — correlation structure and uncertainty sampling.

  1. correlation.py — build the bucket correlation matrix, Cholesky with fallback
  2. sampler.py     — Gaussian-copula uniforms and triangular multipliers
"""

from .correlation import (
    build_correlation_matrix,
    cholesky_factor,
    constant_correlation_matrix,
)
from .sampler import (
    CorrelatedUniformSampler,
    ramp_factors,
    sample_triangular,
    triangular_multipliers,
)

__all__ = [
    "build_correlation_matrix",
    "cholesky_factor",
    "constant_correlation_matrix",
    "CorrelatedUniformSampler",
    "ramp_factors",
    "sample_triangular",
    "triangular_multipliers",
]
