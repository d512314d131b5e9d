"""
Uncertainty sampler — correlated uniforms and triangular multipliers.

Method (Gaussian copula):
  1. Draw independent standard normals, one per entity
  2. Map them through the Cholesky factor of the correlation matrix
  3. Push each correlated normal through the standard-normal CDF -> uniform(0,1)
  4. Turn each uniform into a multiplier with the triangular inverse CDF

If the matrix is not positive-definite, step 2 is skipped (independent draws)
and `cholesky_success` is False so the run can report it.

Multipliers:
  - the spread around 1.0 is scaled by the global volatility factor BEFORE sampling
  - the ramp (1 + ramp_pct * m / (horizon-1)) is applied AFTER sampling
  - everything is clamped at 0 (demand never goes negative)
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy.stats import norm

from core.model import UncertaintyParam

from .correlation import cholesky_factor, constant_correlation_matrix

ArrayLike = Union[float, np.ndarray]


def sample_triangular(u: ArrayLike, low: ArrayLike, mode: ArrayLike, high: ArrayLike) -> np.ndarray:
    """
    Inverse-CDF sample of a triangular(low, mode, high) distribution.
    Vectorised over any broadcastable inputs; zero-width distributions return the mode.
    """
    u = np.asarray(u, dtype=float)
    low = np.asarray(low, dtype=float)
    mode = np.asarray(mode, dtype=float)
    high = np.asarray(high, dtype=float)

    width = high - low
    degenerate = width <= 0.0
    safe_width = np.where(degenerate, 1.0, width)
    c = (mode - low) / safe_width

    left = low + np.sqrt(np.maximum(u * safe_width * (mode - low), 0.0))
    right = high - np.sqrt(np.maximum((1.0 - u) * safe_width * (high - mode), 0.0))
    out = np.where(u < c, left, right)
    return np.where(degenerate, mode, out)


def ramp_factors(ramp_pct: float, horizon: int) -> np.ndarray:
    """Linear ramp per month: 1 + ramp_pct * m / (horizon - 1)."""
    if horizon <= 1:
        return np.ones(max(horizon, 0), dtype=float)
    return 1.0 + float(ramp_pct) * (np.arange(horizon, dtype=float) / (horizon - 1))


def triangular_multipliers(
    u: np.ndarray,
    param: UncertaintyParam,
    *,
    volatility: float,
) -> np.ndarray:
    """
    Multipliers for one entity across the horizon.

    u : shape (horizon,) uniforms, one per month
    """
    scaled = param.scaled(volatility)
    mult = sample_triangular(u, scaled.low, scaled.mode, scaled.high)
    mult = mult * ramp_factors(param.ramp_pct, len(u))
    return np.maximum(mult, 0.0)


class CorrelatedUniformSampler:
    """
    Produces uniform(0,1) draws for n entities with a target correlation.

    Usage:
        sampler = CorrelatedUniformSampler.constant(n=4, rho=0.3)
        u = sampler.draw(rng, size=24)   # (24, 4): one row per month
        sampler.cholesky_success         # False -> draws were independent
    """

    def __init__(self, corr_matrix: np.ndarray):
        corr_matrix = np.asarray(corr_matrix, dtype=float)
        self.n_entities = corr_matrix.shape[0]
        self.corr_matrix = corr_matrix
        self.factor = cholesky_factor(corr_matrix)

    @classmethod
    def constant(cls, n: int, rho: float) -> "CorrelatedUniformSampler":
        return cls(constant_correlation_matrix(n, rho))

    @property
    def cholesky_success(self) -> bool:
        return self.factor is not None

    def draw(self, rng: np.random.Generator, size: int) -> np.ndarray:
        """Return `size` rows of correlated uniforms, shape (size, n_entities)."""
        z = rng.standard_normal((size, self.n_entities))
        if self.factor is not None:
            z = z @ self.factor.T
        return norm.cdf(z)
