"""
Correlation structure between engineering buckets.

WHY THIS MATTERS:
Without correlation, bucket overruns cancel out across buckets and the
simulated total looks far safer than reality. In practice a bad month is bad
for civil, MEP and finishing at the same time (same market, same site).

Sources for the matrix:
  1. A constant "correlation strength" applied to every pair (always available)
  2. Pairwise coefficients from the correlation table, overriding the constant
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def constant_correlation_matrix(n: int, rho: float) -> np.ndarray:
    """n x n matrix with 1.0 on the diagonal and rho everywhere else."""
    matrix = np.full((n, n), float(rho), dtype=float)
    np.fill_diagonal(matrix, 1.0)
    return matrix


def build_correlation_matrix(
    entity_ids: Sequence[str],
    pairs: Optional[Mapping[Tuple[str, str], float]] = None,
    *,
    default_rho: float = 0.0,
) -> np.ndarray:
    """
    Build a correlation matrix for `entity_ids`.

    Parameters
    ----------
    entity_ids : sequence of str
        Row/column order of the matrix.
    pairs : mapping, optional
        (entity_a, entity_b) -> coefficient. Looked up in both orders; pairs
        naming unknown entities are ignored.
    default_rho : float
        Coefficient for every pair not present in `pairs`.
    """
    index = {eid: i for i, eid in enumerate(entity_ids)}
    matrix = constant_correlation_matrix(len(entity_ids), default_rho)
    for (a, b), value in (pairs or {}).items():
        if a not in index or b not in index or a == b:
            continue
        rho = float(np.clip(value, -1.0, 1.0))
        matrix[index[a], index[b]] = rho
        matrix[index[b], index[a]] = rho
    return matrix


def cholesky_factor(matrix: np.ndarray) -> Optional[np.ndarray]:
    """
    Lower-triangular Cholesky factor, or None if the matrix is not
    positive-definite (callers fall back to independent sampling).
    """
    if matrix.size == 0:
        return np.zeros((0, 0), dtype=float)
    try:
        return np.linalg.cholesky(matrix)
    except np.linalg.LinAlgError:
        logger.warning(
            "Correlation matrix (%dx%d) is not positive-definite; "
            "falling back to independent draws.",
            matrix.shape[0],
            matrix.shape[1],
        )
        return None
