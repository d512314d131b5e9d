"""
Project data model — the immutable inputs of one simulation run.

Everything is keyed by stable string identifiers in fixed-depth mappings:
  bucket -> share
  bucket -> component -> share
  (entity_type, entity_id) -> UncertaintyParam
  (entity_a, entity_b) -> correlation
Monthly series are numpy arrays indexed by month position (0 .. horizon-1).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from .schema import ROLLOVER_NEXT_MONTH, UNDERSPEND_POLICIES


@dataclass(frozen=True)
class ProjectMeta:
    project_id: str
    cap_total: float
    num_months: int
    underspend_policy: str = ROLLOVER_NEXT_MONTH
    protect_engineering: bool = False
    start_month: str = "2025-01"
    project_name: str = ""
    currency_unit: str = "Cr"

    def __post_init__(self) -> None:
        if self.underspend_policy not in UNDERSPEND_POLICIES:
            raise ValueError(
                f"Unknown underspend policy {self.underspend_policy!r}; "
                f"expected one of {UNDERSPEND_POLICIES}"
            )
        if self.num_months < 0:
            raise ValueError(f"num_months must be >= 0, got {self.num_months}")

    @property
    def rollover(self) -> bool:
        return self.underspend_policy == ROLLOVER_NEXT_MONTH


@dataclass(frozen=True)
class UncertaintyParam:
    """
    Triangular multiplier descriptor for one entity.

    low <= mode <= high are multipliers on the baseline (1.0 = no change).
    ramp_pct is applied linearly across the horizon after sampling.
    """
    low: float = 1.0
    mode: float = 1.0
    high: float = 1.0
    ramp_pct: float = 0.0

    @property
    def is_neutral(self) -> bool:
        return self.low == self.mode == self.high == 1.0 and self.ramp_pct == 0.0

    @property
    def spread(self) -> float:
        return self.high - self.low

    def scaled(self, volatility: float) -> "UncertaintyParam":
        """Scale the spread around 1.0 by the global volatility factor."""
        return UncertaintyParam(
            low=1.0 + (self.low - 1.0) * volatility,
            mode=1.0 + (self.mode - 1.0) * volatility,
            high=1.0 + (self.high - 1.0) * volatility,
            ramp_pct=self.ramp_pct,
        )

    def widened(self, factor: float) -> "UncertaintyParam":
        """Stretch low/high away from the mode by `factor` (1.2 -> +20% spread)."""
        stretch = factor - 1.0
        return UncertaintyParam(
            low=self.low - (self.mode - self.low) * stretch,
            mode=self.mode,
            high=self.high + (self.high - self.mode) * stretch,
            ramp_pct=self.ramp_pct,
        )


NEUTRAL = UncertaintyParam()


def _frozen_array(values, shape: Tuple[int, ...]) -> np.ndarray:
    arr = np.array(values, dtype=float, copy=True).reshape(shape)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class ProjectDataset:
    meta: ProjectMeta
    months: Tuple[str, ...]
    demand: np.ndarray                      # (H,) baseline engineering demand
    eng_planned: np.ndarray                 # (H,) planned engineering inflow
    buckets: Tuple[str, ...]
    bucket_shares: Mapping[str, float]
    component_shares: Mapping[str, Mapping[str, float]]
    other_depts: Tuple[str, ...] = ()
    other_planned: Optional[np.ndarray] = None  # (H, D) planned inflow per other dept
    uncertainty: Mapping[Tuple[str, str], UncertaintyParam] = field(default_factory=dict)
    correlations: Mapping[Tuple[str, str], float] = field(default_factory=dict)
    malformed_uncertainty_rows: int = 0

    def __post_init__(self) -> None:
        h = len(self.months)
        if np.size(self.demand) != h or np.size(self.eng_planned) != h:
            raise ValueError(
                f"Monthly series length mismatch: months={h}, demand={np.size(self.demand)}, "
                f"eng_planned={np.size(self.eng_planned)}"
            )
        demand = _frozen_array(self.demand, (h,))
        eng = _frozen_array(self.eng_planned, (h,))
        d = len(self.other_depts)
        other_src = np.zeros((h, d)) if self.other_planned is None else self.other_planned
        other = _frozen_array(other_src, (h, d))
        object.__setattr__(self, "demand", demand)
        object.__setattr__(self, "eng_planned", eng)
        object.__setattr__(self, "other_planned", other)

    @property
    def horizon(self) -> int:
        return len(self.months)

    def uncertainty_for(self, entity_type: str, entity_id: str) -> UncertaintyParam:
        return self.uncertainty.get((entity_type, entity_id), NEUTRAL)

    def has_uncertainty(self, entity_type: str, entity_id: str) -> bool:
        return (entity_type, entity_id) in self.uncertainty

    def correlation(self, a: str, b: str) -> Optional[float]:
        if (a, b) in self.correlations:
            return self.correlations[(a, b)]
        return self.correlations.get((b, a))

    def components_of(self, bucket_id: str) -> Dict[str, float]:
        return dict(self.component_shares.get(bucket_id, {}))

    def with_changes(self, **kwargs) -> "ProjectDataset":
        return replace(self, **kwargs)
