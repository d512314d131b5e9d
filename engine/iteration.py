"""
Iteration engine — one simulated future, walked month by month.

Two layers, kept apart so the walk can be tested with forced multipliers:
  Layer 1 (sample_multipliers): Which future are we in?
      bucket multipliers (correlated), component multipliers (independent),
      other-department multipliers (independent)
  Layer 2 (walk_months): Given those multipliers, how does the money flow?
      demand build-up, budget cap, rollover pool, realizable inflow, shortfall

State carried across months: cumulative spend-to-date and the rollover pool.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np

from core.model import ProjectDataset, UncertaintyParam
from core.schema import COST_COMPONENT, DEPT, ENG_BUCKET
from distributions.sampler import CorrelatedUniformSampler, triangular_multipliers

# Component key used when a bucket has no component split at all
WHOLE_BUCKET = "ALL"


@dataclass(frozen=True)
class DemandLayout:
    """
    Flattened bucket x component structure of a dataset.

    A "slice" is one (bucket, component) pair; its share of monthly demand is
    bucket_share * component_share. Slices are the driver keys.
    """
    bucket_ids: Tuple[str, ...]
    bucket_params: Tuple[UncertaintyParam, ...]
    slice_keys: Tuple[str, ...]
    slice_bucket: np.ndarray   # (S,) index into bucket_ids
    slice_share: np.ndarray    # (S,)
    slice_params: Tuple[UncertaintyParam, ...]
    dept_ids: Tuple[str, ...]
    dept_params: Tuple[UncertaintyParam, ...]

    @property
    def n_slices(self) -> int:
        return len(self.slice_keys)


def driver_key(bucket_id: str, component: str) -> str:
    return f"{bucket_id}:{component}"


def compile_layout(dataset: ProjectDataset) -> DemandLayout:
    """Resolve shares and uncertainty descriptors once per run."""
    slice_keys: List[str] = []
    slice_bucket: List[int] = []
    slice_share: List[float] = []
    slice_params: List[UncertaintyParam] = []

    for b_idx, bucket_id in enumerate(dataset.buckets):
        b_share = float(dataset.bucket_shares.get(bucket_id, 0.0))
        components = dataset.components_of(bucket_id)
        if not components:
            components = {WHOLE_BUCKET: 1.0}
        for component, c_share in components.items():
            slice_keys.append(driver_key(bucket_id, component))
            slice_bucket.append(b_idx)
            slice_share.append(b_share * float(c_share))
            slice_params.append(dataset.uncertainty_for(COST_COMPONENT, component))

    return DemandLayout(
        bucket_ids=tuple(dataset.buckets),
        bucket_params=tuple(dataset.uncertainty_for(ENG_BUCKET, b) for b in dataset.buckets),
        slice_keys=tuple(slice_keys),
        slice_bucket=np.array(slice_bucket, dtype=int),
        slice_share=np.array(slice_share, dtype=float),
        slice_params=tuple(slice_params),
        dept_ids=tuple(dataset.other_depts),
        dept_params=tuple(dataset.uncertainty_for(DEPT, d) for d in dataset.other_depts),
    )


@dataclass(frozen=True)
class DrawMultipliers:
    """Sampled multipliers for one draw; each array is (horizon, n_entities)."""
    bucket: np.ndarray      # (H, B)
    component: np.ndarray   # (H, S)
    dept: np.ndarray        # (H, D)

    @classmethod
    def neutral(cls, layout: DemandLayout, horizon: int) -> "DrawMultipliers":
        return cls(
            bucket=np.ones((horizon, len(layout.bucket_ids))),
            component=np.ones((horizon, layout.n_slices)),
            dept=np.ones((horizon, len(layout.dept_ids))),
        )


@dataclass
class IterationResult:
    """Result of walking one draw across the horizon."""
    monthly_inflow: np.ndarray       # realizable engineering inflow
    monthly_demand: np.ndarray       # simulated engineering demand
    monthly_shortfall: np.ndarray
    monthly_other_spend: np.ndarray  # other departments, after cap
    monthly_available: np.ndarray    # engineering budget after rollover and cap
    cap_bound: np.ndarray            # bool: the project cap constrained this month
    total_inflow: float
    is_reliable: bool                # cumulative spend stayed within cap (+ epsilon)
    has_shortfall: bool
    final_quarter_breach: bool
    first_breach_month: int          # -1 when the draw never breaches
    driver_keys: Tuple[str, ...]
    driver_deltas: np.ndarray        # (S,) demand above baseline, summed over months

    @property
    def driver_impacts(self) -> Dict[str, float]:
        return {k: float(v) for k, v in zip(self.driver_keys, self.driver_deltas)}


def sample_multipliers(
    layout: DemandLayout,
    horizon: int,
    rng: np.random.Generator,
    bucket_sampler: CorrelatedUniformSampler,
    *,
    volatility: float,
) -> DrawMultipliers:
    """
    Draw every multiplier this future needs.

    Random numbers are consumed in a fixed order (bucket, component, dept) so a
    given generator state always yields the same draw.
    """
    u_bucket = bucket_sampler.draw(rng, horizon)
    u_component = rng.random((horizon, layout.n_slices))
    u_dept = rng.random((horizon, len(layout.dept_ids)))

    bucket = np.ones((horizon, len(layout.bucket_ids)))
    for j, param in enumerate(layout.bucket_params):
        bucket[:, j] = triangular_multipliers(u_bucket[:, j], param, volatility=volatility)

    component = np.ones((horizon, layout.n_slices))
    for j, param in enumerate(layout.slice_params):
        component[:, j] = triangular_multipliers(u_component[:, j], param, volatility=volatility)

    dept = np.ones((horizon, len(layout.dept_ids)))
    for j, param in enumerate(layout.dept_params):
        dept[:, j] = triangular_multipliers(u_dept[:, j], param, volatility=volatility)

    return DrawMultipliers(bucket=bucket, component=component, dept=dept)


def walk_months(
    dataset: ProjectDataset,
    layout: DemandLayout,
    multipliers: DrawMultipliers,
    *,
    shortfall_epsilon: float = 0.01,
    reliability_epsilon: float = 0.1,
    final_quarter_months: int = 3,
) -> IterationResult:
    """
    Deterministic month-by-month walk of one draw.

    Cap handling when cumulative spend + this month's demand exceeds the cap
    (headroom = cap - cumulative spend, floored at 0):
      protect_engineering=False: every demand is scaled by headroom / total demand
      protect_engineering=True:  engineering is served first up to the headroom;
                                 other departments get what is left, capped at
                                 engineering's funded fraction while it is short
    """
    meta = dataset.meta
    horizon = dataset.horizon

    base_slices = dataset.demand[:, None] * layout.slice_share[None, :]
    slices = base_slices * multipliers.bucket[:, layout.slice_bucket] * multipliers.component
    eng_demand = slices.sum(axis=1)
    other_demand = (dataset.other_planned * multipliers.dept).sum(axis=1)
    driver_deltas = (slices - base_slices).sum(axis=0)

    inflow = np.zeros(horizon)
    shortfall = np.zeros(horizon)
    other_spend = np.zeros(horizon)
    available_out = np.zeros(horizon)
    cap_bound = np.zeros(horizon, dtype=bool)

    cap = float(meta.cap_total)
    cumulative = 0.0
    rollover_pool = 0.0
    max_overshoot = 0.0
    first_breach = -1
    final_quarter = False

    for m in range(horizon):
        eng = float(eng_demand[m])
        other = float(other_demand[m])

        available = float(dataset.eng_planned[m]) + (rollover_pool if meta.rollover else 0.0)
        spend_other = other

        total_needed = eng + other
        if cumulative + total_needed > cap:
            cap_bound[m] = True
            headroom = max(0.0, cap - cumulative)
            if meta.protect_engineering:
                available = min(available, headroom)
                granted = min(eng, available)
                spend_other = min(other, max(0.0, headroom - granted))
                if granted < eng:
                    # other departments never get a larger funded share than engineering
                    spend_other = min(spend_other, other * granted / eng)
            else:
                ratio = min(1.0, headroom / total_needed) if total_needed > 0 else 1.0
                available = min(available, eng * ratio)
                spend_other = other * ratio

        realizable = min(eng, available)
        gap = max(0.0, eng - realizable)

        inflow[m] = realizable
        shortfall[m] = gap
        other_spend[m] = spend_other
        available_out[m] = available

        if gap > shortfall_epsilon:
            if first_breach < 0:
                first_breach = m
            if m >= horizon - final_quarter_months:
                final_quarter = True

        cumulative += realizable + spend_other
        max_overshoot = max(max_overshoot, cumulative - cap)
        rollover_pool = max(0.0, available - eng) if meta.rollover else 0.0

    return IterationResult(
        monthly_inflow=inflow,
        monthly_demand=np.asarray(eng_demand, dtype=float),
        monthly_shortfall=shortfall,
        monthly_other_spend=other_spend,
        monthly_available=available_out,
        cap_bound=cap_bound,
        total_inflow=float(inflow.sum()),
        is_reliable=max_overshoot <= reliability_epsilon,
        has_shortfall=first_breach >= 0,
        final_quarter_breach=final_quarter,
        first_breach_month=first_breach,
        driver_keys=layout.slice_keys,
        driver_deltas=np.asarray(driver_deltas, dtype=float),
    )


def run_iteration(
    dataset: ProjectDataset,
    layout: DemandLayout,
    rng: np.random.Generator,
    bucket_sampler: CorrelatedUniformSampler,
    *,
    volatility: float = 1.0,
    shortfall_epsilon: float = 0.01,
    reliability_epsilon: float = 0.1,
    final_quarter_months: int = 3,
) -> IterationResult:
    """Sample one future and walk it."""
    multipliers = sample_multipliers(
        layout, dataset.horizon, rng, bucket_sampler, volatility=volatility
    )
    return walk_months(
        dataset,
        layout,
        multipliers,
        shortfall_epsilon=shortfall_epsilon,
        reliability_epsilon=reliability_epsilon,
        final_quarter_months=final_quarter_months,
    )
