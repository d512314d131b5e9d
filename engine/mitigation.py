"""
Mitigation levers — pre-adjust the dataset before a run.

A lever never touches the simulation itself; it returns a modified copy of the
immutable ProjectDataset, so "with lever" and "without lever" runs are directly
comparable under the same seed.

Lever kinds:
  VOLATILITY_REDUCTION  shrink the high side of the targeted descriptors by `value`
                        (high -> mode + (high - mode) * (1 - value))
  EFFICIENCY_GAIN       scale low / mode / high of the targeted descriptors by (1 - value)
  SCOPE_CAP             scale baseline demand by (1 - value) in the targeted months
  REPHASE               move `value` of each targeted month's demand to the next month
                        (peak-demand months when none are named); total demand is preserved
  CAP_DEPT              scale other-department planned inflow by (1 - value)

Empty target_ids means "every entity of that type"; empty months means every month.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from core.model import ProjectDataset, UncertaintyParam
from core.schema import COST_COMPONENT, DEPT, ENG_BUCKET

logger = logging.getLogger(__name__)

VOLATILITY_REDUCTION = "VOLATILITY_REDUCTION"
EFFICIENCY_GAIN = "EFFICIENCY_GAIN"
SCOPE_CAP = "SCOPE_CAP"
REPHASE = "REPHASE"
CAP_DEPT = "CAP_DEPT"
LEVER_KINDS = (VOLATILITY_REDUCTION, EFFICIENCY_GAIN, SCOPE_CAP, REPHASE, CAP_DEPT)

# Months treated as "peak" by REPHASE when the lever names none
PEAK_MONTH_COUNT = 3


@dataclass(frozen=True)
class MitigationLever:
    lever_id: str
    title: str
    kind: str
    value: float
    entity_type: Optional[str] = None
    target_ids: Tuple[str, ...] = ()
    months: Tuple[str, ...] = ()
    owner: str = ""

    def __post_init__(self) -> None:
        if self.kind not in LEVER_KINDS:
            raise ValueError(f"Unknown lever kind {self.kind!r}; expected one of {LEVER_KINDS}")
        if not 0.0 <= self.value <= 1.0:
            raise ValueError(f"Lever value must be in [0, 1], got {self.value}")


DEFAULT_LEVERS: Dict[str, MitigationLever] = {
    lever.lever_id: lever
    for lever in (
        MitigationLever("lock_material_rates", "Lock material rates", VOLATILITY_REDUCTION, 0.15,
                        entity_type=COST_COMPONENT, target_ids=("MATERIAL",), owner="Procurement"),
        MitigationLever("subcontractor_productivity", "Subcontractor productivity plan",
                        VOLATILITY_REDUCTION, 0.10,
                        entity_type=COST_COMPONENT, target_ids=("SERVICE",), owner="Planning"),
        MitigationLever("defer_finishing", "Shift non-critical finishing out of peak months",
                        REPHASE, 0.10, owner="Project Governance"),
        MitigationLever("scope_cap", "Cap discretionary scope", SCOPE_CAP, 0.05,
                        owner="Project Governance"),
        MitigationLever("cap_other_departments", "Cap other departments' drawdown", CAP_DEPT, 0.10,
                        entity_type=DEPT, owner="Finance"),
    )
}


def _target_entities(dataset: ProjectDataset, lever: MitigationLever) -> List[Tuple[str, str]]:
    if lever.target_ids:
        return [(lever.entity_type, t) for t in lever.target_ids]
    if lever.entity_type == ENG_BUCKET:
        ids: Iterable[str] = dataset.buckets
    elif lever.entity_type == COST_COMPONENT:
        ids = sorted({c for b in dataset.buckets for c in dataset.components_of(b)})
    elif lever.entity_type == DEPT:
        ids = dataset.other_depts
    else:
        ids = ()
    return [(lever.entity_type, i) for i in ids]


def _month_mask(dataset: ProjectDataset, months: Iterable[str]) -> np.ndarray:
    wanted = set(months)
    if not wanted:
        return np.ones(dataset.horizon, dtype=bool)
    return np.array([m in wanted for m in dataset.months], dtype=bool)


def _reduce_volatility(dataset: ProjectDataset, lever: MitigationLever) -> ProjectDataset:
    uncertainty = dict(dataset.uncertainty)
    for key in _target_entities(dataset, lever):
        param = uncertainty.get(key)
        if param is None:
            continue
        uncertainty[key] = UncertaintyParam(
            low=param.low,
            mode=param.mode,
            high=param.mode + (param.high - param.mode) * (1.0 - lever.value),
            ramp_pct=param.ramp_pct,
        )
    return dataset.with_changes(uncertainty=uncertainty)


def _efficiency_gain(dataset: ProjectDataset, lever: MitigationLever) -> ProjectDataset:
    keep = 1.0 - lever.value
    uncertainty = dict(dataset.uncertainty)
    for key in _target_entities(dataset, lever):
        param = uncertainty.get(key, UncertaintyParam())
        uncertainty[key] = UncertaintyParam(
            low=param.low * keep,
            mode=param.mode * keep,
            high=param.high * keep,
            ramp_pct=param.ramp_pct,
        )
    return dataset.with_changes(uncertainty=uncertainty)


def _scope_cap(dataset: ProjectDataset, lever: MitigationLever) -> ProjectDataset:
    mask = _month_mask(dataset, lever.months)
    demand = np.where(mask, dataset.demand * (1.0 - lever.value), dataset.demand)
    return dataset.with_changes(demand=demand)


def peak_months(dataset: ProjectDataset, count: int = PEAK_MONTH_COUNT) -> Tuple[str, ...]:
    """Labels of the `count` highest-demand months (earlier month first on ties)."""
    order = sorted(range(dataset.horizon), key=lambda m: (-dataset.demand[m], m))
    return tuple(dataset.months[m] for m in order[:count])


def _rephase(dataset: ProjectDataset, lever: MitigationLever) -> ProjectDataset:
    months = lever.months or peak_months(dataset)
    mask = _month_mask(dataset, months)
    # the last month has nowhere to shift to
    if dataset.horizon:
        mask[-1] = False
    moved = np.where(mask, dataset.demand * lever.value, 0.0)
    demand = np.array(dataset.demand, dtype=float) - moved
    demand[1:] += moved[:-1]
    return dataset.with_changes(demand=demand)


def _cap_departments(dataset: ProjectDataset, lever: MitigationLever) -> ProjectDataset:
    targets = set(lever.target_ids) or set(dataset.other_depts)
    other = np.array(dataset.other_planned, dtype=float)
    mask = _month_mask(dataset, lever.months)
    for j, dept in enumerate(dataset.other_depts):
        if dept in targets:
            other[mask, j] *= 1.0 - lever.value
    return dataset.with_changes(other_planned=other)


_APPLY = {
    VOLATILITY_REDUCTION: _reduce_volatility,
    EFFICIENCY_GAIN: _efficiency_gain,
    SCOPE_CAP: _scope_cap,
    REPHASE: _rephase,
    CAP_DEPT: _cap_departments,
}


def apply_lever(dataset: ProjectDataset, lever: MitigationLever) -> ProjectDataset:
    return _APPLY[lever.kind](dataset, lever)


def apply_levers(
    dataset: ProjectDataset,
    lever_ids: Iterable[str],
    catalogue: Optional[Mapping[str, MitigationLever]] = None,
) -> Tuple[ProjectDataset, List[str], List[str]]:
    """
    Apply the named levers in order (duplicates applied once).

    Returns
    -------
    (adjusted_dataset, applied_ids, unknown_ids)
    Unknown ids are skipped and logged; they never raise.
    """
    catalogue = DEFAULT_LEVERS if catalogue is None else catalogue
    applied: List[str] = []
    unknown: List[str] = []
    for lever_id in dict.fromkeys(lever_ids):
        lever = catalogue.get(lever_id)
        if lever is None:
            unknown.append(lever_id)
            continue
        dataset = apply_lever(dataset, lever)
        applied.append(lever_id)

    if unknown:
        logger.warning("Ignoring unknown mitigation levers: %s", ", ".join(unknown))
    return dataset, applied, unknown
