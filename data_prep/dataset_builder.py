"""
Assemble an immutable ProjectDataset from the loader's tables.

The external loader hands over one DataFrame per input table, already parsed
and validated for shape. This module:
  - checks the canonical columns are present (ValueError otherwise)
  - orders months from the project's start month; months with no rows get 0
  - splits allocations into the ENGINEERING line and the other departments
  - normalises malformed uncertainty rows to a neutral multiplier (1.0),
    counting and logging them instead of failing the run
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from core.model import NEUTRAL, ProjectDataset, ProjectMeta, UncertaintyParam
from core.schema import (
    ALLOCATION_COLUMNS,
    BUCKET_SHARE_COLUMNS,
    COMPONENT_SHARE_COLUMNS,
    CORRELATION_COLUMNS,
    DEMAND_COLUMNS,
    ENGINEERING_DEPT,
    ENTITY_TYPES,
    UNCERTAINTY_COLUMNS,
)
from core.utils import month_labels, normalize_month, require_columns

logger = logging.getLogger(__name__)


def _monthly_series(df: pd.DataFrame, value_col: str, months: Tuple[str, ...]) -> np.ndarray:
    if df.empty:
        return np.zeros(len(months))
    keyed = df.assign(month=df["month"].map(normalize_month))
    values = pd.to_numeric(keyed[value_col], errors="coerce").fillna(0.0)
    series = values.groupby(keyed["month"]).sum()
    return series.reindex(list(months), fill_value=0.0).to_numpy(dtype=float)


def _allocation_matrix(
    allocations: pd.DataFrame,
    months: Tuple[str, ...],
) -> Tuple[np.ndarray, Tuple[str, ...], np.ndarray]:
    """(engineering planned inflow, other dept ids, other planned inflow (H, D))."""
    if allocations.empty:
        return np.zeros(len(months)), (), np.zeros((len(months), 0))

    df = allocations.assign(
        month=allocations["month"].map(normalize_month),
        dept_id=allocations["dept_id"].astype(str),
        planned_inflow_cr=pd.to_numeric(allocations["planned_inflow_cr"], errors="coerce").fillna(0.0),
    )
    wide = (
        df.pivot_table(index="month", columns="dept_id", values="planned_inflow_cr", aggfunc="sum")
        .reindex(list(months))
        .fillna(0.0)
    )
    eng = wide[ENGINEERING_DEPT].to_numpy(dtype=float) if ENGINEERING_DEPT in wide.columns \
        else np.zeros(len(months))
    others = tuple(sorted(c for c in wide.columns if c != ENGINEERING_DEPT))
    other = wide[list(others)].to_numpy(dtype=float) if others else np.zeros((len(months), 0))
    return eng, others, other


def _parse_uncertainty(uncertainty: pd.DataFrame) -> Tuple[Dict[Tuple[str, str], UncertaintyParam], int]:
    numeric = {
        col: pd.to_numeric(uncertainty[col], errors="coerce")
        for col in ("low_mult", "mode_mult", "high_mult", "ramp_pct_total")
    }
    params: Dict[Tuple[str, str], UncertaintyParam] = {}
    malformed = 0
    for entity_type, entity_id, low, mode, high, ramp in zip(
        uncertainty["entity_type"],
        uncertainty["entity_id"],
        numeric["low_mult"],
        numeric["mode_mult"],
        numeric["high_mult"],
        numeric["ramp_pct_total"],
    ):
        entity_type = str(entity_type).strip()
        entity_id = "" if pd.isna(entity_id) else str(entity_id).strip()

        key_ok = entity_type in ENTITY_TYPES and entity_id != ""
        values_ok = all(np.isfinite(v) for v in (low, mode, high)) and 0.0 <= low <= mode <= high
        if not (key_ok and values_ok):
            malformed += 1
            if key_ok:
                params[(entity_type, entity_id)] = NEUTRAL
            continue

        params[(entity_type, entity_id)] = UncertaintyParam(
            low=float(low),
            mode=float(mode),
            high=float(high),
            ramp_pct=float(ramp) if np.isfinite(ramp) else 0.0,
        )
    return params, malformed


def _parse_correlations(correlations: Optional[pd.DataFrame]) -> Dict[Tuple[str, str], float]:
    if correlations is None or correlations.empty:
        return {}
    require_columns(correlations, CORRELATION_COLUMNS)
    corr = pd.to_numeric(correlations["corr"], errors="coerce")
    pairs = {}
    for a, b, rho in zip(correlations["entity_a"], correlations["entity_b"], corr):
        if pd.isna(rho):
            continue
        pairs[(str(a), str(b))] = float(rho)
    return pairs


def build_project_dataset(
    meta: ProjectMeta,
    allocations: pd.DataFrame,
    demand: pd.DataFrame,
    bucket_shares: pd.DataFrame,
    component_shares: pd.DataFrame,
    uncertainty: pd.DataFrame,
    correlations: Optional[pd.DataFrame] = None,
) -> ProjectDataset:
    """
    Parameters
    ----------
    meta : ProjectMeta
        Cap, horizon, underspend policy, start month
    allocations, demand, bucket_shares, component_shares, uncertainty : pd.DataFrame
        Loader tables with the canonical columns from core.schema
    correlations : pd.DataFrame, optional
        Pairwise coefficients overriding the run's constant correlation strength

    Returns
    -------
    ProjectDataset
    """
    require_columns(allocations, ALLOCATION_COLUMNS)
    require_columns(demand, DEMAND_COLUMNS)
    require_columns(bucket_shares, BUCKET_SHARE_COLUMNS)
    require_columns(component_shares, COMPONENT_SHARE_COLUMNS)
    require_columns(uncertainty, UNCERTAINTY_COLUMNS)

    months = tuple(month_labels(meta.start_month, meta.num_months))

    demand_arr = _monthly_series(demand, "engineering_demand_total_cr", months)
    eng_planned, other_depts, other_planned = _allocation_matrix(allocations, months)

    shares = pd.to_numeric(bucket_shares["share_of_engineering_demand"], errors="coerce").fillna(0.0)
    bucket_map: Dict[str, float] = {}
    for bucket_id, share in zip(bucket_shares["bucket_id"].astype(str), shares):
        bucket_map[bucket_id] = bucket_map.get(bucket_id, 0.0) + float(share)

    comp_values = pd.to_numeric(component_shares["share_within_bucket"], errors="coerce").fillna(0.0)
    component_map: Dict[str, Dict[str, float]] = {}
    for bucket_id, component, share in zip(
        component_shares["bucket_id"].astype(str),
        component_shares["cost_component"].astype(str),
        comp_values,
    ):
        per_bucket = component_map.setdefault(bucket_id, {})
        per_bucket[component] = per_bucket.get(component, 0.0) + float(share)

    params, malformed = _parse_uncertainty(uncertainty)
    if malformed:
        logger.warning(
            "%d malformed uncertainty row(s) for project %s treated as neutral (multiplier 1.0)",
            malformed, meta.project_id,
        )

    return ProjectDataset(
        meta=meta,
        months=months,
        demand=demand_arr,
        eng_planned=eng_planned,
        buckets=tuple(bucket_map),
        bucket_shares=bucket_map,
        component_shares=component_map,
        other_depts=other_depts,
        other_planned=other_planned,
        uncertainty=params,
        correlations=_parse_correlations(correlations),
        malformed_uncertainty_rows=malformed,
    )
