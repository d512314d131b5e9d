"""
Shared fixtures: small hand-built datasets and a DrawSet factory.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.model import ProjectDataset, ProjectMeta, UncertaintyParam  # noqa: E402
from core.schema import COST_COMPONENT, DEPT, ENG_BUCKET, LAPSE, ROLLOVER_NEXT_MONTH  # noqa: E402
from core.utils import month_labels  # noqa: E402
from engine.draws import DrawSet  # noqa: E402


def build_dataset(
    demand,
    eng_planned,
    *,
    cap_total=1e9,
    policy=ROLLOVER_NEXT_MONTH,
    protect_engineering=False,
    buckets=None,
    components=None,
    other_planned=None,
    other_depts=(),
    uncertainty=None,
    correlations=None,
):
    demand = np.asarray(demand, dtype=float)
    horizon = len(demand)
    buckets = buckets if buckets is not None else {"CIVIL": 0.6, "MEP": 0.4}
    components = components if components is not None else {
        "CIVIL": {"MATERIAL": 0.5, "SERVICE": 0.5},
        "MEP": {"MATERIAL": 0.5, "SERVICE": 0.5},
    }
    meta = ProjectMeta(
        project_id="TEST",
        cap_total=cap_total,
        num_months=horizon,
        underspend_policy=policy,
        protect_engineering=protect_engineering,
        start_month="2025-01",
    )
    return ProjectDataset(
        meta=meta,
        months=tuple(month_labels("2025-01", horizon)),
        demand=demand,
        eng_planned=np.asarray(eng_planned, dtype=float),
        buckets=tuple(buckets),
        bucket_shares=dict(buckets),
        component_shares=components,
        other_depts=tuple(other_depts),
        other_planned=other_planned,
        uncertainty=uncertainty or {},
        correlations=correlations or {},
    )


@pytest.fixture
def make_dataset():
    return build_dataset


@pytest.fixture
def two_bucket_dataset():
    """One month, two buckets (0.6 / 0.4), two components each (0.5 / 0.5), demand 100."""
    return build_dataset([100.0], [120.0])


@pytest.fixture
def risky_dataset():
    """12 months, uncertain buckets / components / one other department, tight cap."""
    demand = np.linspace(40.0, 90.0, 12)
    planned = np.full(12, 65.0)
    other = np.full((12, 1), 15.0)
    uncertainty = {
        (ENG_BUCKET, "CIVIL"): UncertaintyParam(0.9, 1.0, 1.4, 0.1),
        (ENG_BUCKET, "MEP"): UncertaintyParam(0.85, 1.05, 1.3),
        (COST_COMPONENT, "MATERIAL"): UncertaintyParam(0.9, 1.0, 1.5),
        (COST_COMPONENT, "SERVICE"): UncertaintyParam(0.95, 1.0, 1.2),
        (DEPT, "OPS"): UncertaintyParam(0.8, 1.0, 1.3),
    }
    return build_dataset(
        demand,
        planned,
        cap_total=850.0,
        other_planned=other,
        other_depts=("OPS",),
        uncertainty=uncertainty,
    )


@pytest.fixture
def lapse_dataset():
    return build_dataset([60.0, 80.0], [100.0, 50.0], policy=LAPSE)


def build_drawset(shortfall, *, demand=None, inflow=None, available=None, cap_bound=None,
                  first_breach=None, driver_keys=(), driver_deltas=None, epsilon=0.01):
    shortfall = np.asarray(shortfall, dtype=float)
    n, h = shortfall.shape
    demand = np.asarray(demand, dtype=float) if demand is not None else shortfall + 10.0
    inflow = np.asarray(inflow, dtype=float) if inflow is not None else demand - shortfall
    available = np.asarray(available, dtype=float) if available is not None else inflow.copy()
    if first_breach is None:
        breached = shortfall > epsilon
        first_breach = np.where(breached.any(axis=1), breached.argmax(axis=1), -1)
    return DrawSet(
        months=tuple(month_labels("2025-01", h)),
        inflow=inflow,
        demand=demand,
        shortfall=shortfall,
        other_spend=np.zeros((n, h)),
        available=available,
        cap_bound=np.zeros((n, h), dtype=bool) if cap_bound is None else np.asarray(cap_bound, dtype=bool),
        first_breach=np.asarray(first_breach, dtype=int),
        reliable=np.ones(n, dtype=bool),
        final_quarter=np.zeros(n, dtype=bool),
        driver_keys=tuple(driver_keys),
        driver_deltas=np.zeros((n, len(driver_keys))) if driver_deltas is None
        else np.asarray(driver_deltas, dtype=float),
    )


@pytest.fixture
def make_drawset():
    return build_drawset
