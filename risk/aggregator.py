"""
Aggregate N draws into funding-risk distribution summaries.

Instead of: "Month 7 inflow = 42 Cr" (one number, no context)
The project controller gets: "Month 7: P50=42, P80=47, 31% chance of a shortfall,
safe to commit 38, gap to fix 6"

Percentiles are exact order statistics (sort, then index floor(N*p)); no
interpolation, no sketching. Because they come from the same sorted column,
P10 <= P20 <= P50 <= P80 <= P90 holds for every metric.

NOTE ON CONSISTENCY:
The P50 of the per-draw total inflow is NOT the sum of the monthly P50s:
percentiles do not add. The divergence between the two is reported as a
health diagnostic (tolerance 20% by default), never raised.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from core.config import SimulationConfig
from core.model import ProjectDataset
from core.utils import column_percentiles, percentile, safe_div

if TYPE_CHECKING:
    from engine.draws import DrawSet


@dataclass
class MonthlyStats:
    month: str
    month_index: int
    planned_allocation: float
    planned_outflow: float

    realizable_inflow_p10: float
    realizable_inflow_p20: float
    realizable_inflow_p50: float
    realizable_inflow_p80: float
    realizable_inflow_p90: float

    demand_p10: float
    demand_p50: float
    demand_p80: float
    demand_p90: float

    shortfall_p10: float
    shortfall_p50: float
    shortfall_p80: float
    shortfall_p90: float
    shortfall_expected: float
    shortfall_prob: float
    coverage_prob: float

    safe_spend_limit: float
    gap_to_fix: float
    cap_bound_prob: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class DriverImpact:
    name: str
    contribution: float        # mean signed delta vs baseline, per draw
    mean_abs_contribution: float
    share_of_variance: float   # mean_abs / sum of all mean_abs
    lever: str


NO_DRIVER = DriverImpact(name="N/A", contribution=0.0, mean_abs_contribution=0.0,
                         share_of_variance=0.0, lever="Review")


@dataclass(frozen=True)
class WorstMonth:
    month: str
    month_index: int
    probability: float
    amount: float  # shortfall P80 in that month


@dataclass
class KpiSummary:
    total_inflow_p10: float
    total_inflow_p50: float
    total_inflow_p80: float
    total_inflow_p90: float
    total_shortfall_p50: float
    total_shortfall_p80: float
    total_shortfall_p90: float
    prob_shortfall_any_month: float
    prob_meet_plan: float
    final_quarter_breach_prob: float
    red_months_count: int
    worst_month: Optional[WorstMonth]
    primary_driver: DriverImpact
    top_drivers: List[DriverImpact] = field(default_factory=list)
    monthly_coverage_prob: Dict[str, float] = field(default_factory=dict)
    monthly_shortfall_p80: Dict[str, float] = field(default_factory=dict)
    monthly_shortfall_prob: Dict[str, float] = field(default_factory=dict)


@dataclass
class ConsistencyCheck:
    sim_total_inflow_p50: float
    sum_monthly_inflow_p50: float
    divergence: float
    tolerance: float

    @property
    def healthy(self) -> bool:
        return self.divergence <= self.tolerance


@dataclass
class Diagnostics:
    seed: int
    iterations: int
    horizon_months: int
    cholesky_success: bool
    planned_total_eng_inflow: float
    planned_total_eng_outflow: float
    consistency: ConsistencyCheck
    infeasible_draws: int = 0
    malformed_uncertainty_rows: int = 0
    applied_levers: List[str] = field(default_factory=list)
    unknown_levers: List[str] = field(default_factory=list)

    @property
    def correlation_fallback(self) -> bool:
        return not self.cholesky_success

    @property
    def aggregation_healthy(self) -> bool:
        return self.consistency.healthy


_LEVERS_BY_COMPONENT = {
    "MATERIAL": "Procurement",
    "SERVICE": "Execution",
    "LABOR": "Execution",
    "INFRA": "Asset Mgmt",
    "EQUIPMENT": "Asset Mgmt",
}


def _lever_for(driver_name: str) -> str:
    component = driver_name.rsplit(":", 1)[-1].upper()
    return _LEVERS_BY_COMPONENT.get(component, "Review")


def aggregate_monthly(
    draws: DrawSet,
    dataset: ProjectDataset,
    *,
    shortfall_epsilon: float = 0.01,
) -> List[MonthlyStats]:
    """
    Reduce the (draws x months) matrices to one MonthlyStats per month.

    Parameters
    ----------
    draws : DrawSet
        Output of engine.draws.simulate_draws()
    dataset : ProjectDataset
        Supplies planned allocation and planned outflow (baseline demand)
    shortfall_epsilon : float
        Shortfall above this counts as "not covered"
    """
    n = draws.n_draws
    inflow_sorted = np.sort(draws.inflow, axis=0)
    demand_sorted = np.sort(draws.demand, axis=0)
    shortfall_sorted = np.sort(draws.shortfall, axis=0)

    pct = {
        "inflow": {p: column_percentiles(inflow_sorted, p) for p in (0.10, 0.20, 0.50, 0.80, 0.90)},
        "demand": {p: column_percentiles(demand_sorted, p) for p in (0.10, 0.50, 0.80, 0.90)},
        "shortfall": {p: column_percentiles(shortfall_sorted, p) for p in (0.10, 0.50, 0.80, 0.90)},
    }
    short_events = draws.shortfall > shortfall_epsilon
    shortfall_prob = short_events.sum(axis=0) / n if n else np.zeros(draws.horizon)
    coverage_prob = (~short_events).sum(axis=0) / n if n else np.zeros(draws.horizon)
    shortfall_mean = draws.shortfall.mean(axis=0) if n else np.zeros(draws.horizon)
    cap_prob = draws.cap_bound.sum(axis=0) / n if n else np.zeros(draws.horizon)

    stats = []
    for m, month in enumerate(draws.months):
        safe_limit = float(pct["inflow"][0.20][m])
        planned_outflow = float(dataset.demand[m])
        stats.append(MonthlyStats(
            month=month,
            month_index=m,
            planned_allocation=float(dataset.eng_planned[m]),
            planned_outflow=planned_outflow,
            realizable_inflow_p10=float(pct["inflow"][0.10][m]),
            realizable_inflow_p20=safe_limit,
            realizable_inflow_p50=float(pct["inflow"][0.50][m]),
            realizable_inflow_p80=float(pct["inflow"][0.80][m]),
            realizable_inflow_p90=float(pct["inflow"][0.90][m]),
            demand_p10=float(pct["demand"][0.10][m]),
            demand_p50=float(pct["demand"][0.50][m]),
            demand_p80=float(pct["demand"][0.80][m]),
            demand_p90=float(pct["demand"][0.90][m]),
            shortfall_p10=float(pct["shortfall"][0.10][m]),
            shortfall_p50=float(pct["shortfall"][0.50][m]),
            shortfall_p80=float(pct["shortfall"][0.80][m]),
            shortfall_p90=float(pct["shortfall"][0.90][m]),
            shortfall_expected=float(shortfall_mean[m]),
            shortfall_prob=float(shortfall_prob[m]),
            coverage_prob=float(coverage_prob[m]),
            safe_spend_limit=safe_limit,
            gap_to_fix=max(0.0, planned_outflow - safe_limit),
            cap_bound_prob=float(cap_prob[m]),
        ))
    return stats


def rank_drivers(draws: DrawSet) -> List[DriverImpact]:
    """
    Rank bucket:component drivers by mean absolute per-draw contribution.
    Ties are broken by name so the ranking is deterministic.
    """
    if draws.n_draws == 0 or not draws.driver_keys:
        return []
    mean_signed = draws.driver_deltas.mean(axis=0)
    mean_abs = np.abs(draws.driver_deltas).mean(axis=0)
    total = float(mean_abs.sum())

    drivers = [
        DriverImpact(
            name=key,
            contribution=float(mean_signed[i]),
            mean_abs_contribution=float(mean_abs[i]),
            share_of_variance=float(safe_div(float(mean_abs[i]), total, 0.0)),
            lever=_lever_for(key),
        )
        for i, key in enumerate(draws.driver_keys)
    ]
    drivers.sort(key=lambda d: (-d.mean_abs_contribution, d.name))
    return drivers


def primary_driver(drivers: Sequence[DriverImpact]) -> DriverImpact:
    """Largest driver, or NO_DRIVER when nothing moves demand."""
    if not drivers or drivers[0].mean_abs_contribution == 0.0:
        return NO_DRIVER
    return drivers[0]


def consistency_check(
    draws: DrawSet,
    monthly: Sequence[MonthlyStats],
    *,
    tolerance: float = 0.20,
) -> ConsistencyCheck:
    """
    Compare P50 of the end-to-end total inflow with the sum of monthly P50s.
    Divergence is relative to the larger magnitude of the two (0 when both are 0).
    """
    sim_p50 = percentile(draws.total_inflow, 0.50)
    sum_p50 = float(sum(s.realizable_inflow_p50 for s in monthly))
    scale = max(abs(sim_p50), abs(sum_p50))
    divergence = float(safe_div(abs(sim_p50 - sum_p50), scale, 0.0))
    return ConsistencyCheck(
        sim_total_inflow_p50=sim_p50,
        sum_monthly_inflow_p50=sum_p50,
        divergence=divergence,
        tolerance=tolerance,
    )


def compute_kpis(
    draws: DrawSet,
    monthly: Sequence[MonthlyStats],
    drivers: Sequence[DriverImpact],
    *,
    config: SimulationConfig,
) -> KpiSummary:
    """Scalar KPIs across draws and months."""
    n = draws.n_draws
    totals_in = draws.total_inflow
    totals_short = draws.total_shortfall
    any_short = (draws.first_breach >= 0).sum() / n if n else 0.0

    worst = None
    if monthly:
        # max() keeps the first of equal probabilities -> earliest month wins
        w = max(monthly, key=lambda s: s.shortfall_prob)
        worst = WorstMonth(month=w.month, month_index=w.month_index,
                           probability=w.shortfall_prob, amount=w.shortfall_p80)

    return KpiSummary(
        total_inflow_p10=percentile(totals_in, 0.10),
        total_inflow_p50=percentile(totals_in, 0.50),
        total_inflow_p80=percentile(totals_in, 0.80),
        total_inflow_p90=percentile(totals_in, 0.90),
        total_shortfall_p50=percentile(totals_short, 0.50),
        total_shortfall_p80=percentile(totals_short, 0.80),
        total_shortfall_p90=percentile(totals_short, 0.90),
        prob_shortfall_any_month=float(any_short),
        prob_meet_plan=1.0 - float(any_short),
        final_quarter_breach_prob=float(draws.final_quarter.sum() / n) if n else 0.0,
        red_months_count=sum(1 for s in monthly if s.shortfall_prob > 0.5),
        worst_month=worst,
        primary_driver=primary_driver(drivers),
        top_drivers=list(drivers[: config.top_driver_count]),
        monthly_coverage_prob={s.month: s.coverage_prob for s in monthly},
        monthly_shortfall_p80={s.month: s.shortfall_p80 for s in monthly},
        monthly_shortfall_prob={s.month: s.shortfall_prob for s in monthly},
    )


def monthly_stats_to_dataframe(stats: Sequence[MonthlyStats]) -> pd.DataFrame:
    """One row per month, one column per statistic."""
    return pd.DataFrame([s.to_dict() for s in stats])


def drivers_to_dataframe(drivers: Sequence[DriverImpact]) -> pd.DataFrame:
    return pd.DataFrame([asdict(d) for d in drivers],
                        columns=["name", "contribution", "mean_abs_contribution",
                                 "share_of_variance", "lever"])
