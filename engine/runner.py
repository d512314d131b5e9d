"""
Simulation runner — orchestrates one full funding-risk run.

    dataset ──> mitigation levers ──> N draws (iteration engine)
                                          │
          ┌──────────────┬────────────────┼──────────────┬──────────────┐
      aggregator    breach radar     kill chain     sensitivity     risk scorer
          └──────────────┴────────────────┴──────────────┴──────────────┘
                                          │
                                  SimulationResults

run_simulation() is a pure function of its arguments: no module state, no I/O.
An unseeded run draws fresh entropy and records the seed in diagnostics, so any
result can be reproduced exactly.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from core.config import KillChainThresholds, RiskLimits, SimulationConfig
from core.model import ProjectDataset
from distributions.correlation import build_correlation_matrix
from distributions.sampler import CorrelatedUniformSampler
from risk.aggregator import (
    Diagnostics,
    KpiSummary,
    MonthlyStats,
    aggregate_monthly,
    compute_kpis,
    consistency_check,
    drivers_to_dataframe,
    monthly_stats_to_dataframe,
    rank_drivers,
)
from risk.breach_radar import BreachRadar, compute_breach_radar
from risk.kill_chain import KillChain, replay_worst_draw
from risk.scoring import RiskScore, risk_scores_to_dataframe, score_months
from risk.sensitivity import SensitivityResult, run_sensitivity, sensitivity_to_dataframe

from .draws import DrawSet, simulate_draws
from .iteration import compile_layout
from .mitigation import MitigationLever, apply_levers

logger = logging.getLogger(__name__)


@dataclass
class SimulationResults:
    monthly_stats: List[MonthlyStats]
    kpis: KpiSummary
    diagnostics: Diagnostics
    breach_radar: BreachRadar
    kill_chain: KillChain
    sensitivity: List[SensitivityResult]
    risk_scores: List[RiskScore]
    sample_paths: pd.DataFrame
    draws: Optional[DrawSet] = field(default=None, repr=False)

    def monthly_frame(self) -> pd.DataFrame:
        return monthly_stats_to_dataframe(self.monthly_stats)

    def sensitivity_frame(self) -> pd.DataFrame:
        return sensitivity_to_dataframe(self.sensitivity)

    def risk_score_frame(self) -> pd.DataFrame:
        return risk_scores_to_dataframe(self.risk_scores)

    def driver_frame(self) -> pd.DataFrame:
        return drivers_to_dataframe(self.kpis.top_drivers)

    def kpi_frame(self) -> pd.DataFrame:
        """Two-column Metric / Value table of the headline KPIs."""
        k = self.kpis
        d = self.diagnostics
        rows = [
            ("Total Realizable Inflow P10", k.total_inflow_p10),
            ("Total Realizable Inflow P50", k.total_inflow_p50),
            ("Total Realizable Inflow P80", k.total_inflow_p80),
            ("Total Realizable Inflow P90", k.total_inflow_p90),
            ("Total Shortfall P50", k.total_shortfall_p50),
            ("Total Shortfall P80", k.total_shortfall_p80),
            ("Total Shortfall P90", k.total_shortfall_p90),
            ("Prob. Shortfall Any Month", k.prob_shortfall_any_month),
            ("Prob. Meet Plan", k.prob_meet_plan),
            ("Final-Quarter Breach Prob.", k.final_quarter_breach_prob),
            ("Red Months", k.red_months_count),
            ("Worst Month", k.worst_month.month if k.worst_month else None),
            ("Primary Driver", k.primary_driver.name),
            ("Seed", d.seed),
            ("Iterations", d.iterations),
            ("Cholesky Success", d.cholesky_success),
            ("Aggregation Healthy", d.aggregation_healthy),
        ]
        return pd.DataFrame(rows, columns=["Metric", "Value"])


def resolve_seed(seed: Optional[int]) -> int:
    """Return `seed`, or fresh entropy when it is None."""
    if seed is not None:
        return int(seed)
    return int(np.random.SeedSequence().entropy)


def build_bucket_sampler(dataset: ProjectDataset, corr_strength: float) -> CorrelatedUniformSampler:
    """Constant strength across engineering buckets; supplied pairwise values override it."""
    matrix = build_correlation_matrix(
        dataset.buckets, dataset.correlations, default_rho=corr_strength
    )
    return CorrelatedUniformSampler(matrix)


def run_simulation(
    dataset: ProjectDataset,
    config: Optional[SimulationConfig] = None,
    *,
    limits: Optional[RiskLimits] = None,
    thresholds: Optional[KillChainThresholds] = None,
    active_levers: Sequence[str] = (),
    lever_catalogue: Optional[Mapping[str, MitigationLever]] = None,
    cancel_event: Optional[threading.Event] = None,
    current_month_index: int = 0,
) -> SimulationResults:
    """
    Run the full Monte Carlo and every analysis over its draws.

    Parameters
    ----------
    dataset : ProjectDataset
        Immutable project inputs
    config : SimulationConfig, optional
        Iterations, seed, volatility, correlation strength, tolerances
    limits : RiskLimits, optional
        Limits for the deterministic risk scorer
    thresholds : KillChainThresholds, optional
        Severity tiers for kill-chain events
    active_levers : sequence of str
        Mitigation lever ids applied to the dataset before sampling
    lever_catalogue : mapping, optional
        Lever id -> MitigationLever (default: engine.mitigation.DEFAULT_LEVERS)
    cancel_event : threading.Event, optional
        When set, the run stops at the next draw with SimulationCancelled

    Raises
    ------
    SimulationCancelled
        If `cancel_event` is set before the run completes.
    """
    config = config or SimulationConfig()
    limits = limits or RiskLimits()
    thresholds = thresholds or KillChainThresholds()

    dataset, applied, unknown = apply_levers(dataset, active_levers, lever_catalogue)
    seed = resolve_seed(config.seed)

    logger.info(
        "Starting simulation for %s: %d iterations, %d months, seed=%d, levers=%s",
        dataset.meta.project_id, config.iterations, dataset.horizon, seed, applied or "none",
    )

    layout = compile_layout(dataset)
    sampler = build_bucket_sampler(dataset, config.corr_strength)

    draws = simulate_draws(
        dataset, layout, sampler, config, seed=seed, cancel_event=cancel_event
    )

    monthly = aggregate_monthly(draws, dataset, shortfall_epsilon=config.shortfall_epsilon)
    drivers = rank_drivers(draws)
    kpis = compute_kpis(draws, monthly, drivers, config=config)
    consistency = consistency_check(draws, monthly, tolerance=config.consistency_tolerance)
    if not consistency.healthy:
        logger.warning(
            "Aggregation divergence %.1f%% exceeds tolerance %.1f%% "
            "(P50 total %.2f vs sum of monthly P50 %.2f)",
            consistency.divergence * 100, consistency.tolerance * 100,
            consistency.sim_total_inflow_p50, consistency.sum_monthly_inflow_p50,
        )

    radar = compute_breach_radar(
        draws.first_breach, draws.months, current_month_index=current_month_index
    )
    kill_chain = replay_worst_draw(
        draws,
        dataset.demand,
        thresholds=thresholds,
        shortfall_epsilon=config.shortfall_epsilon,
        currency_unit=dataset.meta.currency_unit,
    )

    def reduced_run(adjusted: ProjectDataset, iterations: int) -> DrawSet:
        return simulate_draws(
            adjusted, compile_layout(adjusted), sampler, config,
            seed=seed, iterations=iterations, cancel_event=cancel_event,
        )

    sensitivity: List[SensitivityResult] = []
    if config.run_sensitivity:
        sensitivity = run_sensitivity(dataset, reduced_run, config)

    scores = score_months(monthly, limits)

    diagnostics = Diagnostics(
        seed=seed,
        iterations=draws.n_draws,
        horizon_months=dataset.horizon,
        cholesky_success=sampler.cholesky_success,
        planned_total_eng_inflow=math.fsum(dataset.eng_planned.tolist()),
        planned_total_eng_outflow=math.fsum(dataset.demand.tolist()),
        consistency=consistency,
        infeasible_draws=int((~draws.reliable).sum()),
        malformed_uncertainty_rows=dataset.malformed_uncertainty_rows,
        applied_levers=applied,
        unknown_levers=unknown,
    )

    n_paths = min(config.sample_path_count, draws.n_draws)
    logger.info(
        "Simulation finished for %s: P(meet plan)=%.3f, P80 total shortfall=%.2f",
        dataset.meta.project_id, kpis.prob_meet_plan, kpis.total_shortfall_p80,
    )

    return SimulationResults(
        monthly_stats=monthly,
        kpis=kpis,
        diagnostics=diagnostics,
        breach_radar=radar,
        kill_chain=kill_chain,
        sensitivity=sensitivity,
        risk_scores=scores,
        sample_paths=draws.to_dataframe(range(n_paths)),
        draws=draws,
    )
