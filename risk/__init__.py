"""
Risk package — everything computed from the stored draws of one run.

  1. aggregator.py   — monthly percentiles, KPIs, driver ranking, diagnostics
  2. breach_radar.py — distribution of the first breach month
  3. kill_chain.py   — event replay of the worst draw
  4. sensitivity.py  — tornado ranking via common-random-number re-runs
  5. scoring.py      — deterministic velocity / capacity / liquidity score
"""

from .aggregator import (
    ConsistencyCheck,
    Diagnostics,
    DriverImpact,
    KpiSummary,
    MonthlyStats,
    WorstMonth,
    aggregate_monthly,
    compute_kpis,
    consistency_check,
    rank_drivers,
)
from .breach_radar import BreachMonth, BreachRadar, compute_breach_radar
from .kill_chain import KillChain, KillChainEvent, replay_worst_draw
from .scoring import RiskScore, score_months
from .sensitivity import SensitivityResult, run_sensitivity

__all__ = [
    "ConsistencyCheck",
    "Diagnostics",
    "DriverImpact",
    "KpiSummary",
    "MonthlyStats",
    "WorstMonth",
    "aggregate_monthly",
    "compute_kpis",
    "consistency_check",
    "rank_drivers",
    "BreachMonth",
    "BreachRadar",
    "compute_breach_radar",
    "KillChain",
    "KillChainEvent",
    "replay_worst_draw",
    "RiskScore",
    "score_months",
    "SensitivityResult",
    "run_sensitivity",
]
