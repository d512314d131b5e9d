"""
Deterministic monthly operational risk score.

Three factors per month, each on a 0-100 scale:
  VELOCITY   month-over-month P50 demand ramp above max_velocity_change
  CAPACITY   P80 demand above max_monthly_burn
  LIQUIDITY  shortfall probability above liquidity_threshold

score = max of the three. Levels: > 80 CRITICAL, > 50 HIGH, > 20 MED, else LOW.
Level and primary factor are decided on the raw values; the reported score and
breakdown are rounded half-up to whole points.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

import pandas as pd

from core.config import RiskLimits
from core.schema import RISK_FACTORS

from .aggregator import MonthlyStats


@dataclass(frozen=True)
class RiskScore:
    month: int                  # 1-based month number
    month_label: str
    score: int
    level: str
    primary_factor: str
    breakdown: Dict[str, int]


def _whole_points(value: float) -> int:
    return int(math.floor(value + 0.5))


def risk_level(score: float) -> str:
    if score > 80:
        return "CRITICAL"
    if score > 50:
        return "HIGH"
    if score > 20:
        return "MED"
    return "LOW"


def velocity_score(current_p50: float, previous_p50: float, max_change: float) -> float:
    if previous_p50 <= 0:
        return 0.0
    ratio = current_p50 / previous_p50
    if ratio <= max_change:
        return 0.0
    return min(100.0, (ratio - max_change) / 0.5 * 100.0)


def capacity_score(demand_p80: float, max_burn: float) -> float:
    # A non-positive burn limit means "no limit configured"
    if max_burn <= 0 or demand_p80 <= max_burn:
        return 0.0
    return min(100.0, (demand_p80 - max_burn) / (0.2 * max_burn) * 100.0)


def liquidity_score(shortfall_prob: float, threshold: float) -> float:
    return shortfall_prob * 100.0 if shortfall_prob > threshold else 0.0


def score_months(stats: Sequence[MonthlyStats], limits: RiskLimits) -> List[RiskScore]:
    """One RiskScore per month, from the aggregator's monthly percentiles."""
    scores = []
    for i, current in enumerate(stats):
        velocity = 0.0
        if i > 0:
            velocity = velocity_score(current.demand_p50, stats[i - 1].demand_p50,
                                      limits.max_velocity_change)
        breakdown = {
            "VELOCITY": velocity,
            "CAPACITY": capacity_score(current.demand_p80, limits.max_monthly_burn),
            "LIQUIDITY": liquidity_score(current.shortfall_prob, limits.liquidity_threshold),
        }
        top = max(breakdown.values())
        primary = next(f for f in RISK_FACTORS if breakdown[f] == top)
        scores.append(RiskScore(
            month=i + 1,
            month_label=current.month,
            score=_whole_points(top),
            level=risk_level(top),
            primary_factor=primary,
            breakdown={f: _whole_points(v) for f, v in breakdown.items()},
        ))
    return scores


def risk_scores_to_dataframe(scores: Sequence[RiskScore]) -> pd.DataFrame:
    return pd.DataFrame(
        [{
            "month": s.month,
            "month_label": s.month_label,
            "score": s.score,
            "level": s.level,
            "primary_factor": s.primary_factor,
            "velocity": s.breakdown["VELOCITY"],
            "capacity": s.breakdown["CAPACITY"],
            "liquidity": s.breakdown["LIQUIDITY"],
        } for s in scores],
        columns=["month", "month_label", "score", "level", "primary_factor",
                 "velocity", "capacity", "liquidity"],
    )
