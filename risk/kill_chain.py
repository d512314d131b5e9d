"""
Kill-chain replay: the story of the single worst future.

A pure projection over the stored draws; nothing is re-simulated.

Worst draw = highest total shortfall. Ties go to the earliest first breach,
then to the lowest draw id, so the same DrawSet always replays the same draw.

For each month of that draw, events are emitted in a fixed order:
    COST         demand at least `cost_overrun` above the baseline
    FUNDING_CAP  the project cap constrained the month
    LIQUIDITY    shortfall above epsilon
Severity comes from fixed thresholds on the event's magnitude (in currency units).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import numpy as np
import pandas as pd

from core.config import KillChainThresholds

if TYPE_CHECKING:
    from engine.draws import DrawSet


@dataclass(frozen=True)
class KillChainEvent:
    month: str
    month_index: int
    impact_type: str   # COST | FUNDING_CAP | LIQUIDITY
    severity: str      # LOW | MED | HIGH | CRITICAL
    magnitude: float
    description: str


@dataclass
class KillChain:
    iteration_id: int              # -1 when there are no draws
    total_shortfall: float
    first_breach_month: Optional[str] = None
    events: List[KillChainEvent] = field(default_factory=list)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(e.month, e.month_index, e.impact_type, e.severity, e.magnitude, e.description)
             for e in self.events],
            columns=["month", "month_index", "impact_type", "severity", "magnitude", "description"],
        )


def select_worst_draw(draws: DrawSet) -> int:
    """Index of the worst draw, or -1 for an empty DrawSet."""
    if draws.n_draws == 0:
        return -1
    totals = [math.fsum(row) for row in draws.shortfall]
    breach = [b if b >= 0 else math.inf for b in draws.first_breach.tolist()]
    return min(range(draws.n_draws), key=lambda i: (-totals[i], breach[i], i))


def replay_worst_draw(
    draws: DrawSet,
    baseline_demand: np.ndarray,
    *,
    thresholds: Optional[KillChainThresholds] = None,
    shortfall_epsilon: float = 0.01,
    currency_unit: str = "Cr",
) -> KillChain:
    """
    Build the event log of the worst draw.

    Parameters
    ----------
    draws : DrawSet
    baseline_demand : np.ndarray
        (horizon,) unperturbed engineering demand, the reference for COST events
    thresholds : KillChainThresholds, optional
        Severity tiers and the cost-overrun trigger
    """
    thresholds = thresholds or KillChainThresholds()
    worst = select_worst_draw(draws)
    if worst < 0:
        return KillChain(iteration_id=-1, total_shortfall=0.0)

    demand = draws.demand[worst]
    shortfall = draws.shortfall[worst]
    available = draws.available[worst]
    cap_bound = draws.cap_bound[worst]
    first = int(draws.first_breach[worst])

    events: List[KillChainEvent] = []
    for m, month in enumerate(draws.months):
        base = float(baseline_demand[m])
        dem = float(demand[m])

        if base > 0 and dem >= base * (1.0 + thresholds.cost_overrun):
            overrun = dem - base
            events.append(KillChainEvent(
                month=month,
                month_index=m,
                impact_type="COST",
                severity=thresholds.tier(overrun),
                magnitude=overrun,
                description=(f"Cost overrun: demand {dem:.2f} {currency_unit} vs baseline "
                             f"{base:.2f} {currency_unit} (+{overrun / base:.1%})"),
            ))

        squeeze = max(0.0, dem - float(available[m])) if cap_bound[m] else 0.0
        if squeeze > shortfall_epsilon:
            events.append(KillChainEvent(
                month=month,
                month_index=m,
                impact_type="FUNDING_CAP",
                severity=thresholds.tier(squeeze),
                magnitude=squeeze,
                description=(f"Funding cap bound: engineering budget limited to "
                             f"{float(available[m]):.2f} {currency_unit}"),
            ))

        gap = float(shortfall[m])
        if gap > shortfall_epsilon:
            events.append(KillChainEvent(
                month=month,
                month_index=m,
                impact_type="LIQUIDITY",
                severity=thresholds.tier(gap),
                magnitude=gap,
                description=f"Liquidity breach: {gap:.2f} {currency_unit} shortfall",
            ))

    return KillChain(
        iteration_id=worst,
        total_shortfall=math.fsum(shortfall.tolist()),
        first_breach_month=draws.months[first] if first >= 0 else None,
        events=events,
    )
