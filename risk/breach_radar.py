"""
Breach radar: WHEN does the money first run out?

For every draw the iteration engine records the first month whose shortfall
exceeds epsilon (-1 when the draw never breaches). The radar summarises those
indexes over the breaching draws only:

    earliest breach P50 / P80   (month index and label)
    time to breach P50 / P80    (months from the current month)
    distribution over months    (sums to 1 across breaching draws)

Each distribution entry also carries its unconditional share of ALL draws, so
"40% of breaches happen in 2025-07" and "12% of futures breach first in
2025-07" are both available without recomputation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from core.utils import sorted_percentile


@dataclass(frozen=True)
class BreachMonth:
    month: str
    month_index: int
    probability: float      # share of breaching draws
    share_of_draws: float   # share of all draws


@dataclass
class BreachRadar:
    n_draws: int
    n_breaching: int
    earliest_breach_index_p50: Optional[int] = None
    earliest_breach_index_p80: Optional[int] = None
    earliest_breach_month_p50: Optional[str] = None
    earliest_breach_month_p80: Optional[str] = None
    time_to_breach_p50: Optional[int] = None
    time_to_breach_p80: Optional[int] = None
    distribution: List[BreachMonth] = field(default_factory=list)

    @property
    def any_breach(self) -> bool:
        return self.n_breaching > 0

    @property
    def breach_probability(self) -> float:
        return self.n_breaching / self.n_draws if self.n_draws else 0.0

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(b.month, b.month_index, b.probability, b.share_of_draws) for b in self.distribution],
            columns=["month", "month_index", "probability", "share_of_draws"],
        )


def compute_breach_radar(
    first_breach: np.ndarray,
    months: Sequence[str],
    *,
    current_month_index: int = 0,
) -> BreachRadar:
    """
    Parameters
    ----------
    first_breach : np.ndarray
        (n_draws,) first breach month index per draw, -1 for no breach
    months : sequence of str
        Month labels, indexed by month position
    current_month_index : int
        Reference month for the time-to-breach figures
    """
    first_breach = np.asarray(first_breach, dtype=int)
    n = len(first_breach)
    breaching = np.sort(first_breach[first_breach >= 0])
    k = len(breaching)

    if k == 0:
        return BreachRadar(n_draws=n, n_breaching=0)

    p50 = int(sorted_percentile(breaching, 0.50))
    p80 = int(sorted_percentile(breaching, 0.80))
    counts = np.bincount(breaching, minlength=len(months))

    distribution = [
        BreachMonth(
            month=label,
            month_index=m,
            probability=float(counts[m] / k),
            share_of_draws=float(counts[m] / n),
        )
        for m, label in enumerate(months)
    ]

    return BreachRadar(
        n_draws=n,
        n_breaching=k,
        earliest_breach_index_p50=p50,
        earliest_breach_index_p80=p80,
        earliest_breach_month_p50=months[p50],
        earliest_breach_month_p80=months[p80],
        time_to_breach_p50=p50 - current_month_index,
        time_to_breach_p80=p80 - current_month_index,
        distribution=distribution,
    )
