from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta


def require_columns(df: pd.DataFrame, cols: Iterable[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def month_labels(start_month: str, n_months: int) -> List[str]:
    """
    Generate "YYYY-MM" labels for the projection horizon, starting at start_month.
    Accepts "YYYY-MM" or any date string pandas can parse (day is ignored).
    """
    start = pd.Timestamp(start_month).to_period("M").to_timestamp(how="start")
    return [(start + relativedelta(months=k)).strftime("%Y-%m") for k in range(n_months)]


def normalize_month(value) -> str:
    """Coerce a month cell (string, Timestamp, Period) to "YYYY-MM"."""
    return pd.Timestamp(str(value)).strftime("%Y-%m")


def order_statistic_index(n: int, p: float) -> int:
    """Index of the p-th order statistic in a sorted sample of size n."""
    return min(int(np.floor(n * p)), n - 1)


def sorted_percentile(sorted_values: np.ndarray, p: float) -> float:
    """
    Exact order-statistic percentile of an already sorted 1-D sample.
    Monotone in p, so P10 <= P50 <= P80 <= P90 always holds.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0
    return float(sorted_values[order_statistic_index(n, p)])


def percentile(values: np.ndarray, p: float) -> float:
    return sorted_percentile(np.sort(np.asarray(values, dtype=float)), p)


def column_percentiles(sorted_matrix: np.ndarray, p: float) -> np.ndarray:
    """Per-column order statistic of a matrix sorted along axis 0 (draws x months)."""
    n = sorted_matrix.shape[0]
    if n == 0:
        return np.zeros(sorted_matrix.shape[1], dtype=float)
    return sorted_matrix[order_statistic_index(n, p), :].astype(float)


def safe_div(num: float, den: float, default: Optional[float] = 0.0) -> Optional[float]:
    """num / den, or `default` when den is zero or non-finite."""
    if den == 0 or not np.isfinite(den):
        return default
    return num / den
