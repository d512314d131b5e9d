"""
Draw pool — runs N independent iteration-engine draws and stacks the results.

Every draw gets its own child seed from one root SeedSequence, so the outcome
is bit-identical whatever the chunking or number of workers. With n_workers > 1
chunks run on a fixed-size process pool and are merged back in draw order.

Cancellation is checked before every draw in-process, and between chunk results
when a process pool is used. A set event raises SimulationCancelled and no
partial result is returned.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from core.config import SimulationConfig
from core.model import ProjectDataset
from core.utils import percentile
from distributions.sampler import CorrelatedUniformSampler

from .iteration import DemandLayout, run_iteration

logger = logging.getLogger(__name__)


class SimulationCancelled(RuntimeError):
    """Raised when a run is superseded or cancelled mid-flight."""


@dataclass
class DrawSet:
    """
    All draws of one run, stacked: every monthly array is (n_draws, horizon).

    This is the materialised state the breach radar, kill-chain replay and
    aggregator read from; nothing downstream re-samples.
    """
    months: Tuple[str, ...]
    inflow: np.ndarray
    demand: np.ndarray
    shortfall: np.ndarray
    other_spend: np.ndarray
    available: np.ndarray
    cap_bound: np.ndarray
    first_breach: np.ndarray      # (n_draws,) -1 when never breached
    reliable: np.ndarray          # (n_draws,) bool
    final_quarter: np.ndarray     # (n_draws,) bool
    driver_keys: Tuple[str, ...]
    driver_deltas: np.ndarray     # (n_draws, n_slices)

    @property
    def n_draws(self) -> int:
        return self.inflow.shape[0]

    @property
    def horizon(self) -> int:
        return len(self.months)

    @property
    def total_inflow(self) -> np.ndarray:
        return self.inflow.sum(axis=1)

    @property
    def total_shortfall(self) -> np.ndarray:
        return self.shortfall.sum(axis=1)

    def to_dataframe(self, draw_ids: Optional[Sequence[int]] = None) -> pd.DataFrame:
        """Long table (draw_id, month, ...) for the selected draws (default: all)."""
        ids = np.arange(self.n_draws) if draw_ids is None else np.asarray(draw_ids, dtype=int)
        h = self.horizon
        return pd.DataFrame({
            "draw_id": np.repeat(ids, h),
            "month": np.tile(np.array(self.months, dtype=object), len(ids)),
            "demand": self.demand[ids].reshape(-1),
            "realizable_inflow": self.inflow[ids].reshape(-1),
            "shortfall": self.shortfall[ids].reshape(-1),
            "available": self.available[ids].reshape(-1),
            "other_spend": self.other_spend[ids].reshape(-1),
            "cap_bound": self.cap_bound[ids].reshape(-1),
        })

    def summary(self) -> pd.DataFrame:
        """Percentile summary of per-draw totals."""
        pcts = [0.10, 0.50, 0.80, 0.90]
        rows = []
        for name, arr in [("Total Demand", self.demand.sum(axis=1)),
                          ("Total Realizable Inflow", self.total_inflow),
                          ("Total Shortfall", self.total_shortfall)]:
            row = {"Variable": name,
                   "Mean": float(np.mean(arr)) if len(arr) else 0.0,
                   "Std": float(np.std(arr)) if len(arr) else 0.0}
            for p in pcts:
                row[f"P{int(p * 100):02d}"] = percentile(arr, p)
            rows.append(row)
        return pd.DataFrame(rows)


def _empty_chunk(n: int, horizon: int, n_slices: int) -> dict:
    return {
        "inflow": np.zeros((n, horizon)),
        "demand": np.zeros((n, horizon)),
        "shortfall": np.zeros((n, horizon)),
        "other_spend": np.zeros((n, horizon)),
        "available": np.zeros((n, horizon)),
        "cap_bound": np.zeros((n, horizon), dtype=bool),
        "first_breach": np.full(n, -1, dtype=int),
        "reliable": np.ones(n, dtype=bool),
        "final_quarter": np.zeros(n, dtype=bool),
        "driver_deltas": np.zeros((n, n_slices)),
    }


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SimulationCancelled("Simulation cancelled.")


def _run_chunk(
    dataset: ProjectDataset,
    layout: DemandLayout,
    sampler: CorrelatedUniformSampler,
    seeds: Sequence[np.random.SeedSequence],
    config: SimulationConfig,
    cancel_event: Optional[threading.Event],
) -> dict:
    out = _empty_chunk(len(seeds), dataset.horizon, layout.n_slices)
    for i, child in enumerate(seeds):
        _check_cancelled(cancel_event)
        res = run_iteration(
            dataset,
            layout,
            np.random.default_rng(child),
            sampler,
            volatility=config.volatility_factor,
            shortfall_epsilon=config.shortfall_epsilon,
            reliability_epsilon=config.reliability_epsilon,
            final_quarter_months=config.final_quarter_months,
        )
        out["inflow"][i] = res.monthly_inflow
        out["demand"][i] = res.monthly_demand
        out["shortfall"][i] = res.monthly_shortfall
        out["other_spend"][i] = res.monthly_other_spend
        out["available"][i] = res.monthly_available
        out["cap_bound"][i] = res.cap_bound
        out["first_breach"][i] = res.first_breach_month
        out["reliable"][i] = res.is_reliable
        out["final_quarter"][i] = res.final_quarter_breach
        out["driver_deltas"][i] = res.driver_deltas
    return out


def simulate_draws(
    dataset: ProjectDataset,
    layout: DemandLayout,
    sampler: CorrelatedUniformSampler,
    config: SimulationConfig,
    *,
    seed: int,
    iterations: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> DrawSet:
    """
    Run `iterations` draws (default: config.iterations) seeded from `seed`.

    Parameters
    ----------
    layout, sampler : compiled once per run by the caller (runner / sensitivity)
    seed : int
        Root seed; draw i always uses child i of SeedSequence(seed).
    cancel_event : threading.Event, optional
        Checked before every draw (between chunks when n_workers > 1).
    """
    n = config.iterations if iterations is None else int(iterations)
    children = np.random.SeedSequence(seed).spawn(n)

    chunk_size = config.chunk_size
    bounds = [(s, min(s + chunk_size, n)) for s in range(0, n, chunk_size)]

    chunks: List[Optional[dict]] = [None] * len(bounds)
    if config.n_workers > 1 and len(bounds) > 1:
        _check_cancelled(cancel_event)
        with ProcessPoolExecutor(max_workers=config.n_workers) as executor:
            futures = {
                executor.submit(_run_chunk, dataset, layout, sampler, children[s:e], config, None): k
                for k, (s, e) in enumerate(bounds)
            }
            for future in as_completed(futures):
                # worker processes cannot see the event; check between chunk results
                if cancel_event is not None and cancel_event.is_set():
                    for f in futures:
                        f.cancel()
                    logger.info("Cancellation requested during parallel draws")
                    raise SimulationCancelled("Simulation cancelled.")
                k = futures[future]
                chunks[k] = future.result()
                logger.debug("Completed draws %d-%d of %d", bounds[k][0], bounds[k][1], n)
    else:
        for k, (s, e) in enumerate(bounds):
            chunks[k] = _run_chunk(dataset, layout, sampler, children[s:e], config, cancel_event)
            logger.debug("Completed draws %d-%d of %d", s, e, n)

    if not chunks:
        merged = _empty_chunk(0, dataset.horizon, layout.n_slices)
    else:
        merged = {key: np.concatenate([c[key] for c in chunks], axis=0) for key in chunks[0]}

    return DrawSet(
        months=tuple(dataset.months),
        driver_keys=layout.slice_keys,
        **merged,
    )
