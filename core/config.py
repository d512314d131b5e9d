"""
Simulation configuration.

SimulationConfig and RiskLimits are the engine's own settings (frozen, validated
on construction). RunRequest is the boundary model the calling layer fills in;
it converts to a SimulationConfig via to_config().
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class SimulationConfig:
    iterations: int = 5000
    seed: Optional[int] = None  # None -> fresh entropy, recorded in diagnostics

    # uncertainty scalars
    volatility_factor: float = 1.0
    corr_strength: float = 0.3

    # worker pool
    n_workers: int = 1
    chunk_size: int = 500

    # tolerances
    shortfall_epsilon: float = 0.01
    reliability_epsilon: float = 0.1
    consistency_tolerance: float = 0.20  # relative, P50(total) vs sum of monthly P50

    final_quarter_months: int = 3

    # output size controls
    sample_path_count: int = 50
    top_driver_count: int = 15

    # tornado
    run_sensitivity: bool = True
    sensitivity_perturbation: float = 0.20
    sensitivity_iterations: int = 500

    def __post_init__(self) -> None:
        if self.iterations <= 0:
            raise ValueError(f"iterations must be positive, got {self.iterations}")
        if self.seed is not None and self.seed < 0:
            raise ValueError(f"seed must be >= 0, got {self.seed}")
        if self.volatility_factor < 0:
            raise ValueError(f"volatility_factor must be >= 0, got {self.volatility_factor}")
        if not 0.0 <= self.corr_strength <= 1.0:
            raise ValueError(f"corr_strength must be in [0, 1], got {self.corr_strength}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.sensitivity_iterations <= 0:
            raise ValueError("sensitivity_iterations must be positive.")

    def with_overrides(self, **kwargs) -> "SimulationConfig":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class RiskLimits:
    """Operational limits used by the deterministic risk scorer."""
    max_monthly_burn: float = 100.0
    max_velocity_change: float = 1.5  # month-over-month P50 demand ratio
    liquidity_threshold: float = 0.1  # shortfall probability


@dataclass(frozen=True)
class KillChainThresholds:
    """Fixed magnitude tiers for replay events (same unit as the dataset, e.g. Cr)."""
    med: float = 1.0
    high: float = 5.0
    critical: float = 10.0
    cost_overrun: float = 0.10  # demand above baseline by this fraction -> COST event

    def tier(self, magnitude: float) -> str:
        if magnitude >= self.critical:
            return "CRITICAL"
        if magnitude >= self.high:
            return "HIGH"
        if magnitude >= self.med:
            return "MED"
        return "LOW"


class RunRequest(BaseModel):
    """Run parameters as submitted by the calling layer."""

    iterations: int = Field(5000, gt=0)
    seed: Optional[int] = Field(None, ge=0)
    volatility_factor: float = Field(1.0, ge=0.0)
    corr_strength: float = Field(0.3, ge=0.0, le=1.0)
    active_levers: List[str] = Field(default_factory=list)

    def to_config(self, base: Optional[SimulationConfig] = None) -> SimulationConfig:
        base = base or SimulationConfig()
        return base.with_overrides(
            iterations=self.iterations,
            seed=self.seed,
            volatility_factor=self.volatility_factor,
            corr_strength=self.corr_strength,
        )
