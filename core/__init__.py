"""
Core package — data model, schema definitions, configuration, and shared utilities.
No business logic lives here.
"""

from .schema import (
    ENGINEERING_DEPT,
    ENG_BUCKET,
    COST_COMPONENT,
    DEPT,
    ROLLOVER_NEXT_MONTH,
    LAPSE,
)
from .config import KillChainThresholds, RiskLimits, RunRequest, SimulationConfig
from .model import NEUTRAL, ProjectDataset, ProjectMeta, UncertaintyParam
from .utils import require_columns, month_labels, percentile, safe_div

__all__ = [
    "ENGINEERING_DEPT",
    "ENG_BUCKET",
    "COST_COMPONENT",
    "DEPT",
    "ROLLOVER_NEXT_MONTH",
    "LAPSE",
    "KillChainThresholds",
    "RiskLimits",
    "RunRequest",
    "SimulationConfig",
    "NEUTRAL",
    "ProjectDataset",
    "ProjectMeta",
    "UncertaintyParam",
    "require_columns",
    "month_labels",
    "percentile",
    "safe_div",
]
