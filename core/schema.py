from __future__ import annotations

from typing import Tuple

# Canonical input table columns (as handed over by the external data loader).
# The dataset builder enforces that these columns are present.
ALLOCATION_COLUMNS: Tuple[str, ...] = (
    "month",
    "dept_id",
    "planned_inflow_cr",
)

DEMAND_COLUMNS: Tuple[str, ...] = (
    "month",
    "engineering_demand_total_cr",
)

BUCKET_SHARE_COLUMNS: Tuple[str, ...] = (
    "bucket_id",
    "share_of_engineering_demand",
)

COMPONENT_SHARE_COLUMNS: Tuple[str, ...] = (
    "bucket_id",
    "cost_component",
    "share_within_bucket",
)

UNCERTAINTY_COLUMNS: Tuple[str, ...] = (
    "entity_type",
    "entity_id",
    "low_mult",
    "mode_mult",
    "high_mult",
    "ramp_pct_total",
)

CORRELATION_COLUMNS: Tuple[str, ...] = (
    "entity_a",
    "entity_b",
    "corr",
)

# Identifiers
ENGINEERING_DEPT = "ENGINEERING"

ENG_BUCKET = "ENG_BUCKET"
COST_COMPONENT = "COST_COMPONENT"
DEPT = "DEPT"
ENTITY_TYPES: Tuple[str, ...] = (ENG_BUCKET, COST_COMPONENT, DEPT)

ROLLOVER_NEXT_MONTH = "ROLLOVER_NEXT_MONTH"
LAPSE = "LAPSE"
UNDERSPEND_POLICIES: Tuple[str, ...] = (ROLLOVER_NEXT_MONTH, LAPSE)

# Risk scorer factors, in tie-break priority order
RISK_FACTORS: Tuple[str, ...] = ("VELOCITY", "CAPACITY", "LIQUIDITY")
