"""Portfolio Management Layer.

This layer turns a rebalancing policy and a broker snapshot into a buy-only
allocation plan.

Components:
- Policy / Snapshot: Validated inputs
- allocate: Pure cash-flow allocation engine
- Plan / Leg: Allocation output
- validate_policy / validate_snapshot: Input gate
- load_policy: Policy JSON loader
"""

from ledgerrun.portfolio.allocation import allocate
from ledgerrun.portfolio.base import (
    AllocationMode,
    AllocationOptions,
    DriftConfig,
    DriftKind,
    Leg,
    Plan,
    PlanStatus,
    Policy,
    Position,
    ReasonCode,
    Snapshot,
    Target,
    aggregate_positions,
)
from ledgerrun.portfolio.policy_loader import load_policy
from ledgerrun.portfolio.validation import (
    WEIGHT_SUM_EPSILON,
    validate_policy,
    validate_snapshot,
)

__all__ = [
    # Engine
    "allocate",
    "AllocationOptions",
    "aggregate_positions",
    # Data classes
    "Policy",
    "Target",
    "DriftConfig",
    "Snapshot",
    "Position",
    "Plan",
    "Leg",
    # Enums
    "AllocationMode",
    "DriftKind",
    "PlanStatus",
    "ReasonCode",
    # Validation
    "validate_policy",
    "validate_snapshot",
    "WEIGHT_SUM_EPSILON",
    "load_policy",
]
