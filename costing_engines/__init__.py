"""
Costing engines -- pure calculation layer.

No database access, no configuration lookups, no wall-clock reads.
Services snapshot what they need and pass it in.
"""

from costing_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationResult,
    AllocationTarget,
    RoundingTargetPolicy,
)
from costing_engines.fee_distribution import (
    FeeBasisLot,
    FeeDistributionLine,
    FeeDistributionPlan,
    plan_fee_distribution,
)
from costing_engines.fifo import FifoDraw, FifoLot, FifoPlan, plan_fifo_drawdown
from costing_engines.unit_cost import LandedCost, compute_unit_cost, validate_landed_cost

__all__ = [
    "AllocationEngine",
    "AllocationLine",
    "AllocationResult",
    "AllocationTarget",
    "RoundingTargetPolicy",
    "FeeBasisLot",
    "FeeDistributionLine",
    "FeeDistributionPlan",
    "plan_fee_distribution",
    "FifoDraw",
    "FifoLot",
    "FifoPlan",
    "plan_fifo_drawdown",
    "LandedCost",
    "compute_unit_cost",
    "validate_landed_cost",
]
