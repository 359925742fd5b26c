"""
costing_engines.fee_distribution -- Plan a monthly warehouse fee distribution.

Responsibility:
    Given the month's total fee and a snapshot of the eligible lots, compute
    each lot's value basis, value ratio and distributed fee.  The plan is
    computed completely before the service writes anything.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stateful side
    (locking, persistence, the PENDING -> DISTRIBUTED transition) lives in
    costing_services.warehouse_fee_service.

Invariants enforced:
    - value_at_time = quantity_remaining * unit_cost.  Fees a lot has
      already absorbed are not part of the basis.
    - sum(distributed_fee) == total_fee exactly.  The residual goes to the
      lot with the largest value_at_time; ties go to the earliest lot in
      the order given (FIFO order from the service).
    - value_ratio is a percentage of total value, 0 when total value is 0.

Failure modes:
    - A zero value basis produces a plan with ``has_basis == False`` and no
      lines.  The caller decides whether that is an error.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from costing_engines.allocation import (
    AllocationEngine,
    AllocationTarget,
    RoundingTargetPolicy,
)
from costing_engines.tracer import traced_engine
from costing_kernel.domain.values import round_money
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.fee_distribution")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class FeeBasisLot:
    """The part of a lot the distribution needs, as of the distribution moment."""

    lot_id: UUID
    quantity_remaining: Decimal
    unit_cost: Decimal

    @property
    def value(self) -> Decimal:
        return self.quantity_remaining * self.unit_cost


@dataclass(frozen=True)
class FeeDistributionLine:
    lot_id: UUID
    quantity_at_time: Decimal
    value_at_time: Decimal
    value_ratio: Decimal
    distributed_fee: Decimal
    absorbed_rounding: bool = False


@dataclass(frozen=True)
class FeeDistributionPlan:
    year_month: str
    total_fee: Decimal
    total_value: Decimal
    lines: tuple[FeeDistributionLine, ...]
    rounding_adjustment: Decimal = _ZERO

    @property
    def has_basis(self) -> bool:
        return self.total_value > _ZERO

    @property
    def lot_count(self) -> int:
        return len(self.lines)

    @property
    def total_distributed(self) -> Decimal:
        return sum((line.distributed_fee for line in self.lines), _ZERO)


@traced_engine(
    "fee_distribution",
    "1.0",
    fingerprint_fields=("year_month", "total_fee", "fee_decimal_places"),
)
def plan_fee_distribution(
    *,
    year_month: str,
    total_fee: Decimal,
    lots: Sequence[FeeBasisLot],
    fee_decimal_places: int,
    value_decimal_places: int = 6,
    ratio_decimal_places: int = 6,
) -> FeeDistributionPlan:
    """
    Apportion ``total_fee`` across ``lots`` weighted by landed value.

    Lots with no remaining quantity are skipped.  ``lots`` should arrive in
    FIFO order; that order breaks ties for the rounding residual.
    """
    basis = [
        (lot, round_money(lot.value, value_decimal_places))
        for lot in lots
        if lot.quantity_remaining > _ZERO
    ]
    total_value = sum((value for _, value in basis), _ZERO)

    if total_value == _ZERO:
        logger.warning(
            "fee_distribution_zero_basis",
            extra={"year_month": year_month, "lot_count": len(basis)},
        )
        return FeeDistributionPlan(
            year_month=year_month,
            total_fee=total_fee,
            total_value=_ZERO,
            lines=(),
        )

    allocation = AllocationEngine().allocate_prorata(
        amount=total_fee,
        targets=[AllocationTarget(target_id=lot.lot_id, weight=value) for lot, value in basis],
        decimal_places=fee_decimal_places,
        rounding_policy=RoundingTargetPolicy.LARGEST_WEIGHT,
    )

    lines = tuple(
        FeeDistributionLine(
            lot_id=lot.lot_id,
            quantity_at_time=lot.quantity_remaining,
            value_at_time=value,
            value_ratio=round_money(value / total_value * _HUNDRED, ratio_decimal_places),
            distributed_fee=alloc.allocated,
            absorbed_rounding=alloc.is_rounding_target,
        )
        for (lot, value), alloc in zip(basis, allocation.lines, strict=True)
    )

    return FeeDistributionPlan(
        year_month=year_month,
        total_fee=total_fee,
        total_value=total_value,
        lines=lines,
        rounding_adjustment=allocation.rounding_adjustment,
    )
