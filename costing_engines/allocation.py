"""
Module: costing_engines.allocation
Responsibility:
    Split an amount across weighted targets in proportion to their weights,
    rounding each share and reconciling the residual deterministically.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: sum(line.allocated) == amount exactly.
    - The rounding residual lands on exactly one target, chosen by policy.
    - No share is negative.

Failure modes:
    - ValueError on a negative amount or weight, or on zero total weight.

Usage:
    engine = AllocationEngine()
    result = engine.allocate_prorata(
        amount=Decimal("500000"),
        targets=[
            AllocationTarget(target_id="lot-a", weight=Decimal("300000")),
            AllocationTarget(target_id="lot-b", weight=Decimal("700000")),
        ],
        decimal_places=0,
    )
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from enum import Enum

from costing_engines.tracer import traced_engine
from costing_kernel.domain.values import round_money
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

_ZERO = Decimal("0")


class RoundingTargetPolicy(str, Enum):
    """Which target absorbs the rounding residual."""

    LARGEST_WEIGHT = "largest_weight"  # ties go to the earliest target
    LAST = "last"


@dataclass(frozen=True)
class AllocationTarget:
    target_id: Hashable
    weight: Decimal

    def __post_init__(self) -> None:
        if self.weight < _ZERO:
            raise ValueError("Weight cannot be negative")


@dataclass(frozen=True)
class AllocationLine:
    target_id: Hashable
    weight: Decimal
    ratio: Decimal
    allocated: Decimal
    is_rounding_target: bool


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one pro-rata split.

    ``rounding_adjustment`` is what the rounding target received on top
    of its own rounded share.
    """

    amount: Decimal
    lines: tuple[AllocationLine, ...]
    rounding_adjustment: Decimal

    @property
    def total_allocated(self) -> Decimal:
        return sum((line.allocated for line in self.lines), _ZERO)

    def allocated_to(self, target_id: Hashable) -> Decimal:
        for line in self.lines:
            if line.target_id == target_id:
                return line.allocated
        raise KeyError(target_id)


def select_rounding_target(
    targets: Sequence[AllocationTarget],
    policy: RoundingTargetPolicy,
) -> int:
    if policy == RoundingTargetPolicy.LAST:
        return len(targets) - 1
    best = 0
    for i, target in enumerate(targets):
        if target.weight > targets[best].weight:
            best = i
    return best


class AllocationEngine:
    """
    Pro-rata allocation with deterministic rounding.

    Every share except the rounding target's is rounded half-up to
    ``decimal_places``.  The rounding target takes whatever is left, so
    the parts always add back to the amount.  When half-up rounding of
    many tiny shares would leave the rounding target negative, the other
    shares are rounded down instead.
    """

    @traced_engine(
        "allocation",
        "1.0",
        fingerprint_fields=("amount", "decimal_places", "rounding_policy"),
    )
    def allocate_prorata(
        self,
        *,
        amount: Decimal,
        targets: Sequence[AllocationTarget],
        decimal_places: int,
        rounding_policy: RoundingTargetPolicy = RoundingTargetPolicy.LARGEST_WEIGHT,
    ) -> AllocationResult:
        if amount < _ZERO:
            raise ValueError(f"Cannot allocate a negative amount: {amount}")
        if not targets:
            raise ValueError("Allocation requires at least one target")

        total_weight = sum((t.weight for t in targets), _ZERO)
        if total_weight == _ZERO:
            raise ValueError("Cannot allocate pro-rata with zero total weight")

        rounding_index = select_rounding_target(targets, rounding_policy)

        lines = self._split(amount, targets, total_weight, decimal_places, rounding_index, ROUND_HALF_UP)
        if lines[rounding_index].allocated < _ZERO:
            logger.info(
                "allocation_round_down_fallback",
                extra={"amount": str(amount), "target_count": len(targets)},
            )
            lines = self._split(amount, targets, total_weight, decimal_places, rounding_index, ROUND_DOWN)

        rounding_line = lines[rounding_index]
        own_share = round_money(amount * rounding_line.ratio, decimal_places)
        result = AllocationResult(
            amount=amount,
            lines=tuple(lines),
            rounding_adjustment=rounding_line.allocated - own_share,
        )

        # Conservation
        assert result.total_allocated == amount, (
            f"Allocation conservation violated: {result.total_allocated} != {amount}"
        )

        logger.debug(
            "allocation_prorata_completed",
            extra={
                "amount": str(amount),
                "target_count": len(targets),
                "rounding_target": str(rounding_line.target_id),
                "rounding_adjustment": str(result.rounding_adjustment),
            },
        )
        return result

    def _split(
        self,
        amount: Decimal,
        targets: Sequence[AllocationTarget],
        total_weight: Decimal,
        decimal_places: int,
        rounding_index: int,
        rounding: str,
    ) -> list[AllocationLine]:
        allocated_so_far = _ZERO
        shares: list[Decimal] = []
        for i, target in enumerate(targets):
            if i == rounding_index:
                shares.append(_ZERO)
                continue
            share = round_money(amount * target.weight / total_weight, decimal_places, rounding)
            shares.append(share)
            allocated_so_far += share
        shares[rounding_index] = amount - allocated_so_far

        return [
            AllocationLine(
                target_id=target.target_id,
                weight=target.weight,
                ratio=target.weight / total_weight,
                allocated=shares[i],
                is_rounding_target=i == rounding_index,
            )
            for i, target in enumerate(targets)
        ]
