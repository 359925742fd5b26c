"""
costing_engines.fifo -- FIFO drawdown planning across a product's lots.

The consumption order is an explicit contract: ascending received_date,
ties broken by ascending lot id.  The engine sorts its input itself, so
callers cannot change the order by accident.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from costing_engines.tracer import traced_engine
from costing_kernel.domain.values import round_money
from costing_kernel.exceptions import InsufficientQuantityError, InvalidQuantityError

_ZERO = Decimal("0")


@dataclass(frozen=True)
class FifoLot:
    lot_id: UUID
    received_date: date
    quantity_remaining: Decimal
    unit_cost: Decimal
    lot_code: str | None = None


@dataclass(frozen=True)
class FifoDraw:
    """Quantity taken from one lot."""

    lot_id: UUID
    lot_code: str | None
    received_date: date
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class FifoPlan:
    requested: Decimal
    draws: tuple[FifoDraw, ...]

    @property
    def total_cost(self) -> Decimal:
        return sum((d.total_cost for d in self.draws), _ZERO)

    @property
    def total_quantity(self) -> Decimal:
        return sum((d.quantity for d in self.draws), _ZERO)


def fifo_sort_key(lot: FifoLot) -> tuple[date, UUID]:
    return (lot.received_date, lot.lot_id)


@traced_engine("fifo", "1.0", fingerprint_fields=("quantity", "lots"))
def plan_fifo_drawdown(
    *,
    lots: Sequence[FifoLot],
    quantity: Decimal,
    cost_decimal_places: int = 6,
    product_id: str | None = None,
) -> FifoPlan:
    """
    Draw ``quantity`` from the oldest lots with stock first.

    Raises:
        InvalidQuantityError: quantity <= 0.
        InsufficientQuantityError: the lots together hold less than quantity.
            Nothing is planned in that case.
    """
    if quantity <= _ZERO:
        raise InvalidQuantityError("quantity", quantity)

    ordered = sorted((lot for lot in lots if lot.quantity_remaining > _ZERO), key=fifo_sort_key)
    available = sum((lot.quantity_remaining for lot in ordered), _ZERO)
    if available < quantity:
        raise InsufficientQuantityError(quantity, available, product_id=product_id)

    draws: list[FifoDraw] = []
    outstanding = quantity
    for lot in ordered:
        if outstanding == _ZERO:
            break
        take = min(outstanding, lot.quantity_remaining)
        draws.append(
            FifoDraw(
                lot_id=lot.lot_id,
                lot_code=lot.lot_code,
                received_date=lot.received_date,
                quantity=take,
                unit_cost=lot.unit_cost,
                total_cost=round_money(take * lot.unit_cost, cost_decimal_places),
            )
        )
        outstanding -= take

    return FifoPlan(requested=quantity, draws=tuple(draws))
