"""
costing_engines.unit_cost -- Landed unit cost of a receipt.

unit_cost = (goods_amount + duty_amount + domestic_freight + other_cost)
            / quantity_received

Pure and deterministic.  Validation happens here so that the Lot Ledger
rejects bad input before anything reaches the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_kernel.domain.values import round_money
from costing_kernel.exceptions import InvalidQuantityError, NegativeCostError

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LandedCost:
    """The four cost components of a receipt and the quantity they bought."""

    goods_amount: Decimal
    duty_amount: Decimal
    domestic_freight: Decimal
    other_cost: Decimal
    quantity_received: Decimal

    @property
    def total_cost(self) -> Decimal:
        return self.goods_amount + self.duty_amount + self.domestic_freight + self.other_cost


def validate_landed_cost(cost: LandedCost) -> None:
    """Raise InvalidQuantityError / NegativeCostError for unusable input."""
    if cost.quantity_received <= _ZERO:
        raise InvalidQuantityError("quantity_received", cost.quantity_received)
    for field in ("goods_amount", "duty_amount", "domestic_freight", "other_cost"):
        amount = getattr(cost, field)
        if amount < _ZERO:
            raise NegativeCostError(field, amount)


@traced_engine(
    "unit_cost",
    "1.0",
    fingerprint_fields=(
        "goods_amount",
        "duty_amount",
        "domestic_freight",
        "other_cost",
        "quantity_received",
    ),
)
def compute_unit_cost(
    *,
    goods_amount: Decimal,
    duty_amount: Decimal,
    domestic_freight: Decimal,
    other_cost: Decimal,
    quantity_received: Decimal,
    decimal_places: int | None = None,
) -> Decimal:
    """
    Landed unit cost of one receipt.

    Args:
        decimal_places: Round half-up to this many places.  None keeps the
            full Decimal context precision.

    Raises:
        InvalidQuantityError: quantity_received <= 0.
        NegativeCostError: any cost component < 0.
    """
    cost = LandedCost(
        goods_amount=goods_amount,
        duty_amount=duty_amount,
        domestic_freight=domestic_freight,
        other_cost=other_cost,
        quantity_received=quantity_received,
    )
    validate_landed_cost(cost)

    unit_cost = cost.total_cost / cost.quantity_received
    if decimal_places is not None:
        unit_cost = round_money(unit_cost, decimal_places)
    return unit_cost
