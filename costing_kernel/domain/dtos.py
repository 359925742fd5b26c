"""
DTOs -- immutable read results crossing the service/selector boundary.

Services and selectors return these instead of ORM instances, so callers
can hold them after the session closes.  ``from_model`` converters are
called only from services and selectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from costing_kernel.domain.values import MovementType, StorageLocation

if TYPE_CHECKING:
    from costing_kernel.models.lot import InventoryLotModel
    from costing_kernel.models.movement import InventoryMovementModel
    from costing_kernel.models.product import ProductModel
    from costing_kernel.models.warehouse_fee import (
        WarehouseFeeDistributionModel,
        WarehouseFeeModel,
    )

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    code: str
    name: str
    unit: str
    category: str | None = None
    default_purchase_price: Decimal | None = None

    @classmethod
    def from_model(cls, model: ProductModel) -> ProductInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            unit=model.unit,
            category=model.category,
            default_purchase_price=model.default_purchase_price,
        )


@dataclass(frozen=True)
class LotDTO:
    """A lot as of the moment it was read."""

    id: UUID
    product_id: UUID
    lot_code: str | None
    received_date: date
    quantity_received: Decimal
    quantity_remaining: Decimal
    goods_amount: Decimal
    duty_amount: Decimal
    domestic_freight: Decimal
    other_cost: Decimal
    unit_cost: Decimal
    accumulated_warehouse_fee: Decimal
    storage_location: StorageLocation
    source_transaction_id: str | None = None

    @property
    def landed_value(self) -> Decimal:
        return self.quantity_remaining * self.unit_cost

    @property
    def current_unit_cost(self) -> Decimal:
        """Unit cost including absorbed fees spread over the stock still on hand."""
        if self.quantity_remaining > _ZERO:
            return self.unit_cost + self.accumulated_warehouse_fee / self.quantity_remaining
        return self.unit_cost

    @classmethod
    def from_model(cls, model: InventoryLotModel) -> LotDTO:
        return cls(
            id=model.id,
            product_id=model.product_id,
            lot_code=model.lot_code,
            received_date=model.received_date,
            quantity_received=model.quantity_received,
            quantity_remaining=model.quantity_remaining,
            goods_amount=model.goods_amount,
            duty_amount=model.duty_amount,
            domestic_freight=model.domestic_freight,
            other_cost=model.other_cost,
            unit_cost=model.unit_cost,
            accumulated_warehouse_fee=model.accumulated_warehouse_fee,
            storage_location=StorageLocation(model.storage_location),
            source_transaction_id=model.source_transaction_id,
        )


@dataclass(frozen=True)
class ProductSummary:
    """
    Rollup of one product's lots.

    avg_unit_cost is weighted by remaining quantity and is 0 when nothing
    is on hand.  current_value = landed_value + accumulated_warehouse_fee.
    """

    product_id: UUID
    quantity: Decimal
    avg_unit_cost: Decimal
    landed_value: Decimal
    accumulated_warehouse_fee: Decimal
    current_value: Decimal
    lot_count: int
    product_code: str | None = None
    product_name: str | None = None
    unit: str | None = None


class CostSource(str, Enum):
    CURRENT = "CURRENT"  # computed from lots on hand
    DEFAULT = "DEFAULT"  # product's default purchase price
    NONE = "NONE"


@dataclass(frozen=True)
class CurrentCost:
    product_id: UUID
    cost: Decimal | None
    source: CostSource


@dataclass(frozen=True)
class MovementDTO:
    id: UUID
    product_id: UUID
    lot_id: UUID
    movement_type: MovementType
    movement_date: date
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    reference: str | None

    @classmethod
    def from_model(cls, model: InventoryMovementModel) -> MovementDTO:
        return cls(
            id=model.id,
            product_id=model.product_id,
            lot_id=model.lot_id,
            movement_type=MovementType(model.movement_type),
            movement_date=model.movement_date,
            quantity=model.quantity,
            unit_cost=model.unit_cost,
            total_cost=model.total_cost,
            reference=model.reference,
        )


@dataclass(frozen=True)
class ConsumptionDetail:
    """Quantity drawn from one lot by a consumption."""

    lot_id: UUID
    lot_code: str | None
    received_date: date
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class ConsumptionResult:
    product_id: UUID
    quantity: Decimal
    total_cost: Decimal
    details: tuple[ConsumptionDetail, ...]
    outbound_date: date
    reference: str | None = None


@dataclass(frozen=True)
class DistributionLineDTO:
    lot_id: UUID
    quantity_at_time: Decimal
    value_at_time: Decimal
    value_ratio: Decimal
    distributed_fee: Decimal

    @classmethod
    def from_model(cls, model: WarehouseFeeDistributionModel) -> DistributionLineDTO:
        return cls(
            lot_id=model.lot_id,
            quantity_at_time=model.quantity_at_time,
            value_at_time=model.value_at_time,
            value_ratio=model.value_ratio,
            distributed_fee=model.distributed_fee,
        )


@dataclass(frozen=True)
class WarehouseFeeDTO:
    id: UUID
    year_month: str
    total_fee: Decimal
    status: str
    distributed_at: datetime | None
    total_value_at_distribution: Decimal | None
    lot_count_at_distribution: int | None
    memo: str | None
    distributions: tuple[DistributionLineDTO, ...] = ()

    @property
    def is_distributed(self) -> bool:
        return self.status == "DISTRIBUTED"

    @classmethod
    def from_model(
        cls,
        model: WarehouseFeeModel,
        include_distributions: bool = False,
    ) -> WarehouseFeeDTO:
        lines: tuple[DistributionLineDTO, ...] = ()
        if include_distributions:
            lines = tuple(DistributionLineDTO.from_model(d) for d in model.distributions)
        return cls(
            id=model.id,
            year_month=model.year_month,
            total_fee=model.total_fee,
            status=model.status.value,
            distributed_at=model.distributed_at,
            total_value_at_distribution=model.total_value_at_distribution,
            lot_count_at_distribution=model.lot_count_at_distribution,
            memo=model.memo,
            distributions=lines,
        )


@dataclass(frozen=True)
class DistributionResult:
    """What one successful distribute() run wrote."""

    year_month: str
    total_fee: Decimal
    total_value: Decimal
    lot_count: int
    distributed_at: datetime
    lines: tuple[DistributionLineDTO, ...]
    rounding_adjustment: Decimal = _ZERO

    @property
    def total_distributed(self) -> Decimal:
        return sum((line.distributed_fee for line in self.lines), _ZERO)
