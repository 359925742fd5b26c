"""
Module: costing_kernel.selectors.inventory_selector
Responsibility: Inventory rollups and lot/movement queries derived directly
    from the lot ledger.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Nothing is cached.  Every call reads the lots as they are in the
      caller's transaction, so results follow writes immediately.
    - Lot listings are ordered by (received_date, id) ascending, the same
      order FIFO consumption uses.
    - Rollups only count lots with stock on hand.

Failure modes:
    - ProductNotFoundError from product_summary() / current_cost() for an
      unknown product id.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from costing_kernel.domain.dtos import (
    CostSource,
    CurrentCost,
    LotDTO,
    MovementDTO,
    ProductInfo,
    ProductSummary,
)
from costing_kernel.domain.values import MovementType, StorageLocation
from costing_kernel.exceptions import ProductNotFoundError
from costing_kernel.models.lot import InventoryLotModel
from costing_kernel.models.movement import InventoryMovementModel
from costing_kernel.models.product import ProductModel
from costing_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LotFilter:
    """Optional lot listing filters. ``received_from``/``received_to`` are inclusive."""

    product_id: UUID | None = None
    received_from: date | None = None
    received_to: date | None = None
    storage_location: StorageLocation | None = None
    source_transaction_id: str | None = None
    in_stock_only: bool = False


def summarize_lots(
    product_id: UUID,
    lots: Iterable[LotDTO],
    product: ProductInfo | None = None,
) -> ProductSummary:
    """Roll up the lots of one product. Lots without stock are ignored."""
    on_hand = [lot for lot in lots if lot.quantity_remaining > _ZERO]
    quantity = sum((lot.quantity_remaining for lot in on_hand), _ZERO)
    landed_value = sum((lot.landed_value for lot in on_hand), _ZERO)
    fee = sum((lot.accumulated_warehouse_fee for lot in on_hand), _ZERO)
    avg_unit_cost = landed_value / quantity if quantity > _ZERO else _ZERO

    return ProductSummary(
        product_id=product_id,
        quantity=quantity,
        avg_unit_cost=avg_unit_cost,
        landed_value=landed_value,
        accumulated_warehouse_fee=fee,
        current_value=landed_value + fee,
        lot_count=len(on_hand),
        product_code=product.code if product else None,
        product_name=product.name if product else None,
        unit=product.unit if product else None,
    )


class InventorySelector(BaseSelector):
    """Read side of the lot ledger."""

    # -------------------------------------------------------------------------
    # Lots
    # -------------------------------------------------------------------------

    def list_lots(self, filters: LotFilter | None = None) -> tuple[LotDTO, ...]:
        filters = filters or LotFilter()
        stmt = select(InventoryLotModel)
        if filters.product_id is not None:
            stmt = stmt.where(InventoryLotModel.product_id == filters.product_id)
        if filters.received_from is not None:
            stmt = stmt.where(InventoryLotModel.received_date >= filters.received_from)
        if filters.received_to is not None:
            stmt = stmt.where(InventoryLotModel.received_date <= filters.received_to)
        if filters.storage_location is not None:
            stmt = stmt.where(InventoryLotModel.storage_location == filters.storage_location)
        if filters.source_transaction_id is not None:
            stmt = stmt.where(
                InventoryLotModel.source_transaction_id == filters.source_transaction_id
            )
        if filters.in_stock_only:
            stmt = stmt.where(InventoryLotModel.quantity_remaining > 0)
        stmt = stmt.order_by(InventoryLotModel.received_date.asc(), InventoryLotModel.id.asc())

        return tuple(LotDTO.from_model(m) for m in self.session.scalars(stmt))

    def lot_detail(self, product_id: UUID) -> tuple[LotDTO, ...]:
        """Lots of ``product_id`` with stock on hand, oldest first."""
        return self.list_lots(LotFilter(product_id=product_id, in_stock_only=True))

    # -------------------------------------------------------------------------
    # Rollups
    # -------------------------------------------------------------------------

    def product_summary(self, product_id: UUID) -> ProductSummary:
        product = self._get_product(product_id)
        return summarize_lots(product_id, self.lot_detail(product_id), product)

    def inventory_overview(self) -> tuple[ProductSummary, ...]:
        """One summary per product with stock on hand, ordered by product code."""
        lots_by_product: dict[UUID, list[LotDTO]] = defaultdict(list)
        for lot in self.list_lots(LotFilter(in_stock_only=True)):
            lots_by_product[lot.product_id].append(lot)
        if not lots_by_product:
            return ()

        products = self.session.scalars(
            select(ProductModel)
            .where(ProductModel.id.in_(lots_by_product.keys()))
            .order_by(ProductModel.code.asc())
        )
        return tuple(
            summarize_lots(p.id, lots_by_product[p.id], ProductInfo.from_model(p))
            for p in products
        )

    def current_cost(
        self,
        product_id: UUID,
        locations: Iterable[StorageLocation] | None = None,
    ) -> CurrentCost:
        """
        Cost per unit including absorbed warehouse fees.

        CURRENT: sum(remaining * unit_cost + fee) / sum(remaining) over lots
        on hand in ``locations`` (all locations when None).
        DEFAULT: the product's default purchase price when no such lot exists.
        NONE: neither is available.
        """
        product = self._get_product(product_id)
        allowed = set(locations) if locations is not None else None

        lots = [
            lot
            for lot in self.lot_detail(product_id)
            if allowed is None or lot.storage_location in allowed
        ]
        quantity = sum((lot.quantity_remaining for lot in lots), _ZERO)
        if quantity > _ZERO:
            total = sum(
                (lot.landed_value + lot.accumulated_warehouse_fee for lot in lots), _ZERO
            )
            return CurrentCost(product_id, total / quantity, CostSource.CURRENT)
        if product.default_purchase_price is not None:
            return CurrentCost(product_id, product.default_purchase_price, CostSource.DEFAULT)
        return CurrentCost(product_id, None, CostSource.NONE)

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    def movement_history(
        self,
        product_id: UUID | None = None,
        movement_type: MovementType | None = None,
        limit: int | None = None,
    ) -> tuple[MovementDTO, ...]:
        """Movements newest first."""
        stmt = select(InventoryMovementModel)
        if product_id is not None:
            stmt = stmt.where(InventoryMovementModel.product_id == product_id)
        if movement_type is not None:
            stmt = stmt.where(InventoryMovementModel.movement_type == movement_type)
        stmt = stmt.order_by(
            InventoryMovementModel.movement_date.desc(),
            InventoryMovementModel.created_at.desc(),
            InventoryMovementModel.id.desc(),
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return tuple(MovementDTO.from_model(m) for m in self.session.scalars(stmt))

    def _get_product(self, product_id: UUID) -> ProductInfo:
        product = self.session.get(ProductModel, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return ProductInfo.from_model(product)
