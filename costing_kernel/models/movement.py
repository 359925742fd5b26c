"""
Module: costing_kernel.models.movement
Responsibility: Inbound/outbound movement history per lot.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Every lot creation writes one IN row.  Every consumption writes one OUT row
per lot drawn.  Rows are removed together with their lot.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.domain.values import MovementType


class InventoryMovementModel(TrackedBase):
    __tablename__ = "inventory_movements"

    __table_args__ = (
        Index("idx_movement_product_date", "product_id", "movement_date"),
        Index("idx_movement_lot", "lot_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_lots.id", ondelete="CASCADE"),
        nullable=False,
    )

    movement_type: Mapped[MovementType] = mapped_column(
        Enum(MovementType, native_enum=False, length=10),
        nullable=False,
    )

    movement_date: Mapped[date] = mapped_column(Date, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(nullable=False)

    # Sales order, shipment or import reference
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<InventoryMovementModel {self.movement_type.value} {self.quantity} lot={self.lot_id}>"
