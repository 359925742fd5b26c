"""
Module: costing_kernel.models.lot
Responsibility: ORM persistence for inventory lots, one row per receipt.
Architecture position: Kernel > Models.  May import from db/ and
    domain/values only.

Invariants enforced:
    - 0 <= quantity_remaining <= quantity_received (CHECK constraint).
    - quantity_received > 0 (CHECK constraint); unit_cost is undefined otherwise.
    - Cost components and unit_cost are immutable after INSERT.  Fee accrual
      goes to accumulated_warehouse_fee, never into unit_cost.
    - accumulated_warehouse_fee only grows.

Failure modes:
    - IntegrityError on a CHECK violation.  Services validate first, so this
      only fires on a bug or a direct SQL write.
    - IntegrityError (ON DELETE RESTRICT) when deleting a lot that has
      warehouse fee distributions.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.domain.values import StorageLocation


class InventoryLotModel(TrackedBase):
    """
    A single receipt batch of a product with its own landed unit cost.

    Rows are mutated in exactly two ways: outbound consumption lowers
    quantity_remaining, and fee distribution raises
    accumulated_warehouse_fee.  FIFO order is (received_date, id) ascending;
    the composite index below serves that scan.
    """

    __tablename__ = "inventory_lots"

    # On SQLite these compare ExactDecimal text against the literal as text
    __table_args__ = (
        CheckConstraint("quantity_received > 0", name="ck_lot_qty_received_positive"),
        CheckConstraint(
            "quantity_remaining >= 0 AND quantity_remaining <= quantity_received",
            name="ck_lot_qty_remaining_bounds",
        ),
        CheckConstraint(
            "accumulated_warehouse_fee >= 0", name="ck_lot_fee_non_negative"
        ),
        Index("idx_lot_product_fifo", "product_id", "received_date", "id"),
        Index("idx_lot_storage_location", "storage_location"),
        Index("idx_lot_source_txn", "source_transaction_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Human label, e.g. a BL number or IE-<import>-<n>
    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    received_date: Mapped[date] = mapped_column(Date, nullable=False)

    quantity_received: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_remaining: Mapped[Decimal] = mapped_column(nullable=False)

    goods_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    duty_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    domestic_freight: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    other_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    accumulated_warehouse_fee: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    storage_location: Mapped[StorageLocation] = mapped_column(
        Enum(StorageLocation, native_enum=False, length=20),
        nullable=False,
        default=StorageLocation.WAREHOUSE,
    )

    # Import/export or purchase that produced this lot
    source_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<InventoryLotModel {self.lot_code or self.id}: "
            f"{self.quantity_remaining}/{self.quantity_received} @ {self.unit_cost}>"
        )

    @property
    def landed_value(self) -> Decimal:
        """Remaining quantity at landed unit cost, excluding absorbed fees."""
        return self.quantity_remaining * self.unit_cost
