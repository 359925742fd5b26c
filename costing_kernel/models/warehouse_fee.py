"""
Module: costing_kernel.models.warehouse_fee
Responsibility: ORM persistence for monthly warehouse fees and the
    per-lot allocation lines a distribution run produces.
Architecture position: Kernel > Models.  May import from db/, domain/values
    and exceptions only.

Invariants enforced:
    - year_month is unique.
    - status moves PENDING -> DISTRIBUTED exactly once (VALID_FEE_TRANSITIONS).
      The snapshot columns and distributed_at are written by that transition
      and by nothing else.
    - Every UPDATE is versioned (version_id_col), so two sessions that both
      saw the fee PENDING cannot both write the transition.
    - At most one distribution line per (fee, lot) pair.
    - A lot referenced by a distribution line cannot be deleted
      (ON DELETE RESTRICT).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import Base, ExactDecimal, TrackedBase, UUIDString
from costing_kernel.exceptions import InvalidFeeTransitionError


class FeeStatus(str, Enum):
    """Lifecycle of a monthly warehouse fee. There is no way back to PENDING."""

    PENDING = "PENDING"
    DISTRIBUTED = "DISTRIBUTED"


VALID_FEE_TRANSITIONS: dict[FeeStatus, frozenset[FeeStatus]] = {
    FeeStatus.PENDING: frozenset({FeeStatus.DISTRIBUTED}),
    FeeStatus.DISTRIBUTED: frozenset(),
}


class WarehouseFeeModel(TrackedBase):
    """
    One monthly fee declaration.

    PENDING fees may be edited or deleted.  DISTRIBUTED fees are frozen;
    services check ``is_distributed`` before any write.
    """

    __tablename__ = "warehouse_fees"

    __table_args__ = (
        UniqueConstraint("year_month", name="uq_warehouse_fee_year_month"),
        CheckConstraint("total_fee >= 0", name="ck_warehouse_fee_non_negative"),
        Index("idx_warehouse_fee_status", "status"),
    )

    # "YYYY-MM"
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)

    total_fee: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[FeeStatus] = mapped_column(
        SAEnum(FeeStatus, native_enum=False, length=20),
        nullable=False,
        default=FeeStatus.PENDING,
    )

    distributed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    total_value_at_distribution: Mapped[Decimal | None] = mapped_column(nullable=True)
    lot_count_at_distribution: Mapped[int | None] = mapped_column(Integer, nullable=True)

    memo: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Bumped on every UPDATE; a write from a stale snapshot raises StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    distributions: Mapped[list["WarehouseFeeDistributionModel"]] = relationship(
        back_populates="warehouse_fee",
        order_by="WarehouseFeeDistributionModel.distributed_fee.desc()",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<WarehouseFeeModel {self.year_month}: {self.total_fee} {self.status.value}>"

    @property
    def is_distributed(self) -> bool:
        return self.status == FeeStatus.DISTRIBUTED

    def transition_to(self, new_status: FeeStatus) -> None:
        """Move to ``new_status`` or raise InvalidFeeTransitionError."""
        current = FeeStatus(self.status)
        if new_status not in VALID_FEE_TRANSITIONS[current]:
            raise InvalidFeeTransitionError(current.value, new_status.value)
        self.status = new_status

    def mark_distributed(
        self,
        distributed_at: datetime,
        total_value: Decimal,
        lot_count: int,
    ) -> None:
        """
        Record the PENDING -> DISTRIBUTED transition with its snapshot.

        ``distributed_at`` comes from the injected clock.
        """
        self.transition_to(FeeStatus.DISTRIBUTED)
        self.distributed_at = distributed_at
        self.total_value_at_distribution = total_value
        self.lot_count_at_distribution = lot_count


class WarehouseFeeDistributionModel(Base):
    """One allocation line. Written once by a distribution run, never updated."""

    __tablename__ = "warehouse_fee_distributions"

    __table_args__ = (
        UniqueConstraint("warehouse_fee_id", "lot_id", name="uq_fee_distribution_fee_lot"),
        Index("idx_fee_distribution_lot", "lot_id"),
    )

    warehouse_fee_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouse_fees.id", ondelete="CASCADE"),
        nullable=False,
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_lots.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity_at_time: Mapped[Decimal] = mapped_column(nullable=False)
    value_at_time: Mapped[Decimal] = mapped_column(nullable=False)

    # Percentage of total value, 0..100
    value_ratio: Mapped[Decimal] = mapped_column(ExactDecimal(18, 9), nullable=False)

    distributed_fee: Mapped[Decimal] = mapped_column(nullable=False)

    warehouse_fee: Mapped[WarehouseFeeModel] = relationship(back_populates="distributions")

    def __repr__(self) -> str:
        return f"<WarehouseFeeDistributionModel lot={self.lot_id} fee={self.distributed_fee}>"
