"""
Module: costing_kernel.models.product
Responsibility: Read-side product reference data used by the costing core.
Architecture position: Kernel > Models.  May import from db/ only.

Product master data is maintained elsewhere; the costing core only checks
that a product exists and reads its label fields and fallback price.
"""

from decimal import Decimal

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase


class ProductModel(TrackedBase):
    __tablename__ = "products"

    __table_args__ = (UniqueConstraint("code", name="uq_product_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="EA")
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Fallback when no lot has stock on hand
    default_purchase_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<ProductModel {self.code}>"
