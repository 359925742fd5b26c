"""
costing_services.product_catalog -- Product lookup consumed by the costing core.

Product master data is owned by another module.  The costing services only
need "does this product exist" and a few label fields, so they depend on
the small ``ProductCatalog`` protocol rather than on the product tables.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from costing_kernel.domain.dtos import ProductInfo
from costing_kernel.exceptions import ProductNotFoundError
from costing_kernel.models.product import ProductModel


class ProductCatalog(Protocol):
    def get_product(self, product_id: UUID) -> ProductInfo | None:
        ...


class SqlProductCatalog:
    """ProductCatalog backed by the ``products`` table in the caller's session."""

    def __init__(self, session: Session):
        self.session = session

    def get_product(self, product_id: UUID) -> ProductInfo | None:
        model = self.session.get(ProductModel, product_id)
        return ProductInfo.from_model(model) if model is not None else None


def require_product(catalog: ProductCatalog, product_id: UUID | None) -> ProductInfo:
    """Return the product or raise ProductNotFoundError."""
    product = catalog.get_product(product_id) if product_id is not None else None
    if product is None:
        raise ProductNotFoundError(str(product_id))
    return product
