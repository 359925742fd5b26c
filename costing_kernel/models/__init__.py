"""ORM models for the costing kernel."""

from costing_kernel.models.lot import InventoryLotModel
from costing_kernel.models.movement import InventoryMovementModel
from costing_kernel.models.product import ProductModel
from costing_kernel.models.warehouse_fee import (
    VALID_FEE_TRANSITIONS,
    FeeStatus,
    WarehouseFeeDistributionModel,
    WarehouseFeeModel,
)

__all__ = [
    "ProductModel",
    "InventoryLotModel",
    "InventoryMovementModel",
    "WarehouseFeeModel",
    "WarehouseFeeDistributionModel",
    "FeeStatus",
    "VALID_FEE_TRANSITIONS",
]
