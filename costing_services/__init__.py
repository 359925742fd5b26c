"""
Costing services -- stateful orchestration over engines and kernel.

Services receive a Session, Clock and CostingConfig through their
constructors, flush their writes and leave the commit to the caller.
"""

from costing_services.event_handlers import CostingEventHandler
from costing_services.lot_ledger import LotLedgerService
from costing_services.product_catalog import (
    ProductCatalog,
    SqlProductCatalog,
    require_product,
)
from costing_services.receipt_service import (
    ReceiptLine,
    ReceiptService,
    SharedCostSplit,
    lot_code_for,
)
from costing_services.warehouse_fee_service import WarehouseFeeService

__all__ = [
    "CostingEventHandler",
    "LotLedgerService",
    "ProductCatalog",
    "ReceiptLine",
    "ReceiptService",
    "SharedCostSplit",
    "SqlProductCatalog",
    "WarehouseFeeService",
    "lot_code_for",
    "require_product",
]
