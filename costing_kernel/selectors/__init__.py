"""Read-only selectors over the lot ledger."""

from costing_kernel.selectors.base import BaseSelector
from costing_kernel.selectors.inventory_selector import (
    InventorySelector,
    LotFilter,
    summarize_lots,
)

__all__ = ["BaseSelector", "InventorySelector", "LotFilter", "summarize_lots"]
