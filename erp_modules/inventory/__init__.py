"""
Inventory Module.

Stock transfers, inventory adjustments and stock opname.
"""

from erp_modules.inventory.config import InventoryConfig
from erp_modules.inventory.service import InventoryService
from erp_modules.inventory.workflows import (
    INVENTORY_ADJUSTMENT_WORKFLOW,
    STOCK_OPNAME_WORKFLOW,
    STOCK_TRANSFER_WORKFLOW,
)

__all__ = [
    "InventoryConfig",
    "InventoryService",
    "STOCK_TRANSFER_WORKFLOW",
    "INVENTORY_ADJUSTMENT_WORKFLOW",
    "STOCK_OPNAME_WORKFLOW",
]
