"""
Procurement Module.

Purchase orders, goods receipts with inspection and dispositions, and
purchase invoices matched 3-way against them.
"""

from erp_modules.procurement.config import ProcurementConfig
from erp_modules.procurement.service import ProcurementService
from erp_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_INVOICE_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)

__all__ = [
    "ProcurementConfig",
    "ProcurementService",
    "PURCHASE_ORDER_WORKFLOW",
    "GOODS_RECEIPT_WORKFLOW",
    "PURCHASE_INVOICE_WORKFLOW",
]
