"""
Sales Module.

Sales orders and outbound deliveries.
"""

from erp_modules.sales.config import SalesConfig
from erp_modules.sales.service import SalesService
from erp_modules.sales.workflows import DELIVERY_WORKFLOW, SALES_ORDER_WORKFLOW

__all__ = [
    "SalesConfig",
    "SalesService",
    "SALES_ORDER_WORKFLOW",
    "DELIVERY_WORKFLOW",
]
