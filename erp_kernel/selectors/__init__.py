"""Read-only selectors returning DTOs."""

from erp_kernel.selectors.document_selector import DocumentSelector
from erp_kernel.selectors.tolerance_selector import ToleranceSelector

__all__ = ["DocumentSelector", "ToleranceSelector"]
