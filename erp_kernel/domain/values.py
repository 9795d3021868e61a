"""
Enumerations shared by every layer (``erp_kernel.domain.values``).

Pure value definitions: document type tags, tolerance levels, disposition
outcomes, quantity field names, and inventory reasons.  String enums so
that values persist and serialize as their plain names.
"""

from enum import Enum, unique


@unique
class DocumentType(str, Enum):
    PURCHASE_ORDER = "PURCHASE_ORDER"
    GOODS_RECEIPT = "GOODS_RECEIPT"
    PURCHASE_INVOICE = "PURCHASE_INVOICE"
    SALES_ORDER = "SALES_ORDER"
    DELIVERY = "DELIVERY"
    STOCK_TRANSFER = "STOCK_TRANSFER"
    INVENTORY_ADJUSTMENT = "INVENTORY_ADJUSTMENT"
    STOCK_OPNAME = "STOCK_OPNAME"


@unique
class ToleranceLevel(str, Enum):
    """Scope of a delivery tolerance setting, most specific first."""

    PRODUCT = "PRODUCT"
    CATEGORY = "CATEGORY"
    COMPANY = "COMPANY"


# Where an effective tolerance came from.  DEFAULT is not a storable level.
RESOLVED_FROM_DEFAULT = "DEFAULT"


@unique
class ViolationType(str, Enum):
    UNDER = "UNDER"
    OVER = "OVER"


@unique
class DispositionStatus(str, Enum):
    """Resolution path chosen for rejected goods."""

    PENDING_REPLACEMENT = "PENDING_REPLACEMENT"
    CREDIT_REQUESTED = "CREDIT_REQUESTED"
    RETURNED = "RETURNED"
    WRITTEN_OFF = "WRITTEN_OFF"


@unique
class InvoiceControlPolicy(str, Enum):
    """Quantity baseline used when matching an invoice line."""

    ORDERED = "ORDERED"
    RECEIVED = "RECEIVED"


@unique
class AdjustmentDirection(str, Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


@unique
class AdjustmentReason(str, Enum):
    SHRINKAGE = "SHRINKAGE"
    DAMAGE = "DAMAGE"
    EXPIRED = "EXPIRED"
    THEFT = "THEFT"
    OPNAME = "OPNAME"
    CORRECTION = "CORRECTION"
    RETURN = "RETURN"
    OTHER = "OTHER"


@unique
class QuantityField(str, Enum):
    """
    Ledger-managed running totals on a document line.

    The value is the ORM attribute name; ``api_name`` is the camelCase name
    used in request and response payloads.
    """

    ORDERED = "ordered_qty"
    RECEIVED = "received_qty"
    ACCEPTED = "accepted_qty"
    REJECTED = "rejected_qty"
    INVOICED = "invoiced_qty"
    SHIPPED = "shipped_qty"
    DELIVERED = "delivered_qty"

    @property
    def api_name(self) -> str:
        head, _ = self.value.split("_")
        return f"{head}Qty"


# Fields still writable once the owning header is terminal.  Invoicing runs
# downstream of a completed PO / accepted GRN.
POST_TERMINAL_FIELDS: frozenset[QuantityField] = frozenset({QuantityField.INVOICED})
