"""ORM models for the ERP kernel."""

from erp_kernel.models.disposition import DispositionRecord
from erp_kernel.models.document import DocumentHeader, DocumentLine
from erp_kernel.models.idempotency import IdempotencyRecord
from erp_kernel.models.stock import StockLevel
from erp_kernel.models.tolerance import ToleranceSetting

__all__ = [
    "DocumentHeader",
    "DocumentLine",
    "ToleranceSetting",
    "DispositionRecord",
    "StockLevel",
    "IdempotencyRecord",
    "import_kernel_models",
]


def import_kernel_models() -> list[type]:
    """Return every mapped class, registering each on Base.metadata."""
    from erp_kernel.services.sequence_service import DocumentSequence

    return [
        DocumentSequence,
        DocumentHeader,
        DocumentLine,
        ToleranceSetting,
        DispositionRecord,
        StockLevel,
        IdempotencyRecord,
    ]
