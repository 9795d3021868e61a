"""
DispositionRecord -- follow-up for rejected goods-receipt quantities.

Invariants enforced
-------------------
* Exactly one record per GRN line (unique ``grn_line_id``).
* Records are never deleted; ``resolved`` only moves False -> True.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import TrackedBase
from erp_kernel.db.types import FixedDecimal
from erp_kernel.domain.dtos import DispositionInfo


class DispositionRecord(TrackedBase):
    __tablename__ = "erp_dispositions"

    __table_args__ = (
        UniqueConstraint("grn_line_id", name="uq_disposition_grn_line"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    grn_id: Mapped[UUID] = mapped_column(ForeignKey("erp_documents.id"), nullable=False)
    grn_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("erp_document_lines.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    rejected_qty: Mapped[Decimal] = mapped_column(FixedDecimal(18, 3), nullable=False)
    disposition: Mapped[str] = mapped_column(String(30), nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    resolved_by: Mapped[UUID | None]
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> DispositionInfo:
        return DispositionInfo(
            disposition_id=self.id,
            grn_id=self.grn_id,
            grn_line_id=self.grn_line_id,
            product_id=self.product_id,
            rejected_qty=self.rejected_qty,
            disposition=self.disposition,
            resolved=self.resolved,
            notes=self.notes,
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
        )
