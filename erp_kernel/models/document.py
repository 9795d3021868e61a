"""
SQLAlchemy ORM models for document headers and lines.

Responsibility
--------------
One generic header table and one generic line table carry every document
type.  The ``doc_type`` tag selects the workflow table that governs
``status``; per-type extras (short-close reason, rejection reason,
warehouses) live in typed columns or the ``attributes`` JSON bag.

Invariants enforced
-------------------
* All quantities are FixedDecimal(18, 3) -- NEVER float.
* ``version`` increases by exactly one per committed transition.
* ``is_terminal`` mirrors whether ``status`` is a terminal state of the
  governing workflow; the ledger refuses deltas on terminal documents.
* ``(tenant_id, company_id, doc_type, doc_number)`` is unique.
* Lines are created together with their header and are afterwards changed
  only through ``QuantityLedger`` deltas.

Audit relevance
---------------
``last_action``/``version``/``status_changed_at`` record the most recent
transition; together with ``created_by_id``/``updated_by_id`` they let an
auditor reconstruct who moved a document and when.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import TrackedBase
from erp_kernel.db.types import ZERO, FixedDecimal
from erp_kernel.domain.dtos import DocumentSnapshot, LineSnapshot


def _qty(nullable: bool = False):
    if nullable:
        return mapped_column(FixedDecimal(18, 3), nullable=True)
    return mapped_column(FixedDecimal(18, 3), nullable=False, default=ZERO)


class DocumentHeader(TrackedBase):
    """
    Header row for any document type.

    Guarantees:
        - ``status`` is always a state of the workflow registered for
          ``doc_type``.
        - ``parent_refs`` lists the upstream document ids (GRN -> PO,
          invoice -> GRNs, delivery -> SO).
    """

    __tablename__ = "erp_documents"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "company_id", "doc_type", "doc_number",
            name="uq_document_number",
        ),
        Index("idx_document_scope_type", "tenant_id", "company_id", "doc_type"),
        Index("idx_document_status", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    doc_type: Mapped[str] = mapped_column(String(40), nullable=False)
    doc_number: Mapped[str] = mapped_column(String(60), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_terminal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_action: Mapped[str | None] = mapped_column(String(40), nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    parent_refs: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    counterparty_id: Mapped[UUID | None]
    warehouse_id: Mapped[UUID | None]
    dest_warehouse_id: Mapped[UUID | None]
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    lines: Mapped[list[DocumentLine]] = relationship(
        back_populates="document",
        order_by="DocumentLine.line_no",
        cascade="all, delete-orphan",
    )

    def to_dto(self, lines: list[DocumentLine] | None = None) -> DocumentSnapshot:
        rows = self.lines if lines is None else lines
        return DocumentSnapshot(
            document_id=self.id,
            doc_type=self.doc_type,
            doc_number=self.doc_number,
            status=self.status,
            version=self.version,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            last_action=self.last_action,
            parent_refs=tuple(UUID(p) for p in self.parent_refs or ()),
            counterparty_id=self.counterparty_id,
            warehouse_id=self.warehouse_id,
            dest_warehouse_id=self.dest_warehouse_id,
            attributes=dict(self.attributes or {}),
            status_changed_at=self.status_changed_at,
            created_by_id=self.created_by_id,
            lines=tuple(ln.to_dto() for ln in sorted(rows, key=lambda r: r.line_no)),
        )

    def __repr__(self) -> str:
        return f"<DocumentHeader {self.doc_type} {self.doc_number} [{self.status} v{self.version}]>"


class DocumentLine(TrackedBase):
    """
    One line of a document with its ledger-managed running totals.

    ``ordered_qty`` is the line's own planned quantity (ordered on a PO/SO,
    expected on a GRN/delivery, requested on an invoice/transfer/adjustment).
    ``reference_line_id`` points at the upstream line this one draws from.
    """

    __tablename__ = "erp_document_lines"

    __table_args__ = (
        UniqueConstraint("document_id", "line_no", name="uq_document_line_no"),
        Index("idx_document_line_reference", "reference_line_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("erp_documents.id"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_line_id: Mapped[UUID | None]
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    ordered_qty: Mapped[Decimal] = _qty()
    received_qty: Mapped[Decimal] = _qty()
    accepted_qty: Mapped[Decimal] = _qty()
    rejected_qty: Mapped[Decimal] = _qty()
    invoiced_qty: Mapped[Decimal] = _qty()
    shipped_qty: Mapped[Decimal] = _qty()
    delivered_qty: Mapped[Decimal] = _qty()

    # Stock opname
    system_qty: Mapped[Decimal | None] = _qty(nullable=True)
    counted_qty: Mapped[Decimal | None] = _qty(nullable=True)

    # Inventory adjustment
    direction: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # Goods receipt
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    quality_note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    document: Mapped[DocumentHeader] = relationship(back_populates="lines")

    def to_dto(self) -> LineSnapshot:
        return LineSnapshot(
            line_id=self.id,
            document_id=self.document_id,
            line_no=self.line_no,
            product_id=self.product_id,
            reference_line_id=self.reference_line_id,
            category=self.category,
            ordered_qty=self.ordered_qty,
            received_qty=self.received_qty,
            accepted_qty=self.accepted_qty,
            rejected_qty=self.rejected_qty,
            invoiced_qty=self.invoiced_qty,
            shipped_qty=self.shipped_qty,
            delivered_qty=self.delivered_qty,
            system_qty=self.system_qty,
            counted_qty=self.counted_qty,
            direction=self.direction,
            reason=self.reason,
            batch_number=self.batch_number,
            expiry_date=self.expiry_date,
            rejection_reason=self.rejection_reason,
            quality_note=self.quality_note,
        )

    def __repr__(self) -> str:
        return f"<DocumentLine {self.document_id}#{self.line_no} {self.product_id}>"
