"""Read access to documents and their lines."""

from uuid import UUID

from sqlalchemy import select

from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import DocumentSnapshot, LineSnapshot
from erp_kernel.exceptions import DocumentLineNotFoundError, DocumentNotFoundError
from erp_kernel.models.document import DocumentHeader, DocumentLine
from erp_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[DocumentHeader]):

    def _scoped(self, ctx: RequestContext, document_id: UUID) -> DocumentHeader | None:
        header = self.session.get(DocumentHeader, document_id)
        if (
            header is None
            or header.tenant_id != ctx.tenant_id
            or header.company_id != ctx.company_id
        ):
            return None
        return header

    def get(
        self, ctx: RequestContext, document_id: UUID, doc_type: str | None = None
    ) -> DocumentSnapshot:
        header = self._scoped(ctx, document_id)
        if header is None or (doc_type is not None and header.doc_type != doc_type):
            raise DocumentNotFoundError(document_id, doc_type)
        return header.to_dto()

    def line(self, ctx: RequestContext, line_id: UUID) -> LineSnapshot:
        line = self.session.get(DocumentLine, line_id)
        if line is None or self._scoped(ctx, line.document_id) is None:
            raise DocumentLineNotFoundError(line_id)
        return line.to_dto()

    def children(
        self, ctx: RequestContext, parent_id: UUID, doc_type: str
    ) -> list[DocumentSnapshot]:
        """Documents of ``doc_type`` that list ``parent_id`` in parent_refs."""
        headers = self.session.execute(
            select(DocumentHeader)
            .where(
                DocumentHeader.tenant_id == ctx.tenant_id,
                DocumentHeader.company_id == ctx.company_id,
                DocumentHeader.doc_type == doc_type,
            )
            .order_by(DocumentHeader.doc_number)
        ).scalars().all()
        return [h.to_dto() for h in headers if str(parent_id) in (h.parent_refs or ())]

    def lines_referencing(self, ctx: RequestContext, reference_line_id: UUID) -> list[LineSnapshot]:
        rows = self.session.execute(
            select(DocumentLine)
            .join(DocumentHeader, DocumentHeader.id == DocumentLine.document_id)
            .where(
                DocumentLine.reference_line_id == reference_line_id,
                DocumentHeader.tenant_id == ctx.tenant_id,
                DocumentHeader.company_id == ctx.company_id,
            )
        ).scalars().all()
        return [r.to_dto() for r in rows]
