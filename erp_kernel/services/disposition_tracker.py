"""
Module: erp_kernel.services.disposition_tracker
Responsibility: Lifecycle of rejected goods-receipt quantities.  A record is
    opened once per GRN line with rejectedQty > 0, may change disposition
    while unresolved, and is closed by a one-way resolve.
Architecture position: Kernel > Services.  Flush-only.

Invariants enforced:
    - Exactly one record per GRN line; ``open_for_line`` is a no-op when the
      record already exists.
    - ``update`` is allowed only while resolved is False.
    - ``resolve`` is terminal; nothing changes the record afterwards.
    - Decoupled from GRN status: works after the GRN is terminal.
    - Records are never deleted.

Failure modes:
    - DispositionNotFoundError, DispositionResolvedError (StateError),
      ValidationError for an unknown disposition value.
"""

from uuid import UUID

from sqlalchemy import select

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import DispositionInfo
from erp_kernel.domain.values import DispositionStatus
from erp_kernel.exceptions import (
    DispositionNotFoundError,
    DispositionResolvedError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.disposition import DispositionRecord
from erp_kernel.models.document import DocumentLine
from erp_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.disposition")


def _parse_disposition(value: str) -> DispositionStatus:
    try:
        return DispositionStatus(value)
    except ValueError:
        raise ValidationError(
            f"disposition must be one of {', '.join(d.value for d in DispositionStatus)}",
            field="disposition",
        ) from None


class DispositionTracker(BaseService[DispositionRecord]):

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _lock(self, ctx: RequestContext, grn_line_id: UUID) -> DispositionRecord:
        with translate_db_errors("disposition", grn_line_id):
            record = self.session.execute(
                select(DispositionRecord)
                .where(
                    DispositionRecord.grn_line_id == grn_line_id,
                    DispositionRecord.tenant_id == ctx.tenant_id,
                    DispositionRecord.company_id == ctx.company_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if record is None:
            raise DispositionNotFoundError(grn_line_id)
        return record

    def open_for_line(self, ctx: RequestContext, line: DocumentLine) -> DispositionInfo | None:
        """Create the record for a GRN line with rejections, once."""
        if line.rejected_qty <= 0:
            return None
        existing = self.session.execute(
            select(DispositionRecord).where(DispositionRecord.grn_line_id == line.id)
        ).scalar_one_or_none()
        if existing is not None:
            return existing.to_dto()

        record = DispositionRecord(
            tenant_id=ctx.tenant_id,
            company_id=ctx.company_id,
            grn_id=line.document_id,
            grn_line_id=line.id,
            product_id=line.product_id,
            rejected_qty=line.rejected_qty,
            disposition=DispositionStatus.PENDING_REPLACEMENT.value,
            resolved=False,
            created_by_id=ctx.actor_id,
        )
        self.session.add(record)
        with translate_db_errors("disposition", line.id):
            self.session.flush()
        logger.info(
            "disposition_opened",
            extra={
                "grn_id": str(line.document_id),
                "grn_line_id": str(line.id),
                "rejected_qty": str(line.rejected_qty),
            },
        )
        return record.to_dto()

    def update(
        self,
        ctx: RequestContext,
        grn_line_id: UUID,
        disposition: str,
        notes: str | None = None,
    ) -> DispositionInfo:
        new_value = _parse_disposition(disposition)
        record = self._lock(ctx, grn_line_id)
        if record.resolved:
            raise DispositionResolvedError(grn_line_id)

        previous = record.disposition
        record.disposition = new_value.value
        if notes is not None:
            record.notes = notes
        record.updated_by_id = ctx.actor_id
        self.session.flush()
        logger.info(
            "disposition_updated",
            extra={
                "grn_line_id": str(grn_line_id),
                "from": previous,
                "to": new_value.value,
            },
        )
        return record.to_dto()

    def resolve(
        self,
        ctx: RequestContext,
        grn_line_id: UUID,
        notes: str | None = None,
    ) -> DispositionInfo:
        record = self._lock(ctx, grn_line_id)
        if record.resolved:
            raise DispositionResolvedError(grn_line_id)

        record.resolved = True
        record.resolved_by = ctx.actor_id
        record.resolved_at = self._clock.now()
        if notes is not None:
            record.notes = notes
        record.updated_by_id = ctx.actor_id
        self.session.flush()
        logger.info(
            "disposition_resolved",
            extra={
                "grn_line_id": str(grn_line_id),
                "disposition": record.disposition,
            },
        )
        return record.to_dto()

    def get(self, ctx: RequestContext, grn_line_id: UUID) -> DispositionInfo:
        record = self.session.execute(
            select(DispositionRecord).where(
                DispositionRecord.grn_line_id == grn_line_id,
                DispositionRecord.tenant_id == ctx.tenant_id,
                DispositionRecord.company_id == ctx.company_id,
            )
        ).scalar_one_or_none()
        if record is None:
            raise DispositionNotFoundError(grn_line_id)
        return record.to_dto()
