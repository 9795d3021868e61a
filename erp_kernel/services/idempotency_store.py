"""
Module: erp_kernel.services.idempotency_store
Responsibility: Persist and look up the committed result of keyed document
    actions.
Architecture position: Kernel > Services.  Flush-only; the record is
    written in the same transaction as the transition it describes.

Invariants enforced:
    - A key maps to exactly one (document, action); reuse elsewhere raises
      IdempotencyKeyMismatchError.
    - A key is visible if and only if its transition committed.

Failure modes:
    - IdempotencyKeyMismatchError (ValidationError).
    - LockContentionError when a concurrent writer committed the same key
      between our lookup and insert; the retry then replays it.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.context import RequestContext
from erp_kernel.exceptions import IdempotencyKeyMismatchError, LockContentionError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.idempotency import IdempotencyRecord
from erp_kernel.services.base import BaseService

logger = get_logger("services.idempotency")


class IdempotencyStore(BaseService[IdempotencyRecord]):

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def lookup(
        self,
        ctx: RequestContext,
        key: str,
        document_id: UUID,
        action: str,
    ) -> dict[str, Any] | None:
        """Stored result for ``key``, or None.  Checks the key's binding."""
        record = self.session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.tenant_id == ctx.tenant_id,
                IdempotencyRecord.idempotency_key == key,
            )
        ).scalar_one_or_none()
        if record is None:
            return None
        if record.document_id != document_id or record.action != action:
            raise IdempotencyKeyMismatchError(
                key, record.document_id, record.action, document_id, action
            )
        return record.result

    def record(
        self,
        ctx: RequestContext,
        key: str,
        document_id: UUID,
        action: str,
        result: dict[str, Any],
    ) -> None:
        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                IdempotencyRecord(
                    tenant_id=ctx.tenant_id,
                    idempotency_key=key,
                    document_id=document_id,
                    action=action,
                    result=result,
                    recorded_at=self._clock.now(),
                )
            )
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "idempotency_key_race",
                extra={"idempotency_key": key, "document_id": str(document_id)},
            )
            raise LockContentionError("idempotency_key", document_id, detail=key) from None
