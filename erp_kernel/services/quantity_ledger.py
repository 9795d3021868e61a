"""
Module: erp_kernel.services.quantity_ledger
Responsibility: Per-line running totals (ordered / received / accepted /
    rejected / invoiced / shipped / delivered) updated exclusively through
    deltas, with invariant re-validation on the projected values.
Architecture position: Kernel > Services.  Called by the document state
    machine's effects (module layer) inside the action's transaction.

Invariants enforced:
    - Deltas only: totals are never overwritten.  Two partial operations
      against the same line compose.
    - Per-line exclusive lock: ``SELECT ... FOR UPDATE`` spans
      read -> validate -> write, so no delta is computed against a stale
      snapshot.  On SQLite the BEGIN IMMEDIATE transaction serializes
      writers instead.
    - After every delta, on the projected values:
        * every total >= 0
        * accepted + rejected <= received
        * invoiced <= accepted
        * delivered <= shipped
        * field <= caller-supplied ceiling (tolerance window upper bound)
    - No partial commit: a violation raises before any attribute is
      assigned, and the owning action rolls back.
    - Lines of a terminal document are immutable, except for the
      downstream ``invoicedQty`` total (see POST_TERMINAL_FIELDS).

Failure modes:
    - InvalidQuantityError: malformed delta (float, too many places).
    - DocumentLineNotFoundError: unknown line id.
    - DocumentImmutableError: header is terminal.
    - QuantityInvariantError: projected totals violate an invariant;
      carries {field, attempted, limit}.
    - LockContentionError: the row lock could not be acquired.

Audit relevance:
    Every accepted delta is logged as ``ledger_delta_applied`` with the
    before/after totals; every refusal as ``ledger_conflict``.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from erp_kernel.db.types import ZERO
from erp_kernel.domain.dtos import LineSnapshot
from erp_kernel.domain.quantities import parse_delta, parse_quantity
from erp_kernel.domain.values import POST_TERMINAL_FIELDS, QuantityField
from erp_kernel.exceptions import (
    DocumentImmutableError,
    DocumentLineNotFoundError,
    QuantityInvariantError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.document import DocumentHeader, DocumentLine
from erp_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.quantity_ledger")


def check_line_invariants(
    line_id: UUID,
    totals: Mapping[QuantityField, Decimal],
    changed: frozenset[QuantityField],
    ceilings: Mapping[QuantityField, Decimal | None] | None = None,
) -> None:
    """
    Validate projected totals.  Pure; raises QuantityInvariantError.

    ``changed`` picks which field is reported when a two-sided rule fails.
    """
    for qf in QuantityField:
        if totals[qf] < ZERO:
            raise QuantityInvariantError(
                line_id, qf.api_name, totals[qf], ZERO, "non_negative"
            )

    accepted = totals[QuantityField.ACCEPTED]
    rejected = totals[QuantityField.REJECTED]
    received = totals[QuantityField.RECEIVED]
    if accepted + rejected > received:
        reported = QuantityField.RECEIVED
        for candidate in (QuantityField.ACCEPTED, QuantityField.REJECTED):
            if candidate in changed:
                reported = candidate
                break
        raise QuantityInvariantError(
            line_id,
            reported.api_name,
            accepted + rejected,
            received,
            "accepted_plus_rejected_le_received",
        )

    invoiced = totals[QuantityField.INVOICED]
    if invoiced > accepted:
        reported = QuantityField.INVOICED if QuantityField.INVOICED in changed else QuantityField.ACCEPTED
        raise QuantityInvariantError(
            line_id, reported.api_name, invoiced, accepted, "invoiced_le_accepted"
        )

    delivered = totals[QuantityField.DELIVERED]
    shipped = totals[QuantityField.SHIPPED]
    if delivered > shipped:
        reported = QuantityField.DELIVERED if QuantityField.DELIVERED in changed else QuantityField.SHIPPED
        raise QuantityInvariantError(
            line_id, reported.api_name, delivered, shipped, "delivered_le_shipped"
        )

    for qf, ceiling in (ceilings or {}).items():
        if ceiling is not None and totals[qf] > ceiling:
            raise QuantityInvariantError(
                line_id, qf.api_name, totals[qf], ceiling, "tolerance_ceiling"
            )


class QuantityLedger(BaseService[DocumentLine]):
    """
    Delta-based quantity store for document lines.

    Contract:
        ``apply_delta(line_id, field, delta)`` returns the post-delta
        snapshot or raises a ConflictError subclass.  The caller's
        transaction makes the change durable.

    Non-goals:
        - Does not resolve tolerances; the caller passes the ceiling.
        - Does not keep history; the owning document records actions.
    """

    def lock_line(self, line_id: UUID) -> DocumentLine:
        """Acquire the per-line exclusive lock and return a fresh row."""
        with translate_db_errors("document_line", line_id):
            line = self.session.execute(
                select(DocumentLine)
                .where(DocumentLine.id == line_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if line is None:
            raise DocumentLineNotFoundError(line_id)
        return line

    def snapshot(self, line_id: UUID) -> LineSnapshot:
        """Non-blocking point-in-time read."""
        line = self.session.get(DocumentLine, line_id)
        if line is None:
            raise DocumentLineNotFoundError(line_id)
        return line.to_dto()

    def apply_delta(
        self,
        line_id: UUID,
        field: QuantityField,
        delta: Any,
        *,
        ceiling: Decimal | None = None,
        actor_id: UUID | None = None,
    ) -> LineSnapshot:
        """Apply one signed delta; see ``apply_deltas``."""
        return self.apply_deltas(
            line_id,
            {field: delta},
            ceilings={field: ceiling} if ceiling is not None else None,
            actor_id=actor_id,
        )

    def apply_deltas(
        self,
        line_id: UUID,
        deltas: Mapping[QuantityField, Any],
        *,
        ceilings: Mapping[QuantityField, Decimal | None] | None = None,
        actor_id: UUID | None = None,
    ) -> LineSnapshot:
        """
        Apply several deltas to one line as a single validated step.

        Preconditions: called inside the action's transaction.
        Postconditions: on success the line row holds the projected totals
            and is flushed; on failure nothing on the row has changed.
        """
        parsed = {
            QuantityField(qf): parse_delta(value, QuantityField(qf).api_name)
            for qf, value in deltas.items()
        }
        changed = frozenset(qf for qf, d in parsed.items() if d != ZERO)

        line = self.lock_line(line_id)
        header = self.session.get(DocumentHeader, line.document_id)
        if header is not None and header.is_terminal and not changed <= POST_TERMINAL_FIELDS:
            blocked = sorted(qf.api_name for qf in changed - POST_TERMINAL_FIELDS)
            raise DocumentImmutableError(header.id, header.status, field=", ".join(blocked))

        before = {qf: getattr(line, qf.value) for qf in QuantityField}
        projected = {qf: before[qf] + parsed.get(qf, ZERO) for qf in QuantityField}

        try:
            check_line_invariants(line_id, projected, changed, ceilings)
        except QuantityInvariantError as exc:
            logger.warning(
                "ledger_conflict",
                extra={
                    "line_id": str(line_id),
                    "rule": exc.rule,
                    "field": exc.field,
                    "attempted": str(exc.attempted),
                    "limit": str(exc.limit),
                },
            )
            raise

        for qf in changed:
            setattr(line, qf.value, projected[qf])
        if changed and actor_id is not None:
            line.updated_by_id = actor_id

        with translate_db_errors("document_line", line_id):
            self.session.flush()

        if changed:
            logger.info(
                "ledger_delta_applied",
                extra={
                    "line_id": str(line_id),
                    "deltas": {qf.api_name: str(parsed[qf]) for qf in changed},
                    "after": {qf.api_name: str(projected[qf]) for qf in changed},
                },
            )
        return line.to_dto()

    def record_count(
        self,
        line_id: UUID,
        *,
        system_qty: Any = None,
        counted_qty: Any = None,
        actor_id: UUID | None = None,
    ) -> LineSnapshot:
        """
        Set stock-opname snapshot quantities under the line lock.

        These are observations, not running totals, so they are set rather
        than accumulated.
        """
        line = self.lock_line(line_id)
        header = self.session.get(DocumentHeader, line.document_id)
        if header is not None and header.is_terminal:
            raise DocumentImmutableError(header.id, header.status, field="countedQty")
        if system_qty is not None:
            line.system_qty = parse_quantity(system_qty, "systemQty")
        if counted_qty is not None:
            line.counted_qty = parse_quantity(counted_qty, "countedQty")
        if actor_id is not None:
            line.updated_by_id = actor_id
        with translate_db_errors("document_line", line_id):
            self.session.flush()
        return line.to_dto()
