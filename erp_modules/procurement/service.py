"""
Procurement Module Service (``erp_modules.procurement.service``).

Responsibility
--------------
Purchase orders, goods receipts (with inspection and rejected-goods
disposition) and purchase invoices: the PO -> GRN -> invoice 3-way match.
Delegates status moves to ``DocumentStateMachine``, quantity totals to
``QuantityLedger``, stock to ``StockService``, and every acceptance
decision to ``ReconciliationValidator``.

Architecture position
---------------------
**Modules layer** -- thin ERP glue.  ``ProcurementService`` is the sole
public entry point for procurement operations.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` on any failure) through ``run_action``; a failure
  leaves every document exactly as it was.
* A GRN line's received quantity must fall inside the tolerance window
  around its PO line's open quantity.
* Accepting goods raises the PO line's received/accepted totals under the
  tolerance ceiling, adds accepted quantity to stock, and opens one
  disposition per line with rejections, all in one transaction.
* Invoiced quantity never exceeds accepted quantity on the GRN line.

Failure modes
-------------
* ValidationError family  -> malformed items, missing batch/expiry.
* StateError family  -> action not allowed from the current status.
* ConflictError family  -> tolerance window, ledger invariant, invoice
  ceiling; ``LockContentionError`` is retried once.

Usage::

    service = ProcurementService(session, catalog, config=ProcurementConfig.from_settings(settings))
    po = service.create_purchase_order(ctx, supplier_id=s, warehouse_id=w, lines=[...])
    service.confirm_purchase_order(ctx, po.document_id)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_engines.reconciliation import ReconciliationValidator
from erp_engines.tolerance import ToleranceResolver
from erp_kernel.db.types import ZERO
from erp_kernel.domain.catalog import ProductCatalog, require_product
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import DispositionInfo, DocumentSnapshot, LineSnapshot, TransitionResult
from erp_kernel.domain.values import DocumentType, QuantityField
from erp_kernel.exceptions import (
    DocumentLineNotFoundError,
    InvalidTransitionError,
    MissingBatchNumberError,
    MissingExpiryDateError,
    ProductMismatchError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.selectors.document_selector import DocumentSelector
from erp_kernel.services.disposition_tracker import DispositionTracker
from erp_kernel.services.quantity_ledger import QuantityLedger
from erp_kernel.services.stock_service import StockService
from erp_kernel.utils.idempotency import generate_idempotency_key
from erp_modules._action_helpers import effective_tolerance, run_action, tolerance_window
from erp_modules.procurement.config import ProcurementConfig
from erp_modules.procurement.workflows import PROCUREMENT_WORKFLOWS, register_guards
from erp_services.contracts import (
    ActionRequest,
    InspectItemCommand,
    InvoiceLineCommand,
    OrderLineCommand,
    ReceiptItemCommand,
)
from erp_services.state_machine import (
    DocumentStateMachine,
    EffectContext,
    GuardExecutor,
)

logger = get_logger("modules.procurement.service")

PO = DocumentType.PURCHASE_ORDER.value
GRN = DocumentType.GOODS_RECEIPT.value
INVOICE = DocumentType.PURCHASE_INVOICE.value

INVOICEABLE_GRN_STATUSES = frozenset({"ACCEPTED", "PARTIAL"})


class ProcurementService:
    """
    Orchestrates procurement documents through the kernel and engines.

    Contract
    --------
    * Create methods return a ``DocumentSnapshot``; action methods return a
      ``TransitionResult`` (``replayed=True`` when answered from an
      idempotency key or a stale-version re-send).
    * Every method raises an ``ErpKernelError`` subclass on failure.

    Guarantees
    ----------
    * Session is committed only on success; otherwise rolled back.
    * Clock is injectable for deterministic testing.
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        *,
        config: ProcurementConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._catalog = catalog
        self._config = config or ProcurementConfig.with_defaults()
        self._clock = clock or SystemClock()

        guards = GuardExecutor()
        register_guards(guards)
        self._machine = DocumentStateMachine(session, guards, self._clock)
        for workflow in PROCUREMENT_WORKFLOWS:
            self._machine.register(workflow)

        self._ledger = QuantityLedger(session)
        self._stock = StockService(session)
        self._dispositions = DispositionTracker(session, self._clock)
        self._documents = DocumentSelector(session)
        self._validator = ReconciliationValidator()
        self._resolver = ToleranceResolver()

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _run(self, ctx: RequestContext, operation: str, fn: Callable[[], Any], **kwargs: Any) -> Any:
        return run_action(
            self._session, ctx, operation, fn,
            retries=self._config.lock_contention_retries, **kwargs,
        )

    def _act(
        self,
        ctx: RequestContext,
        document_id: UUID,
        doc_type: str,
        action: str,
        request: ActionRequest | None,
        effect: Callable[[EffectContext], None] | None = None,
        after: Callable[[TransitionResult], None] | None = None,
    ) -> TransitionResult:
        request = request or ActionRequest()

        def work() -> TransitionResult:
            result = self._machine.transition(
                ctx, document_id, action, request.payload,
                doc_type=doc_type,
                idempotency_key=request.idempotency_key,
                expected_version=request.expected_version,
                effect=effect,
            )
            if after is not None and not result.replayed:
                after(result)
            return result

        return self._run(
            ctx, f"{doc_type.lower()}.{action}", work,
            document_id=document_id, idempotency_key=request.idempotency_key,
        )

    def get_document(self, ctx: RequestContext, document_id: UUID) -> DocumentSnapshot:
        return self._documents.get(ctx, document_id)

    def goods_receipts_for(self, ctx: RequestContext, po_id: UUID) -> list[DocumentSnapshot]:
        return self._documents.children(ctx, po_id, GRN)

    def invoices_for(self, ctx: RequestContext, grn_id: UUID) -> list[DocumentSnapshot]:
        return self._documents.children(ctx, grn_id, INVOICE)

    def lines_against(self, ctx: RequestContext, line_id: UUID) -> list[LineSnapshot]:
        """GRN lines of a PO line, or invoice lines of a GRN line."""
        return self._documents.lines_referencing(ctx, line_id)

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def create_purchase_order(
        self,
        ctx: RequestContext,
        *,
        supplier_id: UUID,
        warehouse_id: UUID,
        lines: Sequence[OrderLineCommand],
        notes: str | None = None,
    ) -> DocumentSnapshot:
        if not lines:
            raise ValidationError("a purchase order needs at least one line", field="items")
        rows = []
        for line in lines:
            product = require_product(self._catalog, line.product_id)
            rows.append({
                "product_id": line.product_id,
                "category": product.category,
                "ordered_qty": line.quantity,
            })

        def work() -> DocumentSnapshot:
            header = self._machine.create(
                ctx, PO, prefix="PO", lines=rows,
                counterparty_id=supplier_id, warehouse_id=warehouse_id, notes=notes,
            )
            return header.to_dto()

        return self._run(ctx, "purchase_order.create", work)

    def confirm_purchase_order(
        self, ctx: RequestContext, po_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, po_id, PO, "confirm", request)

    def complete_purchase_order(
        self, ctx: RequestContext, po_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """Close a PO; short lines need ``{"forceClose": true, "reason": ...}``."""

        def record_short_close(ec: EffectContext) -> None:
            if ec.payload.get("forceClose") is True:
                ec.header.attributes = {
                    **(ec.header.attributes or {}),
                    "shortCloseReason": ec.payload["reason"].strip(),
                }

        return self._act(ctx, po_id, PO, "complete", request, effect=record_short_close)

    def cancel_purchase_order(
        self, ctx: RequestContext, po_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, po_id, PO, "cancel", request)

    # =========================================================================
    # Goods receipts
    # =========================================================================

    def create_goods_receipt(
        self,
        ctx: RequestContext,
        *,
        po_id: UUID,
        items: Sequence[ReceiptItemCommand],
        warehouse_id: UUID | None = None,
        notes: str | None = None,
    ) -> DocumentSnapshot:
        """
        Record goods arriving against a CONFIRMED purchase order.

        Each item is checked against its PO line: same product, batch and
        expiry captured where the product requires them, and the received
        quantity inside the tolerance window of the line's open quantity.
        """
        if not items:
            raise ValidationError("a goods receipt needs at least one item", field="items")
        seen: set[UUID] = set()
        for item in items:
            if item.po_line_id in seen:
                raise ValidationError(
                    f"PO line {item.po_line_id} appears more than once", field="poItemId"
                )
            seen.add(item.po_line_id)

        def work() -> DocumentSnapshot:
            po = self._machine.lock_header(ctx, po_id, PO)
            if po.status != "CONFIRMED":
                raise InvalidTransitionError(PO, po_id, po.status, "receive_goods")
            target_warehouse = warehouse_id or po.warehouse_id
            if target_warehouse is None:
                raise ValidationError("warehouseId is required", field="warehouseId")
            po_lines = {ln.id: ln for ln in po.lines}

            rows = []
            for item in items:
                po_line = po_lines.get(item.po_line_id)
                if po_line is None:
                    raise DocumentLineNotFoundError(item.po_line_id)
                if po_line.product_id != item.product_id:
                    raise ProductMismatchError(po_line.id, po_line.product_id, item.product_id)
                product = require_product(self._catalog, item.product_id)
                if self._config.enforce_batch_numbers and product.is_batch_tracked and not item.batch_number:
                    raise MissingBatchNumberError(item.product_id)
                if self._config.enforce_expiry_dates and product.is_perishable and item.expiry_date is None:
                    raise MissingExpiryDateError(item.product_id)

                remaining = max(po_line.ordered_qty - po_line.received_qty, ZERO)
                window = tolerance_window(
                    self._session, ctx, self._catalog, item.product_id, remaining
                )
                self._validator.check_receipt(received_qty=item.received_qty, window=window)
                rows.append({
                    "reference_line_id": po_line.id,
                    "product_id": item.product_id,
                    "category": product.category,
                    "ordered_qty": remaining,
                    "batch_number": item.batch_number,
                    "expiry_date": item.expiry_date,
                })

            header = self._machine.create(
                ctx, GRN, prefix="GRN", lines=rows,
                parent_refs=[po_id],
                counterparty_id=po.counterparty_id,
                warehouse_id=target_warehouse,
                notes=notes,
            )
            for line, item in zip(sorted(header.lines, key=lambda r: r.line_no), items):
                self._ledger.apply_delta(
                    line.id, QuantityField.RECEIVED, item.received_qty, actor_id=ctx.actor_id
                )
            return header.to_dto()

        return self._run(ctx, "goods_receipt.create", work, document_id=po_id)

    def receive_goods(
        self, ctx: RequestContext, grn_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, grn_id, GRN, "receive", request)

    def inspect_goods(
        self,
        ctx: RequestContext,
        grn_id: UUID,
        items: Sequence[InspectItemCommand],
        request: ActionRequest | None = None,
    ) -> TransitionResult:
        """
        Split each received quantity into accepted and rejected.

        Lines not listed are accepted in full.  For a listed line,
        ``acceptedQty + rejectedQty`` must equal its ``receivedQty``.
        """
        by_line = {item.item_id: item for item in items}
        if len(by_line) != len(items):
            raise ValidationError("an item appears more than once", field="itemId")

        def split(ec: EffectContext) -> None:
            lines = {ln.id: ln for ln in ec.lines}
            unknown = set(by_line) - set(lines)
            if unknown:
                raise DocumentLineNotFoundError(next(iter(unknown)))
            for line in ec.lines:
                item = by_line.get(line.id)
                accepted = item.accepted_qty if item else line.received_qty
                rejected = item.rejected_qty if item else ZERO
                if accepted + rejected != line.received_qty:
                    raise ValidationError(
                        f"acceptedQty + rejectedQty must equal receivedQty ({line.received_qty})",
                        field="acceptedQty",
                    )
                self._ledger.apply_deltas(
                    line.id,
                    {
                        QuantityField.ACCEPTED: accepted - line.accepted_qty,
                        QuantityField.REJECTED: rejected - line.rejected_qty,
                    },
                    actor_id=ec.ctx.actor_id,
                )
                if item is not None and item.quality_note is not None:
                    line.quality_note = item.quality_note

        return self._act(ctx, grn_id, GRN, "inspect", request, effect=split)

    def accept_goods(
        self, ctx: RequestContext, grn_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """
        INSPECTED -> ACCEPTED (nothing rejected) or PARTIAL.  A receipt whose
        inspection accepted nothing is refused here and goes through reject.

        Raises the PO line totals under the tolerance ceiling, moves the
        accepted quantity into stock, opens dispositions for rejections, and
        completes the PO when every line is now received in full.
        """
        po_ids: list[UUID] = []

        def post_receipt(ec: EffectContext) -> None:
            po_ids[:] = [UUID(str(p)) for p in ec.header.parent_refs]
            for line in sorted(ec.lines, key=lambda r: str(r.reference_line_id)):
                accepted = line.accepted_qty
                if line.reference_line_id is not None and accepted > ZERO:
                    po_line = self._ledger.lock_line(line.reference_line_id)
                    tol = effective_tolerance(self._session, ec.ctx, self._catalog, line.product_id)
                    ceiling = self._resolver.ceiling(tol, po_line.ordered_qty)
                    self._ledger.apply_deltas(
                        po_line.id,
                        {QuantityField.RECEIVED: accepted, QuantityField.ACCEPTED: accepted},
                        ceilings={QuantityField.RECEIVED: ceiling},
                        actor_id=ec.ctx.actor_id,
                    )
                if accepted > ZERO:
                    self._stock.move(
                        ec.ctx, ec.header.warehouse_id, line.product_id, accepted,
                        reason="goods_receipt_accept", document_id=ec.header.id,
                    )
                self._dispositions.open_for_line(ec.ctx, line)

        def maybe_complete_po(result: TransitionResult) -> None:
            if not self._config.auto_complete_for(ctx.company_id):
                return
            for po_id in po_ids:
                self._auto_complete(ctx, po_id)

        return self._act(
            ctx, grn_id, GRN, "accept", request,
            effect=post_receipt, after=maybe_complete_po,
        )

    def _auto_complete(self, ctx: RequestContext, po_id: UUID) -> None:
        po = self._machine.lock_header(ctx, po_id, PO)
        if po.status != "CONFIRMED":
            return
        if any(ln.received_qty < ln.ordered_qty for ln in po.lines):
            return
        self._machine.transition(
            ctx, po_id, "complete", {}, doc_type=PO,
            idempotency_key=generate_idempotency_key(po_id, "complete", "auto"),
        )
        logger.info("purchase_order_auto_completed", extra={"po_id": str(po_id)})

    def reject_goods(
        self, ctx: RequestContext, grn_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """INSPECTED -> REJECTED; everything received is rejected.  Needs ``rejectionReason``."""

        def reject_all(ec: EffectContext) -> None:
            reason = ec.payload["rejectionReason"].strip()
            ec.header.attributes = {**(ec.header.attributes or {}), "rejectionReason": reason}
            for line in ec.lines:
                self._ledger.apply_deltas(
                    line.id,
                    {
                        QuantityField.ACCEPTED: -line.accepted_qty,
                        QuantityField.REJECTED: line.received_qty - line.rejected_qty,
                    },
                    actor_id=ec.ctx.actor_id,
                )
                line.rejection_reason = reason
                self._dispositions.open_for_line(ec.ctx, line)

        return self._act(ctx, grn_id, GRN, "reject", request, effect=reject_all)

    # -- dispositions ---------------------------------------------------------

    def _grn_line(self, ctx: RequestContext, grn_id: UUID, grn_line_id: UUID) -> None:
        line = self._documents.line(ctx, grn_line_id)
        if line.document_id != grn_id:
            raise DocumentLineNotFoundError(grn_line_id)

    def update_disposition(
        self,
        ctx: RequestContext,
        grn_id: UUID,
        grn_line_id: UUID,
        disposition: str,
        notes: str | None = None,
    ) -> DispositionInfo:
        def work() -> DispositionInfo:
            self._grn_line(ctx, grn_id, grn_line_id)
            return self._dispositions.update(ctx, grn_line_id, disposition, notes)

        return self._run(ctx, "disposition.update", work, document_id=grn_id)

    def resolve_disposition(
        self,
        ctx: RequestContext,
        grn_id: UUID,
        grn_line_id: UUID,
        notes: str | None = None,
    ) -> DispositionInfo:
        def work() -> DispositionInfo:
            self._grn_line(ctx, grn_id, grn_line_id)
            return self._dispositions.resolve(ctx, grn_line_id, notes)

        return self._run(ctx, "disposition.resolve", work, document_id=grn_id)

    def get_disposition(self, ctx: RequestContext, grn_line_id: UUID) -> DispositionInfo:
        return self._dispositions.get(ctx, grn_line_id)

    # =========================================================================
    # Purchase invoices
    # =========================================================================

    def create_purchase_invoice(
        self,
        ctx: RequestContext,
        *,
        lines: Sequence[InvoiceLineCommand],
        supplier_id: UUID | None = None,
        notes: str | None = None,
    ) -> DocumentSnapshot:
        """
        Draft an invoice against accepted goods-receipt lines.

        The 3-way match runs here as a preview and again, under lock, on
        ``submit``; only ``submit`` changes any total.
        """
        if not lines:
            raise ValidationError("an invoice needs at least one line", field="items")

        def work() -> DocumentSnapshot:
            policy = self._config.policy_for(ctx.company_id)
            grn_ids: list[UUID] = []
            rows = []
            for cmd in lines:
                grn_line = self._documents.line(ctx, cmd.grn_line_id)
                grn = self._documents.get(ctx, grn_line.document_id, GRN)
                if grn.status not in INVOICEABLE_GRN_STATUSES:
                    raise InvalidTransitionError(GRN, grn.document_id, grn.status, "invoice")
                po_line = (
                    self._documents.line(ctx, grn_line.reference_line_id)
                    if grn_line.reference_line_id else None
                )
                self._validator.three_way_match(
                    grn_line=grn_line, po_line=po_line,
                    requested_qty=cmd.quantity, policy=policy,
                )
                if grn.document_id not in grn_ids:
                    grn_ids.append(grn.document_id)
                rows.append({
                    "reference_line_id": grn_line.line_id,
                    "product_id": grn_line.product_id,
                    "category": grn_line.category,
                    "ordered_qty": cmd.quantity,
                })
            header = self._machine.create(
                ctx, INVOICE, prefix="PINV", lines=rows,
                parent_refs=grn_ids, counterparty_id=supplier_id, notes=notes,
                attributes={"invoiceControlPolicy": policy.value},
            )
            return header.to_dto()

        return self._run(ctx, "purchase_invoice.create", work)

    def _invoice_deltas(self, ec: EffectContext, sign: Decimal) -> None:
        """Apply (or reverse) each invoice line's quantity on its GRN and PO line."""
        policy = self._config.policy_for(ec.ctx.company_id)
        for line in sorted(ec.lines, key=lambda r: str(r.reference_line_id)):
            grn_line = self._ledger.lock_line(line.reference_line_id)
            po_line = (
                self._ledger.lock_line(grn_line.reference_line_id)
                if grn_line.reference_line_id else None
            )
            if sign > 0:
                self._validator.three_way_match(
                    grn_line=grn_line.to_dto(),
                    po_line=po_line.to_dto() if po_line is not None else None,
                    requested_qty=line.ordered_qty,
                    policy=policy,
                )
            delta = sign * line.ordered_qty
            self._ledger.apply_delta(
                grn_line.id, QuantityField.INVOICED, delta, actor_id=ec.ctx.actor_id
            )
            if po_line is not None:
                self._ledger.apply_delta(
                    po_line.id, QuantityField.INVOICED, delta, actor_id=ec.ctx.actor_id
                )

    def submit_purchase_invoice(
        self, ctx: RequestContext, invoice_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(
            ctx, invoice_id, INVOICE, "submit", request,
            effect=lambda ec: self._invoice_deltas(ec, Decimal(1)),
        )

    def approve_purchase_invoice(
        self, ctx: RequestContext, invoice_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, invoice_id, INVOICE, "approve", request)

    def pay_purchase_invoice(
        self, ctx: RequestContext, invoice_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, invoice_id, INVOICE, "pay", request)

    def _reverse_if_submitted(self, ec: EffectContext) -> None:
        if ec.transition.from_state == "SUBMITTED":
            self._invoice_deltas(ec, Decimal(-1))

    def reject_purchase_invoice(
        self, ctx: RequestContext, invoice_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(
            ctx, invoice_id, INVOICE, "reject", request, effect=self._reverse_if_submitted
        )

    def cancel_purchase_invoice(
        self, ctx: RequestContext, invoice_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(
            ctx, invoice_id, INVOICE, "cancel", request, effect=self._reverse_if_submitted
        )
