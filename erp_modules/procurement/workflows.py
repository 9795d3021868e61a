"""
Procurement Workflows.

State machines for purchase orders, goods receipts and purchase invoices,
plus the evaluators behind their guards.  Guards read only the locked
document snapshot and the action payload.
"""

from erp_kernel.domain.values import DocumentType
from erp_kernel.domain.workflow import Guard, Transition, Workflow
from erp_kernel.logging_config import get_logger
from erp_services.state_machine import GuardContext, GuardExecutor, GuardVerdict

logger = get_logger("modules.procurement.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALL_LINES_RECEIVED = Guard(
    name="po_all_lines_received",
    description="Every PO line received in full, or force-closed with a reason",
)

NOTHING_RECEIVED = Guard(
    name="po_nothing_received",
    description="No goods have been received against the PO",
)

INSPECTION_CLEAN = Guard(
    name="grn_inspection_clean",
    description="Every line inspected and nothing rejected",
)

SOMETHING_ACCEPTED = Guard(
    name="grn_something_accepted",
    description="Every received quantity split into accepted and rejected, some of it accepted",
)

REJECTION_REASON_GIVEN = Guard(
    name="grn_rejection_reason_given",
    description="A rejection reason is supplied",
)


def _all_lines_received(context: GuardContext) -> GuardVerdict:
    short = [ln for ln in context.document.lines if ln.received_qty < ln.ordered_qty]
    if not short:
        return GuardVerdict.ok()
    if context.get("forceClose") is True:
        reason = context.get("reason")
        if isinstance(reason, str) and reason.strip():
            return GuardVerdict.ok()
        return GuardVerdict.fail("forceClose requires a reason")
    return GuardVerdict.fail(
        f"{len(short)} line(s) have receivedQty < orderedQty; use forceClose with a reason"
    )


def _nothing_received(context: GuardContext) -> GuardVerdict:
    if any(ln.received_qty > 0 for ln in context.document.lines):
        return GuardVerdict.fail("goods already received; complete with forceClose instead")
    return GuardVerdict.ok()


def _uninspected(context: GuardContext) -> int:
    return sum(
        1 for ln in context.document.lines
        if ln.accepted_qty + ln.rejected_qty != ln.received_qty
    )


def _inspection_clean(context: GuardContext) -> GuardVerdict:
    pending = _uninspected(context)
    if pending:
        return GuardVerdict.fail(f"{pending} line(s) not fully inspected")
    if any(ln.rejected_qty > 0 for ln in context.document.lines):
        return GuardVerdict.fail("some quantity was rejected")
    return GuardVerdict.ok()


def _something_accepted(context: GuardContext) -> GuardVerdict:
    pending = _uninspected(context)
    if pending:
        return GuardVerdict.fail(f"{pending} line(s) not fully inspected")
    if not any(ln.accepted_qty > 0 for ln in context.document.lines):
        return GuardVerdict.fail("nothing accepted; use reject with a rejectionReason")
    return GuardVerdict.ok()


def _rejection_reason_given(context: GuardContext) -> bool:
    reason = context.get("rejectionReason")
    return isinstance(reason, str) and bool(reason.strip())


def register_guards(executor: GuardExecutor) -> None:
    executor.register(ALL_LINES_RECEIVED.name, _all_lines_received)
    executor.register(NOTHING_RECEIVED.name, _nothing_received)
    executor.register(INSPECTION_CLEAN.name, _inspection_clean)
    executor.register(SOMETHING_ACCEPTED.name, _something_accepted)
    executor.register(REJECTION_REASON_GIVEN.name, _rejection_reason_given)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    doc_type=DocumentType.PURCHASE_ORDER.value,
    description="Purchase order lifecycle",
    initial_state="DRAFT",
    states=("DRAFT", "CONFIRMED", "COMPLETED", "CANCELLED"),
    transitions=(
        Transition("DRAFT", "CONFIRMED", action="confirm"),
        Transition("CONFIRMED", "COMPLETED", action="complete", guard=ALL_LINES_RECEIVED),
        Transition("DRAFT", "CANCELLED", action="cancel"),
        Transition("CONFIRMED", "CANCELLED", action="cancel", guard=NOTHING_RECEIVED),
    ),
    terminal_states=("COMPLETED", "CANCELLED"),
)


# -----------------------------------------------------------------------------
# Goods Receipt Workflow
# -----------------------------------------------------------------------------

GOODS_RECEIPT_WORKFLOW = Workflow(
    name="goods_receipt",
    doc_type=DocumentType.GOODS_RECEIPT.value,
    description="Goods receipt with quality inspection",
    initial_state="PENDING",
    states=("PENDING", "RECEIVED", "INSPECTED", "ACCEPTED", "PARTIAL", "REJECTED"),
    transitions=(
        Transition("PENDING", "RECEIVED", action="receive"),
        Transition("RECEIVED", "INSPECTED", action="inspect"),
        # First passing guard wins: clean inspection -> ACCEPTED, else PARTIAL.
        # A receipt with nothing accepted can only be rejected.
        Transition(
            "INSPECTED", "ACCEPTED", action="accept",
            guard=INSPECTION_CLEAN, mutates_stock=True,
        ),
        Transition(
            "INSPECTED", "PARTIAL", action="accept",
            guard=SOMETHING_ACCEPTED, mutates_stock=True,
        ),
        Transition("INSPECTED", "REJECTED", action="reject", guard=REJECTION_REASON_GIVEN),
    ),
    terminal_states=("ACCEPTED", "PARTIAL", "REJECTED"),
)


# -----------------------------------------------------------------------------
# Purchase Invoice Workflow
# -----------------------------------------------------------------------------

PURCHASE_INVOICE_WORKFLOW = Workflow(
    name="purchase_invoice",
    doc_type=DocumentType.PURCHASE_INVOICE.value,
    description="Supplier invoice matched against goods receipts",
    initial_state="DRAFT",
    states=("DRAFT", "SUBMITTED", "APPROVED", "PAID", "REJECTED", "CANCELLED"),
    transitions=(
        Transition("DRAFT", "SUBMITTED", action="submit"),
        Transition("SUBMITTED", "APPROVED", action="approve"),
        Transition("APPROVED", "PAID", action="pay"),
        Transition("SUBMITTED", "REJECTED", action="reject"),
        Transition("DRAFT", "CANCELLED", action="cancel"),
        Transition("SUBMITTED", "CANCELLED", action="cancel"),
    ),
    terminal_states=("PAID", "REJECTED", "CANCELLED"),
)

PROCUREMENT_WORKFLOWS = (
    PURCHASE_ORDER_WORKFLOW,
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_INVOICE_WORKFLOW,
)

for _wf in PROCUREMENT_WORKFLOWS:
    logger.info(
        "procurement_workflow_registered",
        extra={
            "workflow_name": _wf.name,
            "state_count": len(_wf.states),
            "transition_count": len(_wf.transitions),
            "initial_state": _wf.initial_state,
        },
    )
