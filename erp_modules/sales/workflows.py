"""
Sales Workflows.

State machines for sales orders and deliveries.  Unlike the procurement
guards, the sales guards look past the locked document: the order's ship
and deliver edges measure lines against the tolerance window, and the
cancel edges check the order and its deliveries against each other.  The
service supplies those reads through ``SalesGuardLookups``.
"""

from decimal import Decimal
from typing import Protocol
from uuid import UUID

from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import LineSnapshot
from erp_kernel.domain.values import DocumentType
from erp_kernel.domain.workflow import Guard, Transition, Workflow
from erp_kernel.logging_config import get_logger
from erp_services.state_machine import GuardContext, GuardExecutor, GuardVerdict

logger = get_logger("modules.sales.workflows")

# Statuses in which an order still accepts shipments against it.
ORDER_OPEN_FOR_SHIPPING = frozenset({"APPROVED", "PROCESSING"})


class SalesGuardLookups(Protocol):
    """Reads the sales guards need beyond the locked document."""

    def order_status(self, ctx: RequestContext, so_id: UUID) -> str:
        """Status of the sales order, read under its row lock."""
        ...

    def deliveries_in_transit(self, ctx: RequestContext, so_id: UUID) -> int:
        ...

    def minimum_quantity(self, ctx: RequestContext, line: LineSnapshot) -> Decimal:
        """Lower bound of the tolerance window around the line's ordered quantity."""
        ...


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALL_LINES_SHIPPED = Guard(
    name="so_all_lines_shipped",
    description="Every sales order line shipped up to its tolerance window",
)

ALL_LINES_DELIVERED = Guard(
    name="so_all_lines_delivered",
    description="Every shipped quantity delivered, within the tolerance window",
)

NO_DELIVERY_IN_TRANSIT = Guard(
    name="so_no_delivery_in_transit",
    description="No delivery against the order is on the road",
)

ORDER_OPEN = Guard(
    name="delivery_order_open",
    description="The sales order is still APPROVED or PROCESSING",
)


def register_guards(executor: GuardExecutor, lookups: SalesGuardLookups) -> None:

    def all_lines_shipped(context: GuardContext) -> GuardVerdict:
        short = [
            ln.line_no for ln in context.document.lines
            if ln.shipped_qty < lookups.minimum_quantity(context.ctx, ln)
        ]
        if short:
            return GuardVerdict.fail(f"line(s) {short} shipped below the tolerance window")
        return GuardVerdict.ok()

    def all_lines_delivered(context: GuardContext) -> GuardVerdict:
        short = [
            ln.line_no for ln in context.document.lines
            if ln.delivered_qty < ln.shipped_qty
            or ln.delivered_qty < lookups.minimum_quantity(context.ctx, ln)
        ]
        if short:
            return GuardVerdict.fail(f"line(s) {short} not fully delivered")
        return GuardVerdict.ok()

    def no_delivery_in_transit(context: GuardContext) -> GuardVerdict:
        moving = lookups.deliveries_in_transit(context.ctx, context.document.document_id)
        if moving:
            return GuardVerdict.fail(
                f"{moving} delivery(ies) in transit; cancel or deliver them first"
            )
        return GuardVerdict.ok()

    def order_open(context: GuardContext) -> GuardVerdict:
        for so_id in context.document.parent_refs:
            status = lookups.order_status(context.ctx, UUID(str(so_id)))
            if status not in ORDER_OPEN_FOR_SHIPPING:
                return GuardVerdict.fail(f"sales order {so_id} is {status}")
        return GuardVerdict.ok()

    executor.register(ALL_LINES_SHIPPED.name, all_lines_shipped)
    executor.register(ALL_LINES_DELIVERED.name, all_lines_delivered)
    executor.register(NO_DELIVERY_IN_TRANSIT.name, no_delivery_in_transit)
    executor.register(ORDER_OPEN.name, order_open)


# -----------------------------------------------------------------------------
# Sales Order Workflow
# -----------------------------------------------------------------------------

_SO_OPEN = ("DRAFT", "PENDING", "APPROVED", "PROCESSING", "SHIPPED", "DELIVERED")

SALES_ORDER_WORKFLOW = Workflow(
    name="sales_order",
    doc_type=DocumentType.SALES_ORDER.value,
    description="Sales order from draft to completion",
    initial_state="DRAFT",
    states=_SO_OPEN + ("COMPLETED", "CANCELLED"),
    transitions=(
        Transition("DRAFT", "PENDING", action="submit"),
        Transition("PENDING", "APPROVED", action="approve"),
        Transition("APPROVED", "PROCESSING", action="process"),
        Transition("PROCESSING", "SHIPPED", action="ship", guard=ALL_LINES_SHIPPED),
        Transition("SHIPPED", "DELIVERED", action="deliver", guard=ALL_LINES_DELIVERED),
        Transition("DELIVERED", "COMPLETED", action="complete"),
    ) + tuple(
        Transition(state, "CANCELLED", action="cancel", guard=NO_DELIVERY_IN_TRANSIT)
        for state in _SO_OPEN
    ),
    terminal_states=("COMPLETED", "CANCELLED"),
)


# -----------------------------------------------------------------------------
# Delivery Workflow
# -----------------------------------------------------------------------------

# Once the order has moved past PROCESSING its shipped totals are settled:
# an in-transit delivery can then only be delivered.
DELIVERY_WORKFLOW = Workflow(
    name="delivery",
    doc_type=DocumentType.DELIVERY.value,
    description="Outbound delivery against a sales order",
    initial_state="PREPARED",
    states=("PREPARED", "IN_TRANSIT", "DELIVERED", "CONFIRMED", "CANCELLED"),
    transitions=(
        Transition(
            "PREPARED", "IN_TRANSIT", action="ship", guard=ORDER_OPEN, mutates_stock=True,
        ),
        Transition("IN_TRANSIT", "DELIVERED", action="deliver"),
        Transition("DELIVERED", "CONFIRMED", action="confirm"),
        Transition("PREPARED", "CANCELLED", action="cancel"),
        Transition(
            "IN_TRANSIT", "CANCELLED", action="cancel", guard=ORDER_OPEN, mutates_stock=True,
        ),
    ),
    terminal_states=("CONFIRMED", "CANCELLED"),
)

SALES_WORKFLOWS = (SALES_ORDER_WORKFLOW, DELIVERY_WORKFLOW)

for _wf in SALES_WORKFLOWS:
    logger.info(
        "sales_workflow_registered",
        extra={
            "workflow_name": _wf.name,
            "state_count": len(_wf.states),
            "transition_count": len(_wf.transitions),
            "initial_state": _wf.initial_state,
        },
    )
