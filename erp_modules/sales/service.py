"""
Sales Module Service (``erp_modules.sales.service``).

Sales orders and the deliveries that fulfil them.  A delivery may be
prepared while its order is APPROVED or PROCESSING; shipping it takes the
goods out of stock and raises the order line's shipped total under the
tolerance ceiling, delivering it raises the delivered total.

Every public method owns its transaction through ``run_action``.
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
from erp_kernel.domain.dtos import DocumentSnapshot, LineSnapshot, TransitionResult
from erp_kernel.domain.values import DocumentType, QuantityField
from erp_kernel.exceptions import (
    DocumentLineNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.selectors.document_selector import DocumentSelector
from erp_kernel.services.quantity_ledger import QuantityLedger
from erp_kernel.services.stock_service import StockService
from erp_kernel.utils.idempotency import generate_idempotency_key
from erp_modules._action_helpers import effective_tolerance, run_action, tolerance_window
from erp_modules.sales.config import SalesConfig
from erp_modules.sales.workflows import (
    ORDER_OPEN_FOR_SHIPPING,
    SALES_WORKFLOWS,
    register_guards,
)
from erp_services.contracts import ActionRequest, DeliveryLineCommand, OrderLineCommand
from erp_services.state_machine import DocumentStateMachine, EffectContext, GuardExecutor

logger = get_logger("modules.sales.service")

SO = DocumentType.SALES_ORDER.value
DELIVERY = DocumentType.DELIVERY.value

DELIVERABLE_SO_STATUSES = ORDER_OPEN_FOR_SHIPPING


class SalesService:
    """
    Orchestrates sales orders and deliveries.

    Create methods return a ``DocumentSnapshot``; action methods return a
    ``TransitionResult``.  Failures raise ``ErpKernelError`` subclasses
    after the session has been rolled back.
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        *,
        config: SalesConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._catalog = catalog
        self._config = config or SalesConfig.with_defaults()
        self._clock = clock or SystemClock()

        guards = GuardExecutor()
        register_guards(guards, self)
        self._machine = DocumentStateMachine(session, guards, self._clock)
        for workflow in SALES_WORKFLOWS:
            self._machine.register(workflow)

        self._ledger = QuantityLedger(session)
        self._stock = StockService(session)
        self._documents = DocumentSelector(session)
        self._validator = ReconciliationValidator()
        self._resolver = ToleranceResolver()

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
    ) -> TransitionResult:
        request = request or ActionRequest()

        def work() -> TransitionResult:
            return self._machine.transition(
                ctx, document_id, action, request.payload,
                doc_type=doc_type,
                idempotency_key=request.idempotency_key,
                expected_version=request.expected_version,
                effect=effect,
            )

        return self._run(
            ctx, f"{doc_type.lower()}.{action}", work,
            document_id=document_id, idempotency_key=request.idempotency_key,
        )

    def get_document(self, ctx: RequestContext, document_id: UUID) -> DocumentSnapshot:
        return self._documents.get(ctx, document_id)

    def deliveries_for(self, ctx: RequestContext, so_id: UUID) -> list[DocumentSnapshot]:
        return self._documents.children(ctx, so_id, DELIVERY)

    # -- guard lookups ---------------------------------------------------------

    def order_status(self, ctx: RequestContext, so_id: UUID) -> str:
        # Delivery before order, the same lock order start_delivery takes.
        return self._machine.lock_header(ctx, so_id, SO).status

    def deliveries_in_transit(self, ctx: RequestContext, so_id: UUID) -> int:
        return sum(1 for d in self.deliveries_for(ctx, so_id) if d.status == "IN_TRANSIT")

    def minimum_quantity(self, ctx: RequestContext, line: LineSnapshot) -> Decimal:
        return tolerance_window(
            self._session, ctx, self._catalog, line.product_id, line.ordered_qty
        ).min_qty

    # =========================================================================
    # Sales orders
    # =========================================================================

    def create_sales_order(
        self,
        ctx: RequestContext,
        *,
        customer_id: UUID,
        warehouse_id: UUID,
        lines: Sequence[OrderLineCommand],
        notes: str | None = None,
    ) -> DocumentSnapshot:
        if not lines:
            raise ValidationError("a sales order needs at least one line", field="items")
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
                ctx, SO, prefix="SO", lines=rows,
                counterparty_id=customer_id, warehouse_id=warehouse_id, notes=notes,
            )
            return header.to_dto()

        return self._run(ctx, "sales_order.create", work)

    def submit_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        return self._act(ctx, so_id, SO, "submit", request)

    def approve_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        return self._act(ctx, so_id, SO, "approve", request)

    def start_processing_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        return self._act(ctx, so_id, SO, "process", request)

    def ship_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        """PROCESSING -> SHIPPED once every line has shipped at least the window minimum."""
        return self._act(ctx, so_id, SO, "ship", request)

    def deliver_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        return self._act(ctx, so_id, SO, "deliver", request)

    def complete_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        return self._act(ctx, so_id, SO, "complete", request)

    def cancel_sales_order(self, ctx, so_id: UUID, request: ActionRequest | None = None):
        """Refused while any delivery against the order is IN_TRANSIT."""
        return self._act(ctx, so_id, SO, "cancel", request)

    # =========================================================================
    # Deliveries
    # =========================================================================

    def create_delivery(
        self,
        ctx: RequestContext,
        *,
        so_id: UUID,
        lines: Sequence[DeliveryLineCommand],
        warehouse_id: UUID | None = None,
        notes: str | None = None,
    ) -> DocumentSnapshot:
        """
        Prepare a delivery against an APPROVED or PROCESSING sales order.

        Each quantity must sit inside the tolerance window around the order
        line's unshipped quantity.
        """
        if not lines:
            raise ValidationError("a delivery needs at least one line", field="items")
        if len({cmd.so_line_id for cmd in lines}) != len(lines):
            raise ValidationError("an order line appears more than once", field="soItemId")

        def work() -> DocumentSnapshot:
            so = self._machine.lock_header(ctx, so_id, SO)
            if so.status not in DELIVERABLE_SO_STATUSES:
                raise InvalidTransitionError(SO, so_id, so.status, "create_delivery")
            source = warehouse_id or so.warehouse_id
            if source is None:
                raise ValidationError("warehouseId is required", field="warehouseId")
            so_lines = {ln.id: ln for ln in so.lines}

            rows = []
            for cmd in lines:
                so_line = so_lines.get(cmd.so_line_id)
                if so_line is None:
                    raise DocumentLineNotFoundError(cmd.so_line_id)
                remaining = max(so_line.ordered_qty - so_line.shipped_qty, ZERO)
                window = tolerance_window(
                    self._session, ctx, self._catalog, so_line.product_id, remaining
                )
                self._validator.check_delivery(delivered_qty=cmd.quantity, window=window)
                rows.append({
                    "reference_line_id": so_line.id,
                    "product_id": so_line.product_id,
                    "category": so_line.category,
                    "ordered_qty": cmd.quantity,
                })

            header = self._machine.create(
                ctx, DELIVERY, prefix="DO", lines=rows,
                parent_refs=[so_id],
                counterparty_id=so.counterparty_id,
                warehouse_id=source,
                notes=notes,
            )
            return header.to_dto()

        return self._run(ctx, "delivery.create", work, document_id=so_id)

    def _so_line_deltas(
        self, ec: EffectContext, qty_field: QuantityField, sign: Decimal, *, ceiling: bool
    ) -> None:
        for line in sorted(ec.lines, key=lambda r: str(r.reference_line_id)):
            qty = line.ordered_qty if qty_field is QuantityField.SHIPPED else line.shipped_qty
            delta = sign * qty
            self._ledger.apply_delta(line.id, qty_field, delta, actor_id=ec.ctx.actor_id)
            so_line = self._ledger.lock_line(line.reference_line_id)
            limit = None
            if ceiling:
                tol = effective_tolerance(self._session, ec.ctx, self._catalog, so_line.product_id)
                limit = self._resolver.ceiling(tol, so_line.ordered_qty)
            self._ledger.apply_delta(
                so_line.id, qty_field, delta, ceiling=limit, actor_id=ec.ctx.actor_id
            )

    def start_delivery(
        self, ctx: RequestContext, delivery_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """PREPARED -> IN_TRANSIT: stock leaves the warehouse, order lines count it shipped."""
        so_ids: list[UUID] = []

        def ship(ec: EffectContext) -> None:
            so_ids[:] = [UUID(str(p)) for p in ec.header.parent_refs]
            if self._config.auto_process_on_first_shipment:
                for so_id in so_ids:
                    so = self._machine.lock_header(ec.ctx, so_id, SO)
                    if so.status == "APPROVED":
                        self._machine.transition(
                            ec.ctx, so_id, "process", {}, doc_type=SO,
                            idempotency_key=generate_idempotency_key(so_id, "process", "auto"),
                        )
                        logger.info("sales_order_auto_processing", extra={"so_id": str(so_id)})
            for line in ec.lines:
                self._stock.move(
                    ec.ctx, ec.header.warehouse_id, line.product_id, -line.ordered_qty,
                    reason="delivery_ship", document_id=ec.header.id,
                )
            self._so_line_deltas(ec, QuantityField.SHIPPED, Decimal(1), ceiling=True)

        return self._act(ctx, delivery_id, DELIVERY, "ship", request, effect=ship)

    def complete_delivery(
        self, ctx: RequestContext, delivery_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """IN_TRANSIT -> DELIVERED."""
        return self._act(
            ctx, delivery_id, DELIVERY, "deliver", request,
            effect=lambda ec: self._so_line_deltas(
                ec, QuantityField.DELIVERED, Decimal(1), ceiling=False
            ),
        )

    def confirm_delivery(
        self, ctx: RequestContext, delivery_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, delivery_id, DELIVERY, "confirm", request)

    def cancel_delivery(
        self, ctx: RequestContext, delivery_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """
        Cancel a PREPARED or IN_TRANSIT delivery; goods in transit go back on
        the shelf.  An IN_TRANSIT delivery can only be cancelled while its
        order is still APPROVED or PROCESSING.
        """

        def restock(ec: EffectContext) -> None:
            if ec.transition.from_state != "IN_TRANSIT":
                return
            self._so_line_deltas(ec, QuantityField.SHIPPED, Decimal(-1), ceiling=False)
            for line in ec.lines:
                self._stock.move(
                    ec.ctx, ec.header.warehouse_id, line.product_id, line.ordered_qty,
                    reason="delivery_cancel", document_id=ec.header.id,
                )

        return self._act(ctx, delivery_id, DELIVERY, "cancel", request, effect=restock)
