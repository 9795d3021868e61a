"""
Inventory Module Service (``erp_modules.inventory.service``).

Responsibility
--------------
Documents that move warehouse stock without a trading partner:

* Stock transfer: ``ship`` takes stock out of the source warehouse,
  ``receive`` puts it into the destination; cancelling a SHIPPED transfer
  returns the goods to the source.
* Inventory adjustment: each line raises or lowers stock by a reasoned
  quantity when the adjustment is approved.
* Stock opname: ``start`` snapshots the system quantity of every line,
  counts are recorded while IN_PROGRESS, and ``approve`` books the
  difference ``counted - system``.

Invariants enforced
-------------------
* Stock never goes below zero; a move that would is refused and the whole
  action rolls back.
* Counts can only be recorded on an IN_PROGRESS opname.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_kernel.db.types import ZERO
from erp_kernel.domain.catalog import ProductCatalog, require_product
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import DocumentSnapshot, LineSnapshot, TransitionResult
from erp_kernel.domain.quantities import parse_quantity
from erp_kernel.domain.values import AdjustmentDirection, DocumentType, QuantityField
from erp_kernel.exceptions import (
    DocumentLineNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.selectors.document_selector import DocumentSelector
from erp_kernel.services.quantity_ledger import QuantityLedger
from erp_kernel.services.stock_service import StockService
from erp_modules._action_helpers import run_action
from erp_modules.inventory.config import InventoryConfig
from erp_modules.inventory.workflows import INVENTORY_WORKFLOWS, register_guards
from erp_services.contracts import ActionRequest, AdjustmentLineCommand, OrderLineCommand
from erp_services.state_machine import DocumentStateMachine, EffectContext, GuardExecutor

logger = get_logger("modules.inventory.service")

TRANSFER = DocumentType.STOCK_TRANSFER.value
ADJUSTMENT = DocumentType.INVENTORY_ADJUSTMENT.value
OPNAME = DocumentType.STOCK_OPNAME.value


class InventoryService:

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        *,
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._catalog = catalog
        self._config = config or InventoryConfig.with_defaults()
        self._clock = clock or SystemClock()

        guards = GuardExecutor()
        register_guards(guards)
        self._machine = DocumentStateMachine(session, guards, self._clock)
        for workflow in INVENTORY_WORKFLOWS:
            self._machine.register(workflow)

        self._ledger = QuantityLedger(session)
        self._stock = StockService(session)
        self._documents = DocumentSelector(session)

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

    def _move(self, ec: EffectContext, warehouse_id: UUID, line, delta: Decimal, reason: str) -> None:
        if delta == ZERO:
            return
        self._stock.move(
            ec.ctx, warehouse_id, line.product_id, delta,
            reason=reason, document_id=ec.header.id,
        )

    def get_document(self, ctx: RequestContext, document_id: UUID) -> DocumentSnapshot:
        return self._documents.get(ctx, document_id)

    # =========================================================================
    # Stock transfers
    # =========================================================================

    def create_stock_transfer(
        self,
        ctx: RequestContext,
        *,
        source_warehouse_id: UUID,
        dest_warehouse_id: UUID,
        lines: Sequence[OrderLineCommand],
        notes: str | None = None,
    ) -> DocumentSnapshot:
        if not lines:
            raise ValidationError("a transfer needs at least one line", field="items")
        if self._config.require_distinct_warehouses and source_warehouse_id == dest_warehouse_id:
            raise ValidationError(
                "source and destination warehouse must differ", field="destWarehouseId"
            )
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
                ctx, TRANSFER, prefix="TRF", lines=rows,
                warehouse_id=source_warehouse_id, dest_warehouse_id=dest_warehouse_id,
                notes=notes,
            )
            return header.to_dto()

        return self._run(ctx, "stock_transfer.create", work)

    def ship_stock_transfer(
        self, ctx: RequestContext, transfer_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        def ship(ec: EffectContext) -> None:
            for line in ec.lines:
                self._move(ec, ec.header.warehouse_id, line, -line.ordered_qty, "transfer_out")
                self._ledger.apply_delta(
                    line.id, QuantityField.SHIPPED, line.ordered_qty, actor_id=ec.ctx.actor_id
                )

        return self._act(ctx, transfer_id, TRANSFER, "ship", request, effect=ship)

    def receive_stock_transfer(
        self, ctx: RequestContext, transfer_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        def receive(ec: EffectContext) -> None:
            for line in ec.lines:
                self._move(ec, ec.header.dest_warehouse_id, line, line.shipped_qty, "transfer_in")
                self._ledger.apply_delta(
                    line.id, QuantityField.DELIVERED, line.shipped_qty, actor_id=ec.ctx.actor_id
                )

        return self._act(ctx, transfer_id, TRANSFER, "receive", request, effect=receive)

    def cancel_stock_transfer(
        self, ctx: RequestContext, transfer_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        def restore(ec: EffectContext) -> None:
            if ec.transition.from_state != "SHIPPED":
                return
            for line in ec.lines:
                shipped = line.shipped_qty
                self._ledger.apply_delta(
                    line.id, QuantityField.SHIPPED, -shipped, actor_id=ec.ctx.actor_id
                )
                self._move(ec, ec.header.warehouse_id, line, shipped, "transfer_cancel")

        return self._act(ctx, transfer_id, TRANSFER, "cancel", request, effect=restore)

    # =========================================================================
    # Inventory adjustments
    # =========================================================================

    def create_inventory_adjustment(
        self,
        ctx: RequestContext,
        *,
        warehouse_id: UUID,
        lines: Sequence[AdjustmentLineCommand],
        notes: str | None = None,
    ) -> DocumentSnapshot:
        if not lines:
            raise ValidationError("an adjustment needs at least one line", field="items")
        rows = []
        for line in lines:
            try:
                direction = AdjustmentDirection(line.direction)
            except ValueError:
                raise ValidationError(
                    f"direction must be one of {', '.join(d.value for d in AdjustmentDirection)}",
                    field="direction",
                ) from None
            if line.reason not in self._config.allowed_adjustment_reasons:
                raise ValidationError(f"reason {line.reason!r} is not allowed", field="reason")
            product = require_product(self._catalog, line.product_id)
            rows.append({
                "product_id": line.product_id,
                "category": product.category,
                "ordered_qty": line.quantity,
                "direction": direction.value,
                "reason": line.reason,
            })

        def work() -> DocumentSnapshot:
            header = self._machine.create(
                ctx, ADJUSTMENT, prefix="ADJ", lines=rows,
                warehouse_id=warehouse_id, notes=notes,
            )
            return header.to_dto()

        return self._run(ctx, "inventory_adjustment.create", work)

    def approve_inventory_adjustment(
        self, ctx: RequestContext, adjustment_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        def apply(ec: EffectContext) -> None:
            for line in ec.lines:
                sign = Decimal(1) if line.direction == AdjustmentDirection.INCREASE.value else Decimal(-1)
                self._move(
                    ec, ec.header.warehouse_id, line, sign * line.ordered_qty,
                    f"adjustment_{line.reason.lower()}",
                )

        return self._act(ctx, adjustment_id, ADJUSTMENT, "approve", request, effect=apply)

    def cancel_inventory_adjustment(
        self, ctx: RequestContext, adjustment_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, adjustment_id, ADJUSTMENT, "cancel", request)

    # =========================================================================
    # Stock opname
    # =========================================================================

    def create_stock_opname(
        self,
        ctx: RequestContext,
        *,
        warehouse_id: UUID,
        product_ids: Sequence[UUID],
        notes: str | None = None,
    ) -> DocumentSnapshot:
        if not product_ids:
            raise ValidationError("an opname needs at least one product", field="items")
        if len(set(product_ids)) != len(product_ids):
            raise ValidationError("a product appears more than once", field="productId")
        rows = []
        for product_id in product_ids:
            product = require_product(self._catalog, product_id)
            rows.append({"product_id": product_id, "category": product.category, "ordered_qty": ZERO})

        def work() -> DocumentSnapshot:
            header = self._machine.create(
                ctx, OPNAME, prefix="OPN", lines=rows, warehouse_id=warehouse_id, notes=notes,
            )
            return header.to_dto()

        return self._run(ctx, "stock_opname.create", work)

    def start_stock_opname(
        self, ctx: RequestContext, opname_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """DRAFT -> IN_PROGRESS, freezing each line's system quantity."""

        def snapshot(ec: EffectContext) -> None:
            for line in ec.lines:
                on_hand = self._stock.on_hand(ec.ctx, ec.header.warehouse_id, line.product_id)
                self._ledger.record_count(line.id, system_qty=on_hand, actor_id=ec.ctx.actor_id)

        return self._act(ctx, opname_id, OPNAME, "start", request, effect=snapshot)

    def record_count(
        self, ctx: RequestContext, opname_id: UUID, line_id: UUID, counted_qty: Any
    ) -> LineSnapshot:
        counted = parse_quantity(counted_qty, "countedQty")

        def work() -> LineSnapshot:
            header = self._machine.lock_header(ctx, opname_id, OPNAME)
            if header.status != "IN_PROGRESS":
                raise InvalidTransitionError(OPNAME, opname_id, header.status, "record_count")
            if line_id not in {ln.id for ln in header.lines}:
                raise DocumentLineNotFoundError(line_id)
            return self._ledger.record_count(line_id, counted_qty=counted, actor_id=ctx.actor_id)

        return self._run(ctx, "stock_opname.record_count", work, document_id=opname_id)

    def complete_stock_opname(
        self, ctx: RequestContext, opname_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, opname_id, OPNAME, "complete", request)

    def approve_stock_opname(
        self, ctx: RequestContext, opname_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        """COMPLETED -> APPROVED, booking ``counted - system`` per line."""

        def book(ec: EffectContext) -> None:
            for line in ec.lines:
                self._move(
                    ec, ec.header.warehouse_id, line,
                    line.counted_qty - line.system_qty, "opname_variance",
                )

        return self._act(ctx, opname_id, OPNAME, "approve", request, effect=book)

    def cancel_stock_opname(
        self, ctx: RequestContext, opname_id: UUID, request: ActionRequest | None = None
    ) -> TransitionResult:
        return self._act(ctx, opname_id, OPNAME, "cancel", request)

    def stock_on_hand(self, ctx: RequestContext, warehouse_id: UUID, product_id: UUID) -> Decimal:
        return self._stock.on_hand(ctx, warehouse_id, product_id)
