"""
Module: erp_kernel.services.stock_service
Responsibility: Warehouse on-hand balances per (warehouse, product), moved
    only by signed deltas from stock-mutating transitions (accept goods,
    ship delivery, ship/receive transfer, approve adjustment/opname).
Architecture position: Kernel > Services.  Flush-only.

Invariants enforced:
    - Balance rows are locked with ``SELECT ... FOR UPDATE`` before the
      delta is computed.
    - A balance never goes negative: the delta is refused with
      InsufficientStockError instead.
    - First movement for a (warehouse, product) creates the row inside a
      savepoint; a concurrent creator wins and we re-read under lock.

Failure modes:
    - InsufficientStockError, LockContentionError, InvalidQuantityError.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from erp_kernel.db.types import ZERO
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import StockBalance
from erp_kernel.domain.quantities import parse_delta
from erp_kernel.exceptions import InsufficientStockError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.stock import StockLevel
from erp_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.stock")


class StockService(BaseService[StockLevel]):
    """
    Row-locked stock balances.

    Contract:
        ``move(ctx, warehouse_id, product_id, delta)`` returns the new
        balance or raises; nothing is committed here.
    """

    def _select_locked(self, ctx: RequestContext, warehouse_id: UUID, product_id: UUID):
        return (
            select(StockLevel)
            .where(
                StockLevel.tenant_id == ctx.tenant_id,
                StockLevel.company_id == ctx.company_id,
                StockLevel.warehouse_id == warehouse_id,
                StockLevel.product_id == product_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def _lock_or_create(
        self, ctx: RequestContext, warehouse_id: UUID, product_id: UUID
    ) -> StockLevel:
        with translate_db_errors("stock_level", product_id):
            level = self.session.execute(
                self._select_locked(ctx, warehouse_id, product_id)
            ).scalar_one_or_none()
            if level is not None:
                return level

            savepoint = self.session.begin_nested()
            try:
                level = StockLevel(
                    tenant_id=ctx.tenant_id,
                    company_id=ctx.company_id,
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    quantity=ZERO,
                )
                self.session.add(level)
                self.session.flush()
                savepoint.commit()
                return level
            except IntegrityError:
                logger.debug(
                    "stock_level_create_race_retry",
                    extra={"warehouse_id": str(warehouse_id), "product_id": str(product_id)},
                )
                savepoint.rollback()
                return self.session.execute(
                    self._select_locked(ctx, warehouse_id, product_id)
                ).scalar_one()

    def move(
        self,
        ctx: RequestContext,
        warehouse_id: UUID,
        product_id: UUID,
        delta: Any,
        *,
        reason: str,
        document_id: UUID | None = None,
    ) -> StockBalance:
        amount = parse_delta(delta, "quantity")
        level = self._lock_or_create(ctx, warehouse_id, product_id)
        projected = level.quantity + amount
        if projected < ZERO:
            logger.warning(
                "stock_insufficient",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "product_id": str(product_id),
                    "available": str(level.quantity),
                    "requested": str(-amount),
                },
            )
            raise InsufficientStockError(warehouse_id, product_id, level.quantity, -amount)

        level.quantity = projected
        with translate_db_errors("stock_level", product_id):
            self.session.flush()

        logger.info(
            "stock_moved",
            extra={
                "warehouse_id": str(warehouse_id),
                "product_id": str(product_id),
                "delta": str(amount),
                "balance": str(projected),
                "reason": reason,
                "document_id": str(document_id) if document_id else None,
            },
        )
        return level.to_dto()

    def on_hand(self, ctx: RequestContext, warehouse_id: UUID, product_id: UUID) -> Decimal:
        """Non-locking read; may be slightly stale under concurrency."""
        level = self.session.execute(
            select(StockLevel).where(
                StockLevel.tenant_id == ctx.tenant_id,
                StockLevel.company_id == ctx.company_id,
                StockLevel.warehouse_id == warehouse_id,
                StockLevel.product_id == product_id,
            )
        ).scalar_one_or_none()
        return level.quantity if level is not None else ZERO
