"""
StockLevel -- on-hand quantity per (warehouse, product).

Changed only by StockService deltas under a row lock; never negative.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base
from erp_kernel.db.types import ZERO, FixedDecimal
from erp_kernel.domain.dtos import StockBalance


class StockLevel(Base):
    __tablename__ = "erp_stock_levels"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "company_id", "warehouse_id", "product_id",
            name="uq_stock_level_scope",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    quantity: Mapped[Decimal] = mapped_column(FixedDecimal(18, 3), nullable=False, default=ZERO)

    def to_dto(self) -> StockBalance:
        return StockBalance(
            warehouse_id=self.warehouse_id,
            product_id=self.product_id,
            quantity=self.quantity,
        )
