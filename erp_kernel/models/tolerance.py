"""
ToleranceSetting -- permitted under/over delivery percentages.

Invariants enforced
-------------------
* ``scope_key`` is the productId for PRODUCT, the category name (verbatim,
  case-sensitive) for CATEGORY, and the companyId for COMPANY.
* At most one ACTIVE setting per (tenant, company, level, scope_key).
  The service checks this at create/update time; ``active_scope_key``
  backs it with a unique constraint (NULL when inactive, and NULLs never
  collide).
* Percentages are FixedDecimal(5, 2) within 0..100.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import TrackedBase
from erp_kernel.db.types import FixedDecimal
from erp_kernel.domain.dtos import ToleranceSettingInfo


class ToleranceSetting(TrackedBase):
    __tablename__ = "erp_tolerance_settings"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "company_id", "level", "active_scope_key",
            name="uq_tolerance_active_scope",
        ),
        Index("idx_tolerance_lookup", "tenant_id", "company_id", "level", "scope_key"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(100), nullable=False)
    active_scope_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_id: Mapped[UUID | None]
    under_pct: Mapped[Decimal] = mapped_column(FixedDecimal(5, 2), nullable=False)
    over_pct: Mapped[Decimal] = mapped_column(FixedDecimal(5, 2), nullable=False)
    unlimited_over: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def sync_active_scope(self) -> None:
        self.active_scope_key = self.scope_key if self.is_active else None

    def to_dto(self) -> ToleranceSettingInfo:
        return ToleranceSettingInfo(
            tolerance_id=self.id,
            company_id=self.company_id,
            level=self.level,
            scope_key=self.scope_key,
            category_name=self.category_name,
            product_id=self.product_id,
            under_pct=self.under_pct,
            over_pct=self.over_pct,
            unlimited_over=self.unlimited_over,
            is_active=self.is_active,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<ToleranceSetting {self.level}:{self.scope_key} -{self.under_pct}/+{self.over_pct} {state}>"
