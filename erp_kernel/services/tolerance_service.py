"""
Module: erp_kernel.services.tolerance_service
Responsibility: Write side of delivery tolerance settings -- create, update,
    deactivate, delete -- with level-specific validation and the
    one-active-setting-per-scope rule.
Architecture position: Kernel > Services.  Flush-only.  Resolution (the read
    side) is a pure function in ``erp_engines.tolerance``.

Invariants enforced:
    - COMPANY settings carry neither categoryName nor productId; their scope
      key is the company id.
    - CATEGORY settings require a non-blank categoryName, stored verbatim.
    - PRODUCT settings require a productId known to the product catalog.
    - under/over percentages are decimals in [0, 100] with <= 2 places.
    - At most one active setting per (company, level, scope key), checked
      here and backed by a unique constraint.

Failure modes:
    - InvalidToleranceError, ProductNotFoundError, DuplicateToleranceError,
      ToleranceNotFoundError.
"""

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from erp_kernel.domain.catalog import ProductCatalog, require_product
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import ToleranceSettingInfo
from erp_kernel.domain.quantities import parse_percent
from erp_kernel.domain.values import ToleranceLevel
from erp_kernel.exceptions import (
    DuplicateToleranceError,
    InvalidToleranceError,
    ToleranceNotFoundError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.tolerance import ToleranceSetting
from erp_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.tolerance")

_UNSET: Any = object()


def _parse_level(level: Any) -> ToleranceLevel:
    try:
        return ToleranceLevel(level)
    except ValueError:
        raise InvalidToleranceError(
            f"level must be one of {', '.join(l.value for l in ToleranceLevel)}",
            field="level",
        ) from None


def _parse_flag(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidToleranceError(f"{field} must be a boolean", field=field)
    return value


class ToleranceService(BaseService[ToleranceSetting]):

    def __init__(self, session, catalog: ProductCatalog):
        super().__init__(session)
        self._catalog = catalog

    def _scope_key(
        self,
        ctx: RequestContext,
        level: ToleranceLevel,
        category_name: str | None,
        product_id: UUID | None,
    ) -> str:
        if level is ToleranceLevel.COMPANY:
            if category_name is not None or product_id is not None:
                raise InvalidToleranceError(
                    "COMPANY tolerance must not specify categoryName or productId",
                    field="level",
                )
            return str(ctx.company_id)
        if level is ToleranceLevel.CATEGORY:
            if product_id is not None:
                raise InvalidToleranceError(
                    "CATEGORY tolerance must not specify productId", field="productId"
                )
            if category_name is None or not category_name.strip():
                raise InvalidToleranceError(
                    "categoryName is required for CATEGORY tolerance",
                    field="categoryName",
                )
            return category_name
        if category_name is not None:
            raise InvalidToleranceError(
                "PRODUCT tolerance must not specify categoryName", field="categoryName"
            )
        if product_id is None:
            raise InvalidToleranceError(
                "productId is required for PRODUCT tolerance", field="productId"
            )
        require_product(self._catalog, product_id)
        return str(product_id)

    def _active_duplicate(
        self, ctx: RequestContext, level: str, scope_key: str, exclude: UUID | None = None
    ) -> ToleranceSetting | None:
        stmt = select(ToleranceSetting).where(
            ToleranceSetting.tenant_id == ctx.tenant_id,
            ToleranceSetting.company_id == ctx.company_id,
            ToleranceSetting.level == level,
            ToleranceSetting.scope_key == scope_key,
            ToleranceSetting.is_active.is_(True),
        )
        if exclude is not None:
            stmt = stmt.where(ToleranceSetting.id != exclude)
        return self.session.execute(stmt).scalars().first()

    def _flush_unique(self, setting: ToleranceSetting) -> None:
        savepoint = self.session.begin_nested()
        try:
            with translate_db_errors("tolerance_setting", setting.id):
                self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateToleranceError(setting.level, setting.scope_key, setting.id) from None

    def _get(self, ctx: RequestContext, tolerance_id: UUID) -> ToleranceSetting:
        setting = self.session.get(ToleranceSetting, tolerance_id)
        if (
            setting is None
            or setting.tenant_id != ctx.tenant_id
            or setting.company_id != ctx.company_id
        ):
            raise ToleranceNotFoundError(tolerance_id)
        return setting

    def create(
        self,
        ctx: RequestContext,
        *,
        level: Any,
        under_pct: Any,
        over_pct: Any,
        unlimited_over: Any = False,
        category_name: str | None = None,
        product_id: UUID | None = None,
        is_active: Any = True,
        notes: str | None = None,
    ) -> ToleranceSettingInfo:
        parsed_level = _parse_level(level)
        under = parse_percent(under_pct, "underDeliveryTolerance")
        over = parse_percent(over_pct, "overDeliveryTolerance")
        unlimited = _parse_flag(unlimited_over, "unlimitedOverDelivery")
        active = _parse_flag(is_active, "isActive")
        scope_key = self._scope_key(ctx, parsed_level, category_name, product_id)

        if active:
            existing = self._active_duplicate(ctx, parsed_level.value, scope_key)
            if existing is not None:
                raise DuplicateToleranceError(parsed_level.value, scope_key, existing.id)

        setting = ToleranceSetting(
            id=uuid4(),
            tenant_id=ctx.tenant_id,
            company_id=ctx.company_id,
            level=parsed_level.value,
            scope_key=scope_key,
            category_name=category_name,
            product_id=product_id,
            under_pct=under,
            over_pct=over,
            unlimited_over=unlimited,
            is_active=active,
            notes=notes,
            created_by_id=ctx.actor_id,
        )
        setting.sync_active_scope()
        self.session.add(setting)
        self._flush_unique(setting)

        logger.info(
            "tolerance_created",
            extra={
                "tolerance_id": str(setting.id),
                "level": setting.level,
                "scope_key": scope_key,
                "under_pct": str(under),
                "over_pct": str(over),
                "unlimited_over": unlimited,
            },
        )
        return setting.to_dto()

    def update(
        self,
        ctx: RequestContext,
        tolerance_id: UUID,
        *,
        under_pct: Any = _UNSET,
        over_pct: Any = _UNSET,
        unlimited_over: Any = _UNSET,
        is_active: Any = _UNSET,
        notes: Any = _UNSET,
    ) -> ToleranceSettingInfo:
        """
        Change percentages, flags, or notes.  Level and scope are fixed at
        creation; create a new setting to re-scope.
        """
        setting = self._get(ctx, tolerance_id)
        if under_pct is not _UNSET:
            setting.under_pct = parse_percent(under_pct, "underDeliveryTolerance")
        if over_pct is not _UNSET:
            setting.over_pct = parse_percent(over_pct, "overDeliveryTolerance")
        if unlimited_over is not _UNSET:
            setting.unlimited_over = _parse_flag(unlimited_over, "unlimitedOverDelivery")
        if notes is not _UNSET:
            setting.notes = notes
        if is_active is not _UNSET:
            activate = _parse_flag(is_active, "isActive")
            if activate and not setting.is_active:
                existing = self._active_duplicate(
                    ctx, setting.level, setting.scope_key, exclude=setting.id
                )
                if existing is not None:
                    raise DuplicateToleranceError(setting.level, setting.scope_key, existing.id)
            setting.is_active = activate
        setting.sync_active_scope()
        setting.updated_by_id = ctx.actor_id
        self._flush_unique(setting)

        logger.info(
            "tolerance_updated",
            extra={
                "tolerance_id": str(setting.id),
                "is_active": setting.is_active,
                "under_pct": str(setting.under_pct),
                "over_pct": str(setting.over_pct),
            },
        )
        return setting.to_dto()

    def deactivate(self, ctx: RequestContext, tolerance_id: UUID) -> ToleranceSettingInfo:
        return self.update(ctx, tolerance_id, is_active=False)

    def delete(self, ctx: RequestContext, tolerance_id: UUID) -> None:
        setting = self._get(ctx, tolerance_id)
        self.session.delete(setting)
        with translate_db_errors("tolerance_setting", tolerance_id):
            self.session.flush()
        logger.info("tolerance_deleted", extra={"tolerance_id": str(tolerance_id)})
