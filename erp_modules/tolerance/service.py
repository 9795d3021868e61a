"""
Tolerance Module Service.

Transactional front for tolerance settings: CRUD through the kernel
``ToleranceService`` and ``ToleranceSelector``, plus the effective
tolerance for a product as resolved at read time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_kernel.domain.catalog import ProductCatalog
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import EffectiveTolerance, ToleranceSettingInfo
from erp_kernel.domain.values import ToleranceLevel
from erp_kernel.exceptions import InvalidToleranceError
from erp_kernel.logging_config import get_logger
from erp_kernel.selectors.tolerance_selector import ToleranceSelector
from erp_kernel.services.tolerance_service import ToleranceService
from erp_modules._action_helpers import effective_tolerance, run_action
from erp_services.contracts import ToleranceCommand

logger = get_logger("modules.tolerance.service")

# Request keys accepted by update, mapped to ToleranceService.update kwargs.
_UPDATABLE = {
    "underDeliveryTolerance": "under_pct",
    "overDeliveryTolerance": "over_pct",
    "unlimitedOverDelivery": "unlimited_over",
    "isActive": "is_active",
    "notes": "notes",
}
_FIXED = ("level", "categoryName", "productId")


class ToleranceModuleService:

    def __init__(self, session: Session, catalog: ProductCatalog, *, retries: int = 1):
        self._session = session
        self._catalog = catalog
        self._retries = retries
        self._service = ToleranceService(session, catalog)
        self._selector = ToleranceSelector(session)

    def create_tolerance(self, ctx: RequestContext, command: ToleranceCommand) -> ToleranceSettingInfo:
        def work() -> ToleranceSettingInfo:
            return self._service.create(
                ctx,
                level=command.level,
                under_pct=command.under_pct,
                over_pct=command.over_pct,
                unlimited_over=command.unlimited_over,
                category_name=command.category_name,
                product_id=command.product_id,
                is_active=command.is_active,
                notes=command.notes,
            )

        return run_action(self._session, ctx, "tolerance.create", work, retries=self._retries)

    def update_tolerance(
        self, ctx: RequestContext, tolerance_id: UUID, body: Mapping[str, Any]
    ) -> ToleranceSettingInfo:
        """Partial update from a request body; level and scope cannot change."""
        for key in _FIXED:
            if key in body:
                raise InvalidToleranceError(f"{key} cannot be changed", field=key)
        kwargs = {_UPDATABLE[k]: v for k, v in body.items() if k in _UPDATABLE}

        def work() -> ToleranceSettingInfo:
            return self._service.update(ctx, tolerance_id, **kwargs)

        return run_action(self._session, ctx, "tolerance.update", work, retries=self._retries)

    def deactivate_tolerance(self, ctx: RequestContext, tolerance_id: UUID) -> ToleranceSettingInfo:
        return run_action(
            self._session, ctx, "tolerance.deactivate",
            lambda: self._service.deactivate(ctx, tolerance_id),
            retries=self._retries,
        )

    def delete_tolerance(self, ctx: RequestContext, tolerance_id: UUID) -> None:
        run_action(
            self._session, ctx, "tolerance.delete",
            lambda: self._service.delete(ctx, tolerance_id),
            retries=self._retries,
        )

    def get_tolerance(self, ctx: RequestContext, tolerance_id: UUID) -> ToleranceSettingInfo:
        return self._selector.get(ctx, tolerance_id)

    def list_tolerances(
        self, ctx: RequestContext, level: str | None = None, active_only: bool = False
    ) -> list[ToleranceSettingInfo]:
        if level is not None:
            try:
                level = ToleranceLevel(level).value
            except ValueError:
                raise InvalidToleranceError(f"unknown level {level!r}", field="level") from None
        return self._selector.list_settings(ctx, level, active_only)

    def effective_tolerance(self, ctx: RequestContext, product_id: UUID) -> EffectiveTolerance:
        tol = effective_tolerance(self._session, ctx, self._catalog, product_id)
        logger.debug(
            "effective_tolerance_resolved",
            extra={"product_id": str(product_id), "resolved_from": tol.resolved_from},
        )
        return tol
