"""Read access to tolerance settings.  Plain SELECTs; resolution never takes locks."""

from uuid import UUID

from sqlalchemy import or_, select

from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import ToleranceSettingInfo
from erp_kernel.domain.values import ToleranceLevel
from erp_kernel.exceptions import ToleranceNotFoundError
from erp_kernel.models.tolerance import ToleranceSetting
from erp_kernel.selectors.base import BaseSelector


class ToleranceSelector(BaseSelector[ToleranceSetting]):

    def get(self, ctx: RequestContext, tolerance_id: UUID) -> ToleranceSettingInfo:
        setting = self.session.get(ToleranceSetting, tolerance_id)
        if (
            setting is None
            or setting.tenant_id != ctx.tenant_id
            or setting.company_id != ctx.company_id
        ):
            raise ToleranceNotFoundError(tolerance_id)
        return setting.to_dto()

    def list_settings(
        self,
        ctx: RequestContext,
        level: str | None = None,
        active_only: bool = False,
    ) -> list[ToleranceSettingInfo]:
        stmt = select(ToleranceSetting).where(
            ToleranceSetting.tenant_id == ctx.tenant_id,
            ToleranceSetting.company_id == ctx.company_id,
        )
        if level is not None:
            stmt = stmt.where(ToleranceSetting.level == level)
        if active_only:
            stmt = stmt.where(ToleranceSetting.is_active.is_(True))
        stmt = stmt.order_by(ToleranceSetting.level, ToleranceSetting.scope_key)
        return [s.to_dto() for s in self.session.execute(stmt).scalars()]

    def candidates(
        self,
        ctx: RequestContext,
        product_id: UUID,
        category_name: str | None,
    ) -> list[ToleranceSettingInfo]:
        """Active settings that could apply to one product, any level."""
        scopes = [
            (ToleranceSetting.level == ToleranceLevel.PRODUCT.value)
            & (ToleranceSetting.scope_key == str(product_id)),
            (ToleranceSetting.level == ToleranceLevel.COMPANY.value)
            & (ToleranceSetting.scope_key == str(ctx.company_id)),
        ]
        if category_name is not None:
            scopes.append(
                (ToleranceSetting.level == ToleranceLevel.CATEGORY.value)
                & (ToleranceSetting.scope_key == category_name)
            )
        stmt = select(ToleranceSetting).where(
            ToleranceSetting.tenant_id == ctx.tenant_id,
            ToleranceSetting.company_id == ctx.company_id,
            ToleranceSetting.is_active.is_(True),
            or_(*scopes),
        )
        return [s.to_dto() for s in self.session.execute(stmt).scalars()]
