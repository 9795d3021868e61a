"""Tolerance settings through the module service: CRUD and effective resolution."""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_kernel.exceptions import (
    DuplicateToleranceError,
    InvalidToleranceError,
    ProductNotFoundError,
    ToleranceNotFoundError,
)
from erp_services.contracts import ToleranceCommand, render_effective_tolerance, render_tolerance


class TestCrud:

    def test_create_and_get(self, tolerances, ctx, company_tolerance):
        fetched = tolerances.get_tolerance(ctx, company_tolerance.tolerance_id)
        assert fetched == company_tolerance
        body = render_tolerance(fetched)
        assert body["level"] == "COMPANY"
        assert body["overDeliveryTolerance"] == "10.00"

    def test_duplicate_rolls_back(self, tolerances, ctx, company_tolerance):
        with pytest.raises(DuplicateToleranceError):
            tolerances.create_tolerance(ctx, ToleranceCommand(level="COMPANY", under_pct="1", over_pct="1"))
        assert len(tolerances.list_tolerances(ctx)) == 1

    def test_update_from_body(self, tolerances, ctx, company_tolerance):
        updated = tolerances.update_tolerance(
            ctx, company_tolerance.tolerance_id,
            {"overDeliveryTolerance": "15", "unlimitedOverDelivery": True, "ignored": 1},
        )
        assert updated.over_pct == Decimal("15.00")
        assert updated.unlimited_over is True

    @pytest.mark.parametrize("key", ["level", "categoryName", "productId"])
    def test_scope_is_fixed(self, tolerances, ctx, company_tolerance, key):
        with pytest.raises(InvalidToleranceError) as exc_info:
            tolerances.update_tolerance(ctx, company_tolerance.tolerance_id, {key: "x"})
        assert exc_info.value.field == key

    def test_percent_out_of_range(self, tolerances, ctx, company_tolerance):
        with pytest.raises(InvalidToleranceError):
            tolerances.update_tolerance(
                ctx, company_tolerance.tolerance_id, {"underDeliveryTolerance": "100.01"}
            )
        assert tolerances.get_tolerance(ctx, company_tolerance.tolerance_id).under_pct == Decimal("5.00")

    def test_list_filters(self, tolerances, ctx, company_tolerance, products):
        tolerances.create_tolerance(ctx, ToleranceCommand(
            level="CATEGORY", under_pct="2", over_pct="2", category_name="Dairy", is_active=False,
        ))
        assert len(tolerances.list_tolerances(ctx)) == 2
        assert len(tolerances.list_tolerances(ctx, active_only=True)) == 1
        assert [t.level for t in tolerances.list_tolerances(ctx, level="CATEGORY")] == ["CATEGORY"]
        with pytest.raises(InvalidToleranceError):
            tolerances.list_tolerances(ctx, level="GLOBAL")

    def test_delete(self, tolerances, ctx, company_tolerance):
        tolerances.delete_tolerance(ctx, company_tolerance.tolerance_id)
        with pytest.raises(ToleranceNotFoundError):
            tolerances.get_tolerance(ctx, company_tolerance.tolerance_id)

    def test_scoped_to_company(self, tolerances, other_company_ctx, company_tolerance):
        with pytest.raises(ToleranceNotFoundError):
            tolerances.get_tolerance(other_company_ctx, company_tolerance.tolerance_id)
        assert tolerances.list_tolerances(other_company_ctx) == []


class TestEffective:

    def test_default_without_settings(self, tolerances, ctx, products):
        tol = tolerances.effective_tolerance(ctx, products["cola"].product_id)
        assert tol.resolved_from == "DEFAULT"
        assert (tol.under_pct, tol.over_pct) == (Decimal("0.00"), Decimal("0.00"))

    def test_resolution_chain(self, tolerances, ctx, products, company_tolerance):
        yogurt = products["yogurt"].product_id
        widget = products["widget"].product_id
        tolerances.create_tolerance(ctx, ToleranceCommand(
            level="CATEGORY", under_pct="3", over_pct="3", category_name="Dairy",
        ))
        assert tolerances.effective_tolerance(ctx, yogurt).resolved_from == "CATEGORY"
        assert tolerances.effective_tolerance(ctx, widget).resolved_from == "COMPANY"

        product_level = tolerances.create_tolerance(ctx, ToleranceCommand(
            level="PRODUCT", under_pct="1", over_pct="0", unlimited_over=True, product_id=yogurt,
        ))
        tol = tolerances.effective_tolerance(ctx, yogurt)
        assert tol.resolved_from == "PRODUCT"
        assert tol.tolerance_id == product_level.tolerance_id
        assert tol.unlimited_over is True

        body = render_effective_tolerance(yogurt, tol)
        assert body["resolvedFrom"] == "PRODUCT"

    def test_deactivated_setting_ignored(self, tolerances, ctx, products, company_tolerance):
        tolerances.deactivate_tolerance(ctx, company_tolerance.tolerance_id)
        assert tolerances.effective_tolerance(ctx, products["cola"].product_id).resolved_from == "DEFAULT"

    def test_unknown_product(self, tolerances, ctx):
        with pytest.raises(ProductNotFoundError):
            tolerances.effective_tolerance(ctx, uuid4())
