"""Sales orders and deliveries: tolerance window, stock out, shipped/delivered totals."""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_kernel.exceptions import (
    GuardRejectedError,
    InsufficientStockError,
    InvalidTransitionError,
    QuantityInvariantError,
    ToleranceExceededError,
    ValidationError,
)
from erp_modules.sales import SalesConfig, SalesService
from erp_services.contracts import DeliveryLineCommand, OrderLineCommand


@pytest.fixture
def cola(products):
    return products["cola"].product_id


@pytest.fixture
def approved_so(sales, ctx, cola, warehouse_id):
    """An APPROVED sales order for 50 cola."""
    so = sales.create_sales_order(
        ctx, customer_id=uuid4(), warehouse_id=warehouse_id,
        lines=[OrderLineCommand(product_id=cola, quantity=Decimal("50"))],
    )
    sales.submit_sales_order(ctx, so.document_id)
    sales.approve_sales_order(ctx, so.document_id)
    return sales.get_document(ctx, so.document_id)


@pytest.fixture
def shelf(stock_in, warehouse_id, cola):
    stock_in(warehouse_id, cola, "200")


def _delivery(sales, ctx, so, qty):
    return sales.create_delivery(
        ctx, so_id=so.document_id,
        lines=[DeliveryLineCommand(so_line_id=so.lines[0].line_id, quantity=Decimal(qty))],
    )


class TestDeliveryCreation:

    def test_so_must_be_approved(self, sales, ctx, cola, warehouse_id):
        so = sales.create_sales_order(
            ctx, customer_id=uuid4(), warehouse_id=warehouse_id,
            lines=[OrderLineCommand(product_id=cola, quantity=Decimal("5"))],
        )
        with pytest.raises(InvalidTransitionError) as exc_info:
            _delivery(sales, ctx, so, "5")
        assert exc_info.value.action == "create_delivery"

    def test_window(self, sales, ctx, approved_so, company_tolerance):
        assert _delivery(sales, ctx, approved_so, "47.5").status == "PREPARED"
        assert _delivery(sales, ctx, approved_so, "55").status == "PREPARED"
        with pytest.raises(ToleranceExceededError) as exc_info:
            _delivery(sales, ctx, approved_so, "55.001")
        assert exc_info.value.field == "shippedQty"
        assert exc_info.value.violation_type == "OVER"
        with pytest.raises(ToleranceExceededError):
            _delivery(sales, ctx, approved_so, "47.499")

    def test_duplicate_line(self, sales, ctx, approved_so):
        cmd = DeliveryLineCommand(so_line_id=approved_so.lines[0].line_id, quantity=Decimal("25"))
        with pytest.raises(ValidationError):
            sales.create_delivery(ctx, so_id=approved_so.document_id, lines=[cmd, cmd])

    def test_listed_under_order(self, sales, ctx, approved_so):
        delivery = _delivery(sales, ctx, approved_so, "50")
        assert delivery.parent_refs == (approved_so.document_id,)
        assert [d.document_id for d in sales.deliveries_for(ctx, approved_so.document_id)] == [
            delivery.document_id
        ]


class TestFulfilment:

    def test_full_cycle(self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola):
        so_id = approved_so.document_id
        delivery = _delivery(sales, ctx, approved_so, "50")

        shipped = sales.start_delivery(ctx, delivery.document_id)
        assert shipped.to_status == "IN_TRANSIT"
        so = sales.get_document(ctx, so_id)
        assert so.status == "PROCESSING"
        assert so.lines[0].shipped_qty == Decimal("50.000")
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("150.000")

        assert sales.ship_sales_order(ctx, so_id).to_status == "SHIPPED"
        sales.complete_delivery(ctx, delivery.document_id)
        assert sales.get_document(ctx, so_id).lines[0].delivered_qty == Decimal("50.000")
        assert sales.deliver_sales_order(ctx, so_id).to_status == "DELIVERED"
        assert sales.complete_sales_order(ctx, so_id).to_status == "COMPLETED"
        assert sales.confirm_delivery(ctx, delivery.document_id).to_status == "CONFIRMED"

    def test_ship_order_needs_everything_shipped(self, sales, ctx, approved_so, shelf):
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.start_processing_sales_order(ctx, approved_so.document_id)
        with pytest.raises(GuardRejectedError) as exc_info:
            sales.ship_sales_order(ctx, approved_so.document_id)
        assert exc_info.value.guard == "so_all_lines_shipped"
        sales.start_delivery(ctx, delivery.document_id)
        assert sales.ship_sales_order(ctx, approved_so.document_id).to_status == "SHIPPED"

    def test_under_tolerance_shipment_completes_order(
        self, sales, inventory, ctx, approved_so, shelf, company_tolerance, warehouse_id, cola
    ):
        so_id = approved_so.document_id
        delivery = _delivery(sales, ctx, approved_so, "47.5")
        sales.start_delivery(ctx, delivery.document_id)

        assert sales.ship_sales_order(ctx, so_id).to_status == "SHIPPED"
        sales.complete_delivery(ctx, delivery.document_id)
        assert sales.deliver_sales_order(ctx, so_id).to_status == "DELIVERED"
        assert sales.complete_sales_order(ctx, so_id).to_status == "COMPLETED"

        line = sales.get_document(ctx, so_id).lines[0]
        assert line.shipped_qty == line.delivered_qty == Decimal("47.500")
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("152.500")

    def test_deliver_order_needs_everything_delivered(self, sales, ctx, approved_so, shelf):
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.start_delivery(ctx, delivery.document_id)
        sales.ship_sales_order(ctx, approved_so.document_id)
        with pytest.raises(GuardRejectedError):
            sales.deliver_sales_order(ctx, approved_so.document_id)

    def test_insufficient_stock_rolls_back(self, sales, ctx, approved_so, stock_in, warehouse_id, cola):
        stock_in(warehouse_id, cola, "10")
        delivery = _delivery(sales, ctx, approved_so, "50")
        with pytest.raises(InsufficientStockError):
            sales.start_delivery(ctx, delivery.document_id)
        assert sales.get_document(ctx, delivery.document_id).status == "PREPARED"
        so = sales.get_document(ctx, approved_so.document_id)
        assert so.status == "APPROVED"
        assert so.lines[0].shipped_qty == Decimal("0.000")

    def test_shipped_ceiling(self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola):
        first = _delivery(sales, ctx, approved_so, "50")
        second = _delivery(sales, ctx, approved_so, "50")
        sales.start_delivery(ctx, first.document_id)
        with pytest.raises(QuantityInvariantError) as exc_info:
            sales.start_delivery(ctx, second.document_id)
        assert exc_info.value.rule == "tolerance_ceiling"
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("150.000")

    def test_auto_processing_can_be_disabled(self, session, catalog, ctx, approved_so, shelf):
        manual = SalesService(
            session, catalog, config=SalesConfig(auto_process_on_first_shipment=False)
        )
        delivery = _delivery(manual, ctx, approved_so, "50")
        manual.start_delivery(ctx, delivery.document_id)
        assert manual.get_document(ctx, approved_so.document_id).status == "APPROVED"


class TestCancellation:

    def test_cancel_in_transit_restocks(self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola):
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.start_delivery(ctx, delivery.document_id)
        sales.cancel_delivery(ctx, delivery.document_id)

        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("200.000")
        so = sales.get_document(ctx, approved_so.document_id)
        assert so.lines[0].shipped_qty == Decimal("0.000")

    def test_cancel_prepared_touches_nothing(self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola):
        delivery = _delivery(sales, ctx, approved_so, "50")
        assert sales.cancel_delivery(ctx, delivery.document_id).to_status == "CANCELLED"
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("200.000")

    def test_delivered_cannot_be_cancelled(self, sales, ctx, approved_so, shelf):
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.start_delivery(ctx, delivery.document_id)
        sales.complete_delivery(ctx, delivery.document_id)
        with pytest.raises(InvalidTransitionError):
            sales.cancel_delivery(ctx, delivery.document_id)

    def test_cancel_processing_order(self, sales, ctx, approved_so):
        sales.start_processing_sales_order(ctx, approved_so.document_id)
        assert sales.cancel_sales_order(ctx, approved_so.document_id).to_status == "CANCELLED"

    def test_order_cancel_waits_for_delivery_in_transit(
        self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola
    ):
        so_id = approved_so.document_id
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.start_delivery(ctx, delivery.document_id)

        with pytest.raises(GuardRejectedError) as exc_info:
            sales.cancel_sales_order(ctx, so_id)
        assert exc_info.value.guard == "so_no_delivery_in_transit"
        assert sales.get_document(ctx, so_id).status == "PROCESSING"

        sales.cancel_delivery(ctx, delivery.document_id)
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("200.000")
        assert sales.cancel_sales_order(ctx, so_id).to_status == "CANCELLED"

    def test_prepared_delivery_cannot_ship_for_cancelled_order(
        self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola
    ):
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.cancel_sales_order(ctx, approved_so.document_id)

        with pytest.raises(GuardRejectedError) as exc_info:
            sales.start_delivery(ctx, delivery.document_id)
        assert exc_info.value.guard == "delivery_order_open"
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("200.000")
        assert sales.cancel_delivery(ctx, delivery.document_id).to_status == "CANCELLED"

    def test_in_transit_cancel_refused_once_order_shipped(
        self, sales, inventory, ctx, approved_so, shelf, warehouse_id, cola
    ):
        so_id = approved_so.document_id
        delivery = _delivery(sales, ctx, approved_so, "50")
        sales.start_delivery(ctx, delivery.document_id)
        sales.ship_sales_order(ctx, so_id)

        with pytest.raises(GuardRejectedError) as exc_info:
            sales.cancel_delivery(ctx, delivery.document_id)
        assert exc_info.value.guard == "delivery_order_open"
        assert "SHIPPED" in exc_info.value.reason

        so = sales.get_document(ctx, so_id)
        assert so.status == "SHIPPED"
        assert so.lines[0].shipped_qty == Decimal("50.000")
        assert sales.get_document(ctx, delivery.document_id).status == "IN_TRANSIT"
        assert inventory.stock_on_hand(ctx, warehouse_id, cola) == Decimal("150.000")

        sales.complete_delivery(ctx, delivery.document_id)
        assert sales.deliver_sales_order(ctx, so_id).to_status == "DELIVERED"
