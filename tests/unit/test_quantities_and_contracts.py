"""Quantity parsing, idempotency keys and request/response contracts."""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_kernel.domain.quantities import parse_delta, parse_percent, parse_quantity
from erp_kernel.exceptions import (
    InvalidIdempotencyKeyError,
    InvalidQuantityError,
    InvalidToleranceError,
    ToleranceExceededError,
    ValidationError,
)
from erp_kernel.utils.idempotency import generate_idempotency_key, validate_idempotency_key
from erp_services.contracts import (
    ActionRequest,
    InspectItemCommand,
    OrderLineCommand,
    ReceiptItemCommand,
    parse_items,
    render_error,
)


class TestQuantityParsing:

    @pytest.mark.parametrize("raw, expected", [
        ("10", Decimal("10.000")),
        ("0.001", Decimal("0.001")),
        (7, Decimal("7.000")),
        (Decimal("1.5"), Decimal("1.500")),
    ])
    def test_valid(self, raw, expected):
        assert parse_quantity(raw, "qty") == expected

    @pytest.mark.parametrize("raw", [1.5, "abc", "-1", "0.0001", "NaN", None, True])
    def test_invalid(self, raw):
        with pytest.raises(InvalidQuantityError):
            parse_quantity(raw, "qty")

    def test_zero_can_be_refused(self):
        with pytest.raises(InvalidQuantityError):
            parse_quantity("0", "qty", allow_zero=False)

    def test_delta_may_be_negative(self):
        assert parse_delta("-2.5", "delta") == Decimal("-2.500")

    @pytest.mark.parametrize("raw", ["100.01", "-0.01", "5.001"])
    def test_percent_bounds(self, raw):
        with pytest.raises(InvalidToleranceError):
            parse_percent(raw, "overDeliveryTolerance")

    def test_percent_edges_allowed(self):
        assert parse_percent("0", "p") == Decimal("0.00")
        assert parse_percent("100", "p") == Decimal("100.00")


class TestIdempotencyKeys:

    def test_length_limits(self):
        validate_idempotency_key("a" * 16)
        validate_idempotency_key("a" * 128)
        for bad in ("a" * 15, "a" * 129):
            with pytest.raises(InvalidIdempotencyKeyError):
                validate_idempotency_key(bad)

    def test_charset(self):
        with pytest.raises(InvalidIdempotencyKeyError):
            validate_idempotency_key("spaces are not ok!!")

    def test_generated_key_is_valid(self):
        key = generate_idempotency_key(uuid4(), "complete", "auto")
        assert key.endswith(":complete:auto")


class TestContracts:

    def test_action_request_splits_control_fields(self):
        req = ActionRequest.from_request({
            "idempotencyKey": "k" * 20, "expectedVersion": 3, "reason": "late",
        })
        assert req.idempotency_key == "k" * 20
        assert req.expected_version == 3
        assert dict(req.payload) == {"reason": "late"}

    def test_expected_version_must_be_int(self):
        with pytest.raises(ValidationError):
            ActionRequest.from_request({"expectedVersion": "3"})

    def test_receipt_item(self):
        po_line, product = uuid4(), uuid4()
        item = ReceiptItemCommand.from_request({
            "poItemId": str(po_line), "productId": str(product),
            "receivedQty": "12.5", "batchNumber": "B1", "expiryDate": "2027-01-31",
        })
        assert item.po_line_id == po_line
        assert item.received_qty == Decimal("12.500")
        assert item.expiry_date.isoformat() == "2027-01-31"

    def test_inspect_item_defaults_rejected_to_zero(self):
        item = InspectItemCommand.from_request({"itemId": str(uuid4()), "acceptedQty": "4"})
        assert item.rejected_qty == Decimal("0.000")

    def test_parse_items_requires_list(self):
        with pytest.raises(ValidationError):
            parse_items({"items": "nope"}, OrderLineCommand)

    def test_parse_items(self):
        product = uuid4()
        (line,) = parse_items(
            {"items": [{"productId": str(product), "orderedQty": "3"}]}, OrderLineCommand
        )
        assert line.product_id == product

    def test_render_error_is_camel_case(self):
        exc = ToleranceExceededError(
            field="receivedQty", attempted=Decimal("120"), expected=Decimal("100"),
            min_qty=Decimal("95"), max_qty=Decimal("110"), violation_type="OVER",
            deviation_pct=Decimal("20.00"), resolved_from="COMPANY",
        )
        body = render_error(exc)
        assert body["code"] == "TOLERANCE_EXCEEDED"
        assert body["category"] == "CONFLICT"
        assert body["details"]["minQty"] == "95"
        assert body["details"]["maxQty"] == "110"
        assert body["details"]["violationType"] == "OVER"
