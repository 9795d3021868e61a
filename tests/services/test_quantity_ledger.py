"""
QuantityLedger: delta-only totals, invariant re-validation on projected
values, and terminal immutability.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_kernel.domain.values import QuantityField
from erp_kernel.exceptions import (
    DocumentImmutableError,
    DocumentLineNotFoundError,
    InvalidQuantityError,
    QuantityInvariantError,
)
from erp_kernel.services.quantity_ledger import QuantityLedger
from erp_services.contracts import ActionRequest


@pytest.fixture
def ledger(session):
    return QuantityLedger(session)


@pytest.fixture
def po_line_id(confirmed_po):
    return confirmed_po.lines[0].line_id


class TestDeltas:

    def test_deltas_compose(self, ledger, session, po_line_id):
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "10")
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "5.5")
        session.commit()

        snap = ledger.snapshot(po_line_id)
        assert snap.received_qty == Decimal("15.500")

    def test_negative_delta_reverses(self, ledger, session, po_line_id):
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "10")
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "-4")
        session.commit()
        assert ledger.snapshot(po_line_id).received_qty == Decimal("6.000")

    def test_apply_deltas_is_one_step(self, ledger, session, po_line_id):
        snap = ledger.apply_deltas(
            po_line_id,
            {
                QuantityField.RECEIVED: Decimal("8"),
                QuantityField.ACCEPTED: Decimal("6"),
                QuantityField.REJECTED: Decimal("2"),
            },
        )
        session.commit()
        assert (snap.received_qty, snap.accepted_qty, snap.rejected_qty) == (
            Decimal("8.000"), Decimal("6.000"), Decimal("2.000"),
        )

    def test_float_delta_refused(self, ledger, po_line_id):
        with pytest.raises(InvalidQuantityError):
            ledger.apply_delta(po_line_id, QuantityField.RECEIVED, 1.5)

    def test_unknown_line(self, ledger):
        with pytest.raises(DocumentLineNotFoundError):
            ledger.apply_delta(uuid4(), QuantityField.RECEIVED, "1")


class TestInvariants:

    def test_total_cannot_go_negative(self, ledger, po_line_id):
        with pytest.raises(QuantityInvariantError) as exc_info:
            ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "-1")
        assert exc_info.value.rule == "non_negative"
        assert exc_info.value.field == "receivedQty"

    def test_accepted_plus_rejected_bounded_by_received(self, ledger, session, po_line_id):
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "10")
        session.commit()

        with pytest.raises(QuantityInvariantError) as exc_info:
            ledger.apply_deltas(
                po_line_id,
                {QuantityField.ACCEPTED: "8", QuantityField.REJECTED: "3"},
            )
        err = exc_info.value
        assert err.rule == "accepted_plus_rejected_le_received"
        assert err.field == "acceptedQty"
        assert err.attempted == Decimal("11.000")
        assert err.limit == Decimal("10.000")

    def test_refused_delta_changes_nothing(self, ledger, session, po_line_id):
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "10")
        session.commit()
        with pytest.raises(QuantityInvariantError):
            ledger.apply_deltas(
                po_line_id,
                {QuantityField.RECEIVED: "-5", QuantityField.ACCEPTED: "7"},
            )
        session.rollback()
        snap = ledger.snapshot(po_line_id)
        assert snap.received_qty == Decimal("10.000")
        assert snap.accepted_qty == Decimal("0.000")

    def test_invoiced_bounded_by_accepted(self, ledger, session, po_line_id):
        ledger.apply_deltas(
            po_line_id, {QuantityField.RECEIVED: "10", QuantityField.ACCEPTED: "10"}
        )
        session.commit()
        ledger.apply_delta(po_line_id, QuantityField.INVOICED, "10")
        with pytest.raises(QuantityInvariantError) as exc_info:
            ledger.apply_delta(po_line_id, QuantityField.INVOICED, "0.001")
        assert exc_info.value.rule == "invoiced_le_accepted"
        assert exc_info.value.field == "invoicedQty"

    def test_delivered_bounded_by_shipped(self, ledger, session, po_line_id):
        ledger.apply_delta(po_line_id, QuantityField.SHIPPED, "3")
        with pytest.raises(QuantityInvariantError) as exc_info:
            ledger.apply_delta(po_line_id, QuantityField.DELIVERED, "4")
        assert exc_info.value.rule == "delivered_le_shipped"

    def test_ceiling(self, ledger, session, po_line_id):
        ledger.apply_delta(po_line_id, QuantityField.RECEIVED, "110", ceiling=Decimal("110"))
        with pytest.raises(QuantityInvariantError) as exc_info:
            ledger.apply_delta(
                po_line_id, QuantityField.RECEIVED, "0.001", ceiling=Decimal("110")
            )
        assert exc_info.value.rule == "tolerance_ceiling"
        assert exc_info.value.limit == Decimal("110")

    def test_conflict_is_logged(self, ledger, po_line_id, captured_logs):
        with pytest.raises(QuantityInvariantError):
            ledger.apply_delta(po_line_id, QuantityField.ACCEPTED, "1")
        conflicts = [r for r in captured_logs() if r["message"] == "ledger_conflict"]
        assert conflicts[-1]["rule"] == "accepted_plus_rejected_le_received"
        assert conflicts[-1]["line_id"] == str(po_line_id)


class TestTerminalDocuments:

    def _force_close(self, procurement, ledger, session, ctx, po):
        line_id = po.lines[0].line_id
        ledger.apply_deltas(line_id, {QuantityField.RECEIVED: "10", QuantityField.ACCEPTED: "10"})
        session.commit()
        procurement.complete_purchase_order(
            ctx, po.document_id,
            ActionRequest(payload={"forceClose": True, "reason": "supplier short"}),
        )
        return line_id

    def test_terminal_lines_refuse_deltas(self, procurement, ledger, session, ctx, confirmed_po):
        line_id = self._force_close(procurement, ledger, session, ctx, confirmed_po)
        with pytest.raises(DocumentImmutableError) as exc_info:
            ledger.apply_delta(line_id, QuantityField.RECEIVED, "1")
        assert exc_info.value.status == "COMPLETED"
        assert exc_info.value.field == "receivedQty"

    def test_invoicing_continues_after_terminal(self, procurement, ledger, session, ctx, confirmed_po):
        line_id = self._force_close(procurement, ledger, session, ctx, confirmed_po)
        snap = ledger.apply_delta(line_id, QuantityField.INVOICED, "4")
        assert snap.invoiced_qty == Decimal("4.000")

    def test_counts_refused_after_terminal(self, procurement, ledger, session, ctx, confirmed_po):
        line_id = self._force_close(procurement, ledger, session, ctx, confirmed_po)
        with pytest.raises(DocumentImmutableError):
            ledger.record_count(line_id, counted_qty="3")


def test_record_count_sets_observations(ledger, session, po_line_id):
    ledger.record_count(po_line_id, system_qty="12")
    snap = ledger.record_count(po_line_id, counted_qty="9")
    session.commit()
    assert snap.system_qty == Decimal("12.000")
    assert snap.counted_qty == Decimal("9.000")
