"""
Property-based checks of the quantity rules.

- check_line_invariants refuses exactly the projected totals that break a rule
- Tolerance windows are exact: a 3-place quantity is inside the rounded
  window if and only if it is inside the exact one
- The 3-way match never lets invoiced exceed accepted, under either policy
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from erp_engines.reconciliation import ReconciliationValidator
from erp_engines.tolerance import ToleranceResolver
from erp_kernel.domain.dtos import EffectiveTolerance, LineSnapshot
from erp_kernel.domain.values import InvoiceControlPolicy, QuantityField
from erp_kernel.exceptions import InvoiceCeilingExceededError, QuantityInvariantError
from erp_kernel.services.quantity_ledger import check_line_invariants

HUNDRED = Decimal(100)

quantities = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=3)
signed = st.decimals(min_value=Decimal("-50"), max_value=Decimal("500"), places=3)
percents = st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2)


def _violates(t):
    q = {f: t[f] for f in QuantityField}
    return (
        any(v < 0 for v in q.values())
        or q[QuantityField.ACCEPTED] + q[QuantityField.REJECTED] > q[QuantityField.RECEIVED]
        or q[QuantityField.INVOICED] > q[QuantityField.ACCEPTED]
        or q[QuantityField.DELIVERED] > q[QuantityField.SHIPPED]
    )


@given(st.fixed_dictionaries({f: signed for f in QuantityField}))
@settings(max_examples=300)
def test_invariants_refuse_exactly_the_bad_totals(totals):
    try:
        check_line_invariants(uuid4(), totals, frozenset())
    except QuantityInvariantError:
        assert _violates(totals)
    else:
        assert not _violates(totals)


@given(quantities, quantities)
def test_ceiling_is_inclusive(total, ceiling):
    totals = {f: Decimal(0) for f in QuantityField}
    totals[QuantityField.RECEIVED] = total
    try:
        check_line_invariants(uuid4(), totals, frozenset(), {QuantityField.RECEIVED: ceiling})
    except QuantityInvariantError as exc:
        assert exc.rule == "tolerance_ceiling"
        assert total > ceiling
    else:
        assert total <= ceiling


@given(expected=quantities, under=percents, over=percents, actual=quantities)
@settings(max_examples=500)
def test_window_matches_exact_bounds(expected, under, over, actual):
    tol = EffectiveTolerance(under_pct=under, over_pct=over, unlimited_over=False, resolved_from="COMPANY")
    window = ToleranceResolver().window(tol, expected)

    exact_min = expected * (HUNDRED - under) / HUNDRED
    exact_max = expected * (HUNDRED + over) / HUNDRED
    assert window.contains(actual) == (exact_min <= actual <= exact_max)
    assert window.min_qty <= expected <= window.max_qty


@given(expected=quantities, under=percents, actual=quantities)
def test_unlimited_over_has_no_upper_bound(expected, under, actual):
    tol = EffectiveTolerance(under_pct=under, over_pct=Decimal(0), unlimited_over=True, resolved_from="PRODUCT")
    window = ToleranceResolver().window(tol, expected)
    assert window.max_qty is None
    if actual >= expected:
        assert window.contains(actual)


@given(
    accepted=quantities,
    invoiced_share=st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=2),
    ordered=quantities,
    requested=quantities,
    policy=st.sampled_from(list(InvoiceControlPolicy)),
)
@settings(max_examples=300)
def test_three_way_match_never_exceeds_accepted(accepted, invoiced_share, ordered, requested, policy):
    invoiced = (accepted * invoiced_share).quantize(Decimal("0.001"))
    doc, line = uuid4(), uuid4()
    grn_line = LineSnapshot(
        line_id=line, document_id=doc, line_no=1, product_id=uuid4(),
        received_qty=accepted, accepted_qty=accepted, invoiced_qty=invoiced,
    )
    po_line = LineSnapshot(
        line_id=uuid4(), document_id=uuid4(), line_no=1, product_id=grn_line.product_id,
        ordered_qty=ordered, invoiced_qty=invoiced,
    )
    try:
        match = ReconciliationValidator().three_way_match(
            grn_line=grn_line, po_line=po_line, requested_qty=requested, policy=policy,
        )
    except InvoiceCeilingExceededError:
        assert requested > 0
    else:
        assert invoiced + match.requested <= accepted
        if policy is InvoiceControlPolicy.ORDERED:
            assert invoiced + match.requested <= max(ordered, invoiced)
