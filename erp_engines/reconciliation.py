"""
erp_engines.reconciliation -- Cross-document quantity checks.

Responsibility:
    Decide whether a requested quantity is acceptable before any ledger row
    is touched:
      * receipt tolerance   -- GRN line received qty vs the PO line's
                               open quantity and tolerance window
      * delivery tolerance  -- delivery line qty vs the SO line's open
                               quantity and the same resolver
      * 3-way match         -- invoice qty vs GRN accepted qty (strict) and
                               the company's invoice-control baseline

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Inputs are DTO snapshots
    and an already-resolved tolerance window.

Invariants enforced:
    - Tolerance breaches are rejections that carry the computed range,
      never silent clamps.
    - Invoicing is strict: ``invoiced + requested <= accepted`` always,
      independent of any tolerance setting.  The invoice-control policy
      may only tighten that ceiling, never loosen it.
    - Validators never mutate anything; a failure leaves the caller free
      to abort the action.

Failure modes:
    - ToleranceExceededError (UNDER / OVER with min/max/deviation).
    - InvoiceCeilingExceededError (field invoicedQty, attempted, limit).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from erp_engines.tolerance import ToleranceWindow
from erp_engines.tracer import traced_engine
from erp_kernel.db.types import ZERO
from erp_kernel.domain.dtos import LineSnapshot
from erp_kernel.domain.values import InvoiceControlPolicy
from erp_kernel.exceptions import InvoiceCeilingExceededError, ToleranceExceededError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation")


@dataclass(frozen=True)
class ToleranceCheck:
    """Passed window check, kept for logging and responses."""
    field: str
    actual: Decimal
    window: ToleranceWindow
    deviation_pct: Decimal


@dataclass(frozen=True)
class InvoiceMatch:
    """Passed 3-way match for one invoice line."""
    policy: InvoiceControlPolicy
    requested: Decimal
    baseline_qty: Decimal
    invoiceable: Decimal
    accepted_ceiling: Decimal


class ReconciliationValidator:
    """Stateless validator; every method either returns a result or raises."""

    def check_window(self, field: str, actual: Decimal, window: ToleranceWindow) -> ToleranceCheck:
        violation = window.violation(actual)
        deviation = window.deviation_pct(actual)
        if violation is not None:
            logger.info(
                "tolerance_violation",
                extra={
                    "field": field,
                    "actual": str(actual),
                    "expected": str(window.expected),
                    "min_qty": str(window.min_qty),
                    "max_qty": None if window.max_qty is None else str(window.max_qty),
                    "violation_type": violation.value,
                    "resolved_from": window.tolerance.resolved_from,
                },
            )
            raise ToleranceExceededError(
                field=field,
                attempted=actual,
                expected=window.expected,
                min_qty=window.min_qty,
                max_qty=window.max_qty,
                violation_type=violation.value,
                deviation_pct=deviation,
                resolved_from=window.tolerance.resolved_from,
                tolerance_id=window.tolerance.tolerance_id,
            )
        return ToleranceCheck(field=field, actual=actual, window=window, deviation_pct=deviation)

    @traced_engine("reconciliation.receipt", "1.0", fingerprint_fields=("received_qty",))
    def check_receipt(self, *, received_qty: Decimal, window: ToleranceWindow) -> ToleranceCheck:
        """GRN line received quantity against the PO line's open-quantity window."""
        return self.check_window("receivedQty", received_qty, window)

    @traced_engine("reconciliation.delivery", "1.0", fingerprint_fields=("delivered_qty",))
    def check_delivery(self, *, delivered_qty: Decimal, window: ToleranceWindow) -> ToleranceCheck:
        """Delivery line quantity against the SO line's open-quantity window."""
        return self.check_window("shippedQty", delivered_qty, window)

    @traced_engine(
        "reconciliation.three_way_match", "1.0",
        fingerprint_fields=("requested_qty", "policy"),
    )
    def three_way_match(
        self,
        *,
        grn_line: LineSnapshot,
        po_line: LineSnapshot | None,
        requested_qty: Decimal,
        policy: InvoiceControlPolicy,
    ) -> InvoiceMatch:
        """
        Match an invoice line quantity against its GRN line (and PO line).

        RECEIVED baseline: invoiceable = accepted - invoiced on the GRN line.
        ORDERED baseline:  invoiceable = ordered - invoiced on the PO line,
                           additionally capped by the GRN line's accepted
                           headroom.
        """
        accepted_headroom = grn_line.accepted_qty - grn_line.invoiced_qty
        if policy is InvoiceControlPolicy.ORDERED and po_line is not None:
            baseline = po_line.ordered_qty
            invoiceable = min(po_line.ordered_qty - po_line.invoiced_qty, accepted_headroom)
        else:
            baseline = grn_line.accepted_qty
            invoiceable = accepted_headroom
        invoiceable = max(invoiceable, ZERO)

        if requested_qty > invoiceable:
            logger.info(
                "invoice_ceiling_exceeded",
                extra={
                    "grn_line_id": str(grn_line.line_id),
                    "requested": str(requested_qty),
                    "invoiceable": str(invoiceable),
                    "policy": policy.value,
                },
            )
            raise InvoiceCeilingExceededError(
                grn_line.line_id,
                attempted=grn_line.invoiced_qty + requested_qty,
                limit=grn_line.invoiced_qty + invoiceable,
                baseline=policy.value,
            )

        return InvoiceMatch(
            policy=policy,
            requested=requested_qty,
            baseline_qty=baseline,
            invoiceable=invoiceable,
            accepted_ceiling=grn_line.accepted_qty,
        )
