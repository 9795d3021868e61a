"""
Kernel Invariants Contract.

These invariants are structural law.  No company configuration, tolerance
setting, or invoice-control policy may override them.

This module declares them explicitly.  Enforcement is distributed across
QuantityLedger, StockService, ToleranceService, DispositionTracker, and the
document state machine.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    DELTA_ONLY_TOTALS = "delta_only_totals"
    """Line totals change only by signed deltas applied under a per-line
    lock. Enforced by QuantityLedger.apply_deltas."""

    RECEIPT_CONSISTENCY = "receipt_consistency"
    """acceptedQty + rejectedQty <= receivedQty on every line after every
    delta. Enforced by check_line_invariants."""

    INVOICE_CEILING = "invoice_ceiling"
    """invoicedQty <= acceptedQty, strictly, regardless of tolerance.
    Enforced by check_line_invariants and the 3-way match."""

    DELIVERY_CONSISTENCY = "delivery_consistency"
    """deliveredQty <= shippedQty, and shipped/received totals never exceed
    the tolerance ceiling. Enforced by check_line_invariants."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """Warehouse balances never go below zero. Enforced by
    StockService.move."""

    SINGLE_ACTIVE_TOLERANCE = "single_active_tolerance"
    """At most one active tolerance per (company, level, scope key).
    Enforced by ToleranceService and a unique constraint."""

    ATOMIC_TRANSITION = "atomic_transition"
    """A status change and its ledger/stock effects commit together or not
    at all. Enforced by the state machine and module transaction scope."""

    IDEMPOTENT_TRANSITION = "idempotent_transition"
    """A re-submitted action (same idempotency key or stale version with the
    same last action) returns the committed result without re-applying
    deltas. Enforced by the state machine and IdempotencyStore."""

    TERMINAL_IMMUTABILITY = "terminal_immutability"
    """Lines of a terminal document no longer change, except downstream
    invoicing totals and disposition records."""

    DISPOSITION_TERMINALITY = "disposition_terminality"
    """A resolved disposition accepts no further changes. Enforced by
    DispositionTracker."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "erp_engines",
    "erp_services",
    "erp_config",
    "erp_modules",
)
