"""
Module: erp_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by the
    state machine and the document modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May import erp_kernel
    domain values, DTOs, and exceptions.  MUST NOT import erp_services or
    erp_modules.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic; floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.
"""

from erp_engines.reconciliation import (
    InvoiceMatch,
    ReconciliationValidator,
    ToleranceCheck,
)
from erp_engines.tolerance import DEFAULT_TOLERANCE, ToleranceResolver, ToleranceWindow
from erp_engines.tracer import traced_engine

__all__ = [
    "DEFAULT_TOLERANCE",
    "InvoiceMatch",
    "ReconciliationValidator",
    "ToleranceCheck",
    "ToleranceResolver",
    "ToleranceWindow",
    "traced_engine",
]
