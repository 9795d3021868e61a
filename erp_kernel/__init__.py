"""
ERP Kernel - quantity reconciliation core

A multi-tenant distribution ERP core with:
- Delta-based per-line quantity ledger with invariant checks
- Hierarchical delivery tolerance resolution
- Table-driven document state machines with idempotent transitions
- Disposition tracking for rejected goods
"""

__version__ = "0.1.0"
