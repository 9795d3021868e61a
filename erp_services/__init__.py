"""
erp_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the kernel: the table-driven document state
    machine and the request/response contracts shared by module services.

Architecture position:
    Services -- sits above erp_engines/ and erp_kernel/.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        erp_services/ -> erp_engines/  (allowed)
        erp_services/ -> erp_kernel/   (allowed)
        erp_engines/  -> erp_services/ (FORBIDDEN)
        erp_kernel/   -> erp_services/ (FORBIDDEN)
"""

from erp_services.state_machine import (
    DocumentStateMachine,
    EffectContext,
    GuardContext,
    GuardExecutor,
    GuardVerdict,
)

__all__ = [
    "DocumentStateMachine",
    "EffectContext",
    "GuardContext",
    "GuardExecutor",
    "GuardVerdict",
]
