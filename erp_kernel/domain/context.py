"""
Request context (``erp_kernel.domain.context``).

The authenticated principal and tenant/company scope are resolved by the
HTTP layer and handed to this core as an opaque, immutable value.  Every
document, tolerance setting, and stock balance is scoped by
``(tenant_id, company_id)``; reads that cross the scope behave as
not-found.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    tenant_id: UUID
    company_id: UUID
    actor_id: UUID
    correlation_id: str | None = None

    def log_fields(self) -> dict[str, str]:
        fields = {
            "tenant_id": str(self.tenant_id),
            "company_id": str(self.company_id),
            "actor_id": str(self.actor_id),
        }
        if self.correlation_id:
            fields["correlation_id"] = self.correlation_id
        return fields
