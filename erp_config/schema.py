"""
Configuration schema (``erp_config.schema``).

Frozen dataclasses produced by ``erp_config.loader``.  Nothing here reads
files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

DEFAULT_COMPANY_KEY = "default"

# Values accepted for ``invoice_control_policy``; modules map them onto their own types.
INVOICE_CONTROL_POLICIES = ("ORDERED", "RECEIVED")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    lock_timeout_seconds: float = 15.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class RetrySettings:
    """How often a module action is re-run after LockContentionError."""
    lock_contention_retries: int = 1


@dataclass(frozen=True)
class CompanyPolicy:
    invoice_control_policy: str = "RECEIVED"
    auto_complete_purchase_orders: bool = True


@dataclass(frozen=True)
class ErpSettings:
    database: DatabaseSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    companies: dict[str, CompanyPolicy] = field(default_factory=dict)
    checksum: str = ""

    def policy_for(self, company_id: UUID | str) -> CompanyPolicy:
        """Company-specific policy, else the ``default`` entry, else built-ins."""
        policy = self.companies.get(str(company_id))
        if policy is None:
            policy = self.companies.get(DEFAULT_COMPANY_KEY, CompanyPolicy())
        return policy
