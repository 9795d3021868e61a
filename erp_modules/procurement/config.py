"""
Procurement Configuration Schema.

Defines the structure and defaults for procurement settings.  Company
policies come from ``erp_config`` at runtime, where the invoice-control
policy is a plain string; it becomes an ``InvoiceControlPolicy`` here.
"""

from dataclasses import dataclass, field
from typing import Self
from uuid import UUID

from erp_config.schema import DEFAULT_COMPANY_KEY, ErpSettings
from erp_config.schema import CompanyPolicy as SettingsCompanyPolicy
from erp_kernel.domain.values import InvoiceControlPolicy
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.config")


@dataclass(frozen=True)
class CompanyPolicy:
    """Procurement policy for one company."""
    invoice_control_policy: InvoiceControlPolicy = InvoiceControlPolicy.RECEIVED
    auto_complete_purchase_orders: bool = True

    @classmethod
    def from_settings(cls, policy: SettingsCompanyPolicy) -> Self:
        return cls(
            invoice_control_policy=InvoiceControlPolicy(policy.invoice_control_policy),
            auto_complete_purchase_orders=policy.auto_complete_purchase_orders,
        )


@dataclass
class ProcurementConfig:
    """
    Configuration schema for the procurement module.

    Override per company through ``company_policies`` (keyed by company id)
    or build from loaded settings:

        config = ProcurementConfig.from_settings(get_settings())
    """

    # Three-way match baseline when a company has no policy of its own
    invoice_control_policy: InvoiceControlPolicy = InvoiceControlPolicy.RECEIVED
    company_policies: dict[str, CompanyPolicy] = field(default_factory=dict)

    # Close the PO automatically once every line is received in full
    auto_complete_purchase_orders: bool = True

    # Batch/expiry capture on goods receipt
    enforce_batch_numbers: bool = True
    enforce_expiry_dates: bool = True

    # Re-runs of an action that lost a row lock
    lock_contention_retries: int = 1

    def __post_init__(self):
        logger.info(
            "procurement_config_initialized",
            extra={
                "invoice_control_policy": self.invoice_control_policy.value,
                "company_policy_count": len(self.company_policies),
                "auto_complete_purchase_orders": self.auto_complete_purchase_orders,
                "lock_contention_retries": self.lock_contention_retries,
            },
        )

    def policy_for(self, company_id: UUID) -> InvoiceControlPolicy:
        policy = self.company_policies.get(str(company_id))
        if policy is not None:
            return policy.invoice_control_policy
        return self.invoice_control_policy

    def auto_complete_for(self, company_id: UUID) -> bool:
        policy = self.company_policies.get(str(company_id))
        if policy is not None:
            return policy.auto_complete_purchase_orders
        return self.auto_complete_purchase_orders

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("procurement_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a YAML fragment)."""
        logger.info(
            "procurement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        if "invoice_control_policy" in data:
            data["invoice_control_policy"] = InvoiceControlPolicy(data["invoice_control_policy"])
        if "company_policies" in data:
            data["company_policies"] = {
                str(k): v if isinstance(v, CompanyPolicy) else CompanyPolicy(
                    invoice_control_policy=InvoiceControlPolicy(
                        v.get("invoice_control_policy", InvoiceControlPolicy.RECEIVED.value)
                    ),
                    auto_complete_purchase_orders=v.get("auto_complete_purchase_orders", True),
                )
                for k, v in data["company_policies"].items()
            }
        return cls(**data)

    @classmethod
    def from_settings(cls, settings: ErpSettings) -> Self:
        default = CompanyPolicy.from_settings(settings.policy_for(DEFAULT_COMPANY_KEY))
        return cls(
            invoice_control_policy=default.invoice_control_policy,
            auto_complete_purchase_orders=default.auto_complete_purchase_orders,
            company_policies={
                k: CompanyPolicy.from_settings(v)
                for k, v in settings.companies.items()
                if k != DEFAULT_COMPANY_KEY
            },
            lock_contention_retries=settings.retry.lock_contention_retries,
        )
