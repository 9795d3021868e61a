"""
Inventory Configuration Schema.
"""

from dataclasses import dataclass, field
from typing import Self

from erp_config.schema import ErpSettings
from erp_kernel.domain.values import AdjustmentReason
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.inventory.config")


@dataclass
class InventoryConfig:
    """Configuration schema for the inventory module."""

    # Reasons an adjustment line may carry
    allowed_adjustment_reasons: frozenset[str] = field(
        default_factory=lambda: frozenset(r.value for r in AdjustmentReason)
    )

    # Refuse transfers whose source and destination are the same warehouse
    require_distinct_warehouses: bool = True

    lock_contention_retries: int = 1

    def __post_init__(self):
        unknown = set(self.allowed_adjustment_reasons) - {r.value for r in AdjustmentReason}
        if unknown:
            raise ValueError(f"unknown adjustment reasons: {sorted(unknown)}")
        logger.info(
            "inventory_config_initialized",
            extra={
                "allowed_adjustment_reasons": sorted(self.allowed_adjustment_reasons),
                "require_distinct_warehouses": self.require_distinct_warehouses,
                "lock_contention_retries": self.lock_contention_retries,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        data = dict(data)
        if "allowed_adjustment_reasons" in data:
            data["allowed_adjustment_reasons"] = frozenset(data["allowed_adjustment_reasons"])
        return cls(**data)

    @classmethod
    def from_settings(cls, settings: ErpSettings) -> Self:
        return cls(lock_contention_retries=settings.retry.lock_contention_retries)
