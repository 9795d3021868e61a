"""
Sales Configuration Schema.
"""

from dataclasses import dataclass
from typing import Self

from erp_config.schema import ErpSettings
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.sales.config")


@dataclass
class SalesConfig:
    """Configuration schema for the sales module."""

    # Move an APPROVED order to PROCESSING when its first delivery ships
    auto_process_on_first_shipment: bool = True

    # Re-runs of an action that lost a row lock
    lock_contention_retries: int = 1

    def __post_init__(self):
        logger.info(
            "sales_config_initialized",
            extra={
                "auto_process_on_first_shipment": self.auto_process_on_first_shipment,
                "lock_contention_retries": self.lock_contention_retries,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("sales_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info("sales_config_loading_from_dict", extra={"keys": sorted(data.keys())})
        return cls(**data)

    @classmethod
    def from_settings(cls, settings: ErpSettings) -> Self:
        return cls(lock_contention_retries=settings.retry.lock_contention_retries)
