"""Database layer - engine, base classes, and column types."""

from erp_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from erp_kernel.db.engine import create_tables, get_engine, get_session
from erp_kernel.db.types import (
    PERCENT_DECIMAL_PLACES,
    QUANTITY_DECIMAL_PLACES,
    FixedDecimal,
    round_percent,
    round_quantity,
)

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "FixedDecimal",
    "QUANTITY_DECIMAL_PLACES",
    "PERCENT_DECIMAL_PLACES",
    "round_quantity",
    "round_percent",
]
