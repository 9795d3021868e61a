"""
Module: erp_kernel.db.types
Responsibility: Fixed-scale decimal column type and annotated aliases for
    quantity and percentage columns.  Centralizes precision so every model
    and service uses identical scales.
Architecture position: Kernel > DB.  Lowest-level import target; MUST NOT
    import from models/, domain/, services/, or selectors/.

Invariants enforced:
    - No binary float ever reaches the database.  FixedDecimal stores
      NUMERIC on PostgreSQL and a canonical fixed-point string on every
      other dialect (SQLite has no exact decimal storage).
    - Quantities carry QUANTITY_DECIMAL_PLACES (3) places, tolerance
      percentages carry PERCENT_DECIMAL_PLACES (2) places.

Failure modes:
    - decimal.InvalidOperation if a value exceeds the column precision.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

QUANTITY_DECIMAL_PLACES = 3
PERCENT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

QUANTITY_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
PERCENT_QUANTUM = Decimal(1).scaleb(-PERCENT_DECIMAL_PLACES)
ZERO = Decimal("0.000")
HUNDRED = Decimal("100")


class FixedDecimal(TypeDecorator):
    """
    Exact decimal column with a fixed scale.

    Contract:
        Python side is always ``Decimal`` quantized to ``scale`` places.

    Guarantees:
        - PostgreSQL: NUMERIC(precision, scale).
        - Other dialects: VARCHAR holding the canonical fixed-point string,
          so the value round-trips bit-exact.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 18, scale: int = QUANTITY_DECIMAL_PLACES):
        super().__init__(precision, scale, asdecimal=True)
        self.fixed_precision = precision
        self.fixed_scale = scale

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.fixed_scale)

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(
                Numeric(self.fixed_precision, self.fixed_scale, asdecimal=True)
            )
        return dialect.type_descriptor(String(self.fixed_precision + 2))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        quantized = Decimal(value).quantize(self.quantum, rounding=DEFAULT_ROUNDING)
        if dialect.name == "postgresql":
            return quantized
        return format(quantized, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value).quantize(self.quantum, rounding=DEFAULT_ROUNDING)



def round_quantity(value: Decimal) -> Decimal:
    """The only sanctioned rounding for quantities."""
    return value.quantize(QUANTITY_QUANTUM, rounding=DEFAULT_ROUNDING)


def round_percent(value: Decimal) -> Decimal:
    return value.quantize(PERCENT_QUANTUM, rounding=DEFAULT_ROUNDING)
