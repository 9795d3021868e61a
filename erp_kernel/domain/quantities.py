"""
Quantity parsing (``erp_kernel.domain.quantities``).

Responsibility
--------------
Turns caller-supplied quantities and percentages into fixed-scale
``Decimal`` values.  This is the ValidationError gate: malformed input is
rejected here, before any document or ledger row is read.

Invariants enforced
-------------------
* No binary floating point: ``float`` input is rejected outright, even
  when it happens to be integral.  Callers send decimal strings or ints.
* Scale is never silently truncated: a value with more places than the
  column scale is rejected, not rounded.
* ``bool`` is not a number here.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from erp_kernel.db.types import (
    HUNDRED,
    PERCENT_DECIMAL_PLACES,
    QUANTITY_DECIMAL_PLACES,
)
from erp_kernel.exceptions import InvalidQuantityError, InvalidToleranceError


def _to_decimal(value: Any, field: str, places: int) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidQuantityError(
            field, value, "must be a decimal string or integer, not a float"
        )
    if isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, Decimal):
        result = value
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidQuantityError(field, value, "not a decimal number") from None
    else:
        raise InvalidQuantityError(field, value, f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidQuantityError(field, value, "must be finite")
    quantum = Decimal(1).scaleb(-places)
    try:
        quantized = result.quantize(quantum)
    except InvalidOperation:
        raise InvalidQuantityError(field, value, "out of range") from None
    if quantized != result:
        raise InvalidQuantityError(field, value, f"more than {places} decimal places")
    return quantized


def parse_quantity(value: Any, field: str, *, allow_zero: bool = True) -> Decimal:
    """
    Parse a non-negative quantity with at most three decimal places.

    Raises:
        InvalidQuantityError: float input, non-numeric, negative, too many
            places, or zero when ``allow_zero`` is False.
    """
    if value is None:
        raise InvalidQuantityError(field, value, "is required")
    result = _to_decimal(value, field, QUANTITY_DECIMAL_PLACES)
    if result < 0:
        raise InvalidQuantityError(field, value, "must not be negative")
    if not allow_zero and result == 0:
        raise InvalidQuantityError(field, value, "must be greater than zero")
    return result


def parse_delta(value: Any, field: str) -> Decimal:
    """Parse a signed ledger delta (three decimal places)."""
    if value is None:
        raise InvalidQuantityError(field, value, "is required")
    return _to_decimal(value, field, QUANTITY_DECIMAL_PLACES)


def parse_percent(value: Any, field: str) -> Decimal:
    """
    Parse a tolerance percentage in [0, 100] with at most two places.

    Raises:
        InvalidToleranceError: out of range or malformed.
    """
    try:
        result = _to_decimal(value, field, PERCENT_DECIMAL_PLACES)
    except InvalidQuantityError as exc:
        raise InvalidToleranceError(
            f"{field}: {exc.reason}", field=field
        ) from None
    if result < 0 or result > HUNDRED:
        raise InvalidToleranceError(
            f"{field} must be between 0 and 100, got {result}", field=field
        )
    return result
