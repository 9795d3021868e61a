"""
erp_engines.tolerance -- Hierarchical tolerance resolution and window math.

Responsibility:
    Resolve the effective under/over delivery tolerance for one product from
    the set of active settings, and turn it into an acceptable quantity
    window around an expected quantity.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Callers fetch candidate
    settings (``ToleranceSelector.candidates``) and pass them in.

Invariants enforced:
    - Resolution order, first active match wins:
      PRODUCT(productId) -> CATEGORY(category, verbatim, case-sensitive)
      -> COMPANY(companyId) -> DEFAULT(0%, 0%, limited).
    - A product without a category never matches a CATEGORY setting.
    - Pure function of its inputs: identical settings give identical
      results.
    - Window bounds are exact: ``min = expected * (100 - under) / 100`` and
      ``max = expected * (100 + over) / 100``, rounded outward to the
      quantity scale, so comparing a 3-place quantity against them is the
      same as comparing against the exact bound.

Failure modes:
    - InternalError if two active settings share a level and scope key;
      writes prevent that, so seeing it means the store is corrupt.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from uuid import UUID

from erp_engines.tracer import traced_engine
from erp_kernel.db.types import HUNDRED, QUANTITY_QUANTUM, ZERO, round_percent
from erp_kernel.domain.dtos import EffectiveTolerance, ToleranceSettingInfo
from erp_kernel.domain.values import RESOLVED_FROM_DEFAULT, ToleranceLevel, ViolationType
from erp_kernel.exceptions import InternalError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.tolerance")

DEFAULT_TOLERANCE = EffectiveTolerance(
    under_pct=Decimal("0.00"),
    over_pct=Decimal("0.00"),
    unlimited_over=False,
    resolved_from=RESOLVED_FROM_DEFAULT,
    tolerance_id=None,
)


@dataclass(frozen=True)
class ToleranceWindow:
    """Acceptable range for an actual quantity; ``max_qty`` None = unlimited."""
    expected: Decimal
    min_qty: Decimal
    max_qty: Decimal | None
    tolerance: EffectiveTolerance

    def violation(self, actual: Decimal) -> ViolationType | None:
        if actual < self.min_qty:
            return ViolationType.UNDER
        if self.max_qty is not None and actual > self.max_qty:
            return ViolationType.OVER
        return None

    def contains(self, actual: Decimal) -> bool:
        return self.violation(actual) is None

    def deviation_pct(self, actual: Decimal) -> Decimal:
        if self.expected == ZERO:
            return round_percent(HUNDRED if actual > ZERO else ZERO)
        return round_percent((actual - self.expected) / self.expected * HUNDRED)


class ToleranceResolver:
    """
    Stateless resolver.

    Usage:
        resolver = ToleranceResolver()
        tol = resolver.resolve(settings, product_id=p, category_name="Beverages",
                               company_id=c)
        window = resolver.window(tol, Decimal("100"))
    """

    _ORDER = (ToleranceLevel.PRODUCT, ToleranceLevel.CATEGORY, ToleranceLevel.COMPANY)

    @traced_engine(
        "tolerance_resolver", "1.0",
        fingerprint_fields=("product_id", "category_name", "company_id"),
    )
    def resolve(
        self,
        settings: Sequence[ToleranceSettingInfo],
        *,
        product_id: UUID,
        category_name: str | None,
        company_id: UUID,
    ) -> EffectiveTolerance:
        wanted = {
            ToleranceLevel.PRODUCT: str(product_id),
            ToleranceLevel.CATEGORY: category_name,
            ToleranceLevel.COMPANY: str(company_id),
        }
        for level in self._ORDER:
            key = wanted[level]
            if key is None:
                continue
            matches = [
                s for s in settings
                if s.is_active and s.level == level.value and s.scope_key == key
            ]
            if len(matches) > 1:
                raise InternalError(
                    f"{len(matches)} active {level.value} tolerances for {key}"
                )
            if matches:
                hit = matches[0]
                logger.debug(
                    "tolerance_resolved",
                    extra={
                        "product_id": str(product_id),
                        "resolved_from": level.value,
                        "tolerance_id": str(hit.tolerance_id),
                    },
                )
                return EffectiveTolerance(
                    under_pct=hit.under_pct,
                    over_pct=hit.over_pct,
                    unlimited_over=hit.unlimited_over,
                    resolved_from=level.value,
                    tolerance_id=hit.tolerance_id,
                )

        logger.debug(
            "tolerance_resolved",
            extra={"product_id": str(product_id), "resolved_from": RESOLVED_FROM_DEFAULT},
        )
        return DEFAULT_TOLERANCE

    def window(self, tolerance: EffectiveTolerance, expected: Decimal) -> ToleranceWindow:
        min_exact = expected * (HUNDRED - tolerance.under_pct) / HUNDRED
        min_qty = max(ZERO, min_exact.quantize(QUANTITY_QUANTUM, rounding=ROUND_CEILING))
        max_qty: Decimal | None = None
        if not tolerance.unlimited_over:
            max_exact = expected * (HUNDRED + tolerance.over_pct) / HUNDRED
            max_qty = max_exact.quantize(QUANTITY_QUANTUM, rounding=ROUND_FLOOR)
        return ToleranceWindow(
            expected=expected,
            min_qty=min_qty,
            max_qty=max_qty,
            tolerance=tolerance,
        )

    def ceiling(self, tolerance: EffectiveTolerance, expected: Decimal) -> Decimal | None:
        """Upper bound only; None when over-delivery is unlimited."""
        return self.window(tolerance, expected).max_qty
