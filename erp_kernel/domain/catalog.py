"""
Product catalog port (``erp_kernel.domain.catalog``).

Responsibility
--------------
Master data is owned outside this core.  The reconciliation engine needs
exactly three facts about a product: its category (for CATEGORY-level
tolerance resolution) and whether it is batch-tracked or perishable (for
goods-receipt validation).  ``ProductCatalog`` is the protocol the master
data service implements; ``StaticProductCatalog`` is an in-memory
implementation used by tests and local tooling.

Failure modes
-------------
* ``lookup`` returns ``None`` for an unknown product; ``require`` raises
  ``ProductNotFoundError``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID

from erp_kernel.exceptions import ProductNotFoundError


@dataclass(frozen=True)
class ProductInfo:
    product_id: UUID
    category: str | None = None
    is_batch_tracked: bool = False
    is_perishable: bool = False


@runtime_checkable
class ProductCatalog(Protocol):
    def lookup(self, product_id: UUID) -> ProductInfo | None: ...


class StaticProductCatalog:
    """Dict-backed catalog."""

    def __init__(self, products: Iterable[ProductInfo] = ()):
        self._products: dict[UUID, ProductInfo] = {
            p.product_id: p for p in products
        }

    def add(self, product: ProductInfo) -> None:
        self._products[product.product_id] = product

    def lookup(self, product_id: UUID) -> ProductInfo | None:
        return self._products.get(product_id)


def require_product(catalog: ProductCatalog, product_id: UUID) -> ProductInfo:
    info = catalog.lookup(product_id)
    if info is None:
        raise ProductNotFoundError(product_id)
    return info
