"""
Shared helpers for module action flows.

Used by erp_modules/*/service.py to own the transaction boundary of each
public action (commit on success, rollback on any failure), to retry an
action once when it failed purely on lock contention, and to resolve the
tolerance window that governs a product.

Architecture: Modules layer.  Imports from erp_kernel, erp_engines and
erp_services only.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from erp_engines.tolerance import ToleranceResolver, ToleranceWindow
from erp_kernel.domain.catalog import ProductCatalog, require_product
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import EffectiveTolerance
from erp_kernel.exceptions import ErpKernelError, LockContentionError, PersistenceError
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.selectors.tolerance_selector import ToleranceSelector
from erp_kernel.services.base import is_lock_contention

logger = get_logger("modules.actions")

T = TypeVar("T")

_resolver = ToleranceResolver()


def run_action(
    session: Session,
    ctx: RequestContext,
    operation: str,
    fn: Callable[[], T],
    *,
    retries: int = 1,
    document_id: UUID | None = None,
    idempotency_key: str | None = None,
) -> T:
    """
    Run ``fn`` as one transaction: commit on success, roll back on failure.

    A failure whose error says ``retryable`` (lock contention only) is
    re-run up to ``retries`` times from a clean session.  Every other
    error is re-raised untouched after the rollback.
    """
    attempt = 0
    with LogContext.bind(
        **ctx.log_fields(), document_id=document_id, idempotency_key=idempotency_key
    ):
        while True:
            try:
                result = fn()
                session.commit()
                logger.info("action_committed", extra={"operation": operation})
                return result
            except ErpKernelError as exc:
                session.rollback()
                if getattr(exc, "retryable", False) and attempt < retries:
                    attempt += 1
                    logger.warning(
                        "lock_contention_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    continue
                logger.info(
                    "action_rolled_back",
                    extra={"operation": operation, "error_code": exc.code},
                )
                raise
            except DBAPIError as exc:
                session.rollback()
                if is_lock_contention(exc):
                    if attempt < retries:
                        attempt += 1
                        logger.warning(
                            "lock_contention_retry",
                            extra={"operation": operation, "attempt": attempt},
                        )
                        continue
                    raise LockContentionError(operation, document_id, detail=str(exc.orig)) from exc
                logger.error("action_failed", extra={"operation": operation}, exc_info=True)
                raise PersistenceError(operation, str(exc.orig)) from exc
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("action_failed", extra={"operation": operation}, exc_info=True)
                raise PersistenceError(operation, str(exc)) from exc
            except Exception:
                session.rollback()
                raise


def effective_tolerance(
    session: Session,
    ctx: RequestContext,
    catalog: ProductCatalog,
    product_id: UUID,
) -> EffectiveTolerance:
    """Resolve the tolerance for a product from the currently active settings."""
    product = require_product(catalog, product_id)
    settings = ToleranceSelector(session).candidates(ctx, product_id, product.category)
    return _resolver.resolve(
        settings,
        product_id=product_id,
        category_name=product.category,
        company_id=ctx.company_id,
    )


def tolerance_window(
    session: Session,
    ctx: RequestContext,
    catalog: ProductCatalog,
    product_id: UUID,
    expected: Decimal,
) -> ToleranceWindow:
    tol = effective_tolerance(session, ctx, catalog, product_id)
    return _resolver.window(tol, expected)
