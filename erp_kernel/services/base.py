"""
Module: erp_kernel.services.base
Responsibility: Abstract base class for kernel services, and translation of
    database lock failures into the typed error taxonomy.
Architecture position: Kernel > Services.  May import from db/, models/,
    domain/, and exceptions.  MUST NOT import from outer layers.

Invariants enforced:
    - Services accept a Session from the caller and only ``flush()``; the
      module service that owns the action commits or rolls back.
    - A refused or aborted row lock surfaces as LockContentionError
      (retryable=True), never as a bare OperationalError, so the retry
      decision is explicit in the error type.

Failure modes:
    - LockContentionError: lock wait timeout, deadlock, serialization
      failure, or SQLite "database is locked".
    - PersistenceError: any other DBAPI failure except IntegrityError,
      which callers handle themselves (idempotency and duplicate checks).
"""

from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from erp_kernel.db.base import Base
from erp_kernel.exceptions import LockContentionError, PersistenceError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.base")

ModelType = TypeVar("ModelType", bound=Base)

# PostgreSQL SQLSTATEs meaning "another writer got there first"
_CONTENTION_SQLSTATES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
})


def is_lock_contention(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _CONTENTION_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        text = str(orig or exc).lower()
        return "database is locked" in text or "lock timeout" in text or "deadlock" in text
    return False


@contextmanager
def translate_db_errors(resource: str, resource_id: UUID | None = None) -> Iterator[None]:
    """Map DBAPI failures raised inside the block onto the error taxonomy."""
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        if is_lock_contention(exc):
            logger.warning(
                "lock_contention",
                extra={"resource": resource, "resource_id": resource_id},
            )
            raise LockContentionError(resource, resource_id, detail=str(exc.orig)) from exc
        raise PersistenceError(f"{resource} access", str(exc.orig)) from exc


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT provide read-only query methods; those live in
          ``erp_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
