"""
Module: erp_kernel.services.sequence_service
Responsibility: Gap-safe document number allocation per
    (tenant, company, document type), e.g. ``GRN-000042``.
Architecture position: Kernel > Services.  Flush-only.

Invariants enforced:
    - Strictly monotonic numbers via a locked counter row; never
      aggregate-max-plus-one.
    - First allocation for a scope creates the counter inside a savepoint;
      a concurrent creator wins and we re-read under lock.
    - A rolled-back action returns its number.

Failure modes:
    - LockContentionError if the counter row cannot be locked.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from erp_kernel.db.base import Base
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import translate_db_errors

logger = get_logger("services.sequence")


class DocumentSequence(Base):
    """Counter row for one numbering scope."""

    __tablename__ = "erp_document_sequences"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "name", name="uq_document_sequence"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(40), nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional document numbering.

    Usage:
        number = SequenceService(session).next_number(tenant, company, "GRN")
        # "GRN-000001"
    """

    WIDTH = 6

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, tenant_id: UUID, company_id: UUID, name: str):
        return (
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.company_id == company_id,
                DocumentSequence.name == name,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def next_value(self, tenant_id: UUID, company_id: UUID, name: str) -> int:
        with translate_db_errors("document_sequence"):
            counter = self._session.execute(
                self._locked(tenant_id, company_id, name)
            ).scalar_one_or_none()

            if counter is None:
                savepoint = self._session.begin_nested()
                try:
                    counter = DocumentSequence(
                        tenant_id=tenant_id,
                        company_id=company_id,
                        name=name,
                        current_value=1,
                    )
                    self._session.add(counter)
                    self._session.flush()
                    savepoint.commit()
                    return 1
                except IntegrityError:
                    logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
                    savepoint.rollback()
                    counter = self._session.execute(
                        self._locked(tenant_id, company_id, name)
                    ).scalar_one()

            counter.current_value += 1
            self._session.flush()
        return counter.current_value

    def next_number(self, tenant_id: UUID, company_id: UUID, prefix: str) -> str:
        value = self.next_value(tenant_id, company_id, prefix)
        return f"{prefix}-{value:0{self.WIDTH}d}"
