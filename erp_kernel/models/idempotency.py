"""
IdempotencyRecord -- committed result of a keyed document action.

Written in the same transaction as the transition it records, so a key is
visible if and only if its transition committed.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base


class IdempotencyRecord(Base):
    __tablename__ = "erp_idempotency_records"

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_idempotency_key"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    document_id: Mapped[UUID] = mapped_column(ForeignKey("erp_documents.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
