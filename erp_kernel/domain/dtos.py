"""
Domain DTOs (``erp_kernel.domain.dtos``).

Frozen point-in-time snapshots returned by services and selectors.  ORM
rows never leave the kernel; callers get these instead.

``DocumentSnapshot`` and ``TransitionResult`` round-trip through a plain
JSON-safe dict (``to_record`` / ``from_record``) so an idempotency replay
returns exactly the result that was committed the first time.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_QTY_FIELDS = (
    "ordered_qty",
    "received_qty",
    "accepted_qty",
    "rejected_qty",
    "invoiced_qty",
    "shipped_qty",
    "delivered_qty",
)


def _opt(value: Any, convert: Any) -> Any:
    return None if value is None else convert(value)


@dataclass(frozen=True)
class LineSnapshot:
    line_id: UUID
    document_id: UUID
    line_no: int
    product_id: UUID
    reference_line_id: UUID | None = None
    category: str | None = None
    ordered_qty: Decimal = Decimal("0.000")
    received_qty: Decimal = Decimal("0.000")
    accepted_qty: Decimal = Decimal("0.000")
    rejected_qty: Decimal = Decimal("0.000")
    invoiced_qty: Decimal = Decimal("0.000")
    shipped_qty: Decimal = Decimal("0.000")
    delivered_qty: Decimal = Decimal("0.000")
    system_qty: Decimal | None = None
    counted_qty: Decimal | None = None
    direction: str | None = None
    reason: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    rejection_reason: str | None = None
    quality_note: str | None = None

    def quantity(self, name: str) -> Decimal:
        return getattr(self, name)

    def to_record(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            val = getattr(self, f.name)
            if isinstance(val, (UUID, Decimal)):
                val = str(val)
            elif isinstance(val, date):
                val = val.isoformat()
            out[f.name] = val
        return out

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> LineSnapshot:
        kwargs: dict[str, Any] = dict(data)
        for key in ("line_id", "document_id", "product_id", "reference_line_id"):
            kwargs[key] = _opt(kwargs.get(key), UUID)
        for key in _QTY_FIELDS + ("system_qty", "counted_qty"):
            kwargs[key] = _opt(kwargs.get(key), Decimal)
        kwargs["expiry_date"] = _opt(kwargs.get("expiry_date"), date.fromisoformat)
        return cls(**kwargs)


@dataclass(frozen=True)
class DocumentSnapshot:
    document_id: UUID
    doc_type: str
    doc_number: str
    status: str
    version: int
    tenant_id: UUID
    company_id: UUID
    last_action: str | None = None
    parent_refs: tuple[UUID, ...] = ()
    counterparty_id: UUID | None = None
    warehouse_id: UUID | None = None
    dest_warehouse_id: UUID | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    status_changed_at: datetime | None = None
    created_by_id: UUID | None = None
    lines: tuple[LineSnapshot, ...] = ()

    def line(self, line_id: UUID) -> LineSnapshot:
        for ln in self.lines:
            if ln.line_id == line_id:
                return ln
        raise KeyError(line_id)

    def to_record(self) -> dict[str, Any]:
        return {
            "document_id": str(self.document_id),
            "doc_type": self.doc_type,
            "doc_number": self.doc_number,
            "status": self.status,
            "version": self.version,
            "tenant_id": str(self.tenant_id),
            "company_id": str(self.company_id),
            "last_action": self.last_action,
            "parent_refs": [str(p) for p in self.parent_refs],
            "counterparty_id": _opt(self.counterparty_id, str),
            "warehouse_id": _opt(self.warehouse_id, str),
            "dest_warehouse_id": _opt(self.dest_warehouse_id, str),
            "attributes": dict(self.attributes),
            "status_changed_at": _opt(self.status_changed_at, datetime.isoformat),
            "created_by_id": _opt(self.created_by_id, str),
            "lines": [ln.to_record() for ln in self.lines],
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> DocumentSnapshot:
        return cls(
            document_id=UUID(data["document_id"]),
            doc_type=data["doc_type"],
            doc_number=data["doc_number"],
            status=data["status"],
            version=int(data["version"]),
            tenant_id=UUID(data["tenant_id"]),
            company_id=UUID(data["company_id"]),
            last_action=data.get("last_action"),
            parent_refs=tuple(UUID(p) for p in data.get("parent_refs", ())),
            counterparty_id=_opt(data.get("counterparty_id"), UUID),
            warehouse_id=_opt(data.get("warehouse_id"), UUID),
            dest_warehouse_id=_opt(data.get("dest_warehouse_id"), UUID),
            attributes=dict(data.get("attributes") or {}),
            status_changed_at=_opt(data.get("status_changed_at"), datetime.fromisoformat),
            created_by_id=_opt(data.get("created_by_id"), UUID),
            lines=tuple(LineSnapshot.from_record(ln) for ln in data.get("lines", ())),
        )


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one document action."""
    document: DocumentSnapshot
    action: str
    from_status: str
    to_status: str
    replayed: bool = False

    def to_record(self) -> dict[str, Any]:
        return {
            "document": self.document.to_record(),
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any], *, replayed: bool = False) -> TransitionResult:
        return cls(
            document=DocumentSnapshot.from_record(data["document"]),
            action=data["action"],
            from_status=data["from_status"],
            to_status=data["to_status"],
            replayed=replayed,
        )


@dataclass(frozen=True)
class EffectiveTolerance:
    """Tolerance that applies to one product, with its provenance."""
    under_pct: Decimal
    over_pct: Decimal
    unlimited_over: bool
    resolved_from: str
    tolerance_id: UUID | None = None


@dataclass(frozen=True)
class ToleranceSettingInfo:
    tolerance_id: UUID
    company_id: UUID
    level: str
    scope_key: str
    category_name: str | None
    product_id: UUID | None
    under_pct: Decimal
    over_pct: Decimal
    unlimited_over: bool
    is_active: bool
    notes: str | None = None


@dataclass(frozen=True)
class DispositionInfo:
    disposition_id: UUID
    grn_id: UUID
    grn_line_id: UUID
    product_id: UUID
    rejected_qty: Decimal
    disposition: str
    resolved: bool
    notes: str | None = None
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None


@dataclass(frozen=True)
class StockBalance:
    warehouse_id: UUID
    product_id: UUID
    quantity: Decimal
