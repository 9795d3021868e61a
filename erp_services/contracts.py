"""
erp_services.contracts -- Request/response shapes for collaborators.

Responsibility:
    Translate camelCase request bodies from the HTTP layer into typed
    commands, and render snapshots and errors back into camelCase dicts.
    Quantities always travel as decimal strings; a JSON float is refused
    at parse time, before any document is read.

Architecture position:
    Services layer.  Pure translation, no Session.  Module services accept
    the typed commands defined here.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from erp_kernel.domain.dtos import (
    DispositionInfo,
    DocumentSnapshot,
    EffectiveTolerance,
    LineSnapshot,
    StockBalance,
    ToleranceSettingInfo,
    TransitionResult,
)
from erp_kernel.domain.quantities import parse_quantity
from erp_kernel.exceptions import ErpKernelError, ValidationError

_MISSING: Any = object()


def camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _plain(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {camel(str(k)): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def _field(body: Mapping[str, Any], key: str, default: Any = _MISSING) -> Any:
    if key in body:
        return body[key]
    if default is _MISSING:
        raise ValidationError(f"{key} is required", field=key)
    return default


def _uuid(value: Any, key: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"{key} must be a UUID", field=key) from None


def _opt_uuid(body: Mapping[str, Any], key: str) -> UUID | None:
    value = body.get(key)
    return None if value is None else _uuid(value, key)


def _opt_date(body: Mapping[str, Any], key: str) -> date | None:
    value = body.get(key)
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO date", field=key) from None


def _items(body: Mapping[str, Any], key: str = "items") -> Sequence[Mapping[str, Any]]:
    items = _field(body, key)
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError(f"{key} must be a non-empty list", field=key)
    return items


@dataclass(frozen=True)
class ActionRequest:
    """Envelope shared by every document action."""
    idempotency_key: str | None = None
    expected_version: int | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_request(cls, body: Mapping[str, Any] | None) -> ActionRequest:
        body = dict(body or {})
        key = body.pop("idempotencyKey", None)
        version = body.pop("expectedVersion", None)
        if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
            raise ValidationError("expectedVersion must be an integer", field="expectedVersion")
        return cls(idempotency_key=key, expected_version=version, payload=body)


@dataclass(frozen=True)
class OrderLineCommand:
    """One PO/SO/transfer line: product and planned quantity."""
    product_id: UUID
    quantity: Decimal

    @classmethod
    def from_request(cls, body: Mapping[str, Any], qty_key: str = "orderedQty") -> OrderLineCommand:
        return cls(
            product_id=_uuid(_field(body, "productId"), "productId"),
            quantity=parse_quantity(_field(body, qty_key), qty_key, allow_zero=False),
        )


@dataclass(frozen=True)
class ReceiptItemCommand:
    po_line_id: UUID
    product_id: UUID
    received_qty: Decimal
    batch_number: str | None = None
    expiry_date: date | None = None

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> ReceiptItemCommand:
        return cls(
            po_line_id=_uuid(_field(body, "poItemId"), "poItemId"),
            product_id=_uuid(_field(body, "productId"), "productId"),
            received_qty=parse_quantity(_field(body, "receivedQty"), "receivedQty"),
            batch_number=body.get("batchNumber") or None,
            expiry_date=_opt_date(body, "expiryDate"),
        )


@dataclass(frozen=True)
class InspectItemCommand:
    item_id: UUID
    accepted_qty: Decimal
    rejected_qty: Decimal
    quality_note: str | None = None

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> InspectItemCommand:
        return cls(
            item_id=_uuid(_field(body, "itemId"), "itemId"),
            accepted_qty=parse_quantity(_field(body, "acceptedQty"), "acceptedQty"),
            rejected_qty=parse_quantity(_field(body, "rejectedQty", "0"), "rejectedQty"),
            quality_note=body.get("qualityNote"),
        )


@dataclass(frozen=True)
class InvoiceLineCommand:
    grn_line_id: UUID
    quantity: Decimal

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> InvoiceLineCommand:
        return cls(
            grn_line_id=_uuid(_field(body, "grnItemId"), "grnItemId"),
            quantity=parse_quantity(_field(body, "quantity"), "quantity", allow_zero=False),
        )


@dataclass(frozen=True)
class DeliveryLineCommand:
    so_line_id: UUID
    quantity: Decimal

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> DeliveryLineCommand:
        return cls(
            so_line_id=_uuid(_field(body, "soItemId"), "soItemId"),
            quantity=parse_quantity(_field(body, "quantity"), "quantity", allow_zero=False),
        )


@dataclass(frozen=True)
class AdjustmentLineCommand:
    product_id: UUID
    quantity: Decimal
    direction: str
    reason: str

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> AdjustmentLineCommand:
        return cls(
            product_id=_uuid(_field(body, "productId"), "productId"),
            quantity=parse_quantity(_field(body, "quantity"), "quantity", allow_zero=False),
            direction=str(_field(body, "direction")),
            reason=str(_field(body, "reason")),
        )


@dataclass(frozen=True)
class ToleranceCommand:
    level: Any
    under_pct: Any
    over_pct: Any
    unlimited_over: Any = False
    category_name: str | None = None
    product_id: UUID | None = None
    is_active: Any = True
    notes: str | None = None

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> ToleranceCommand:
        return cls(
            level=_field(body, "level"),
            under_pct=_field(body, "underDeliveryTolerance"),
            over_pct=_field(body, "overDeliveryTolerance"),
            unlimited_over=body.get("unlimitedOverDelivery", False),
            category_name=body.get("categoryName"),
            product_id=_opt_uuid(body, "productId"),
            is_active=body.get("isActive", True),
            notes=body.get("notes"),
        )


def parse_items(body: Mapping[str, Any], command: type, key: str = "items") -> list[Any]:
    """Parse a list of items with ``command.from_request``."""
    return [command.from_request(item) for item in _items(body, key)]


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_line(line: LineSnapshot) -> dict[str, Any]:
    return {
        "id": str(line.line_id),
        "lineNo": line.line_no,
        "productId": str(line.product_id),
        "referenceLineId": _plain(line.reference_line_id),
        "category": line.category,
        "orderedQty": str(line.ordered_qty),
        "receivedQty": str(line.received_qty),
        "acceptedQty": str(line.accepted_qty),
        "rejectedQty": str(line.rejected_qty),
        "invoicedQty": str(line.invoiced_qty),
        "shippedQty": str(line.shipped_qty),
        "deliveredQty": str(line.delivered_qty),
        "systemQty": _plain(line.system_qty),
        "countedQty": _plain(line.counted_qty),
        "direction": line.direction,
        "reason": line.reason,
        "batchNumber": line.batch_number,
        "expiryDate": _plain(line.expiry_date),
        "rejectionReason": line.rejection_reason,
        "qualityNote": line.quality_note,
    }


def render_document(doc: DocumentSnapshot) -> dict[str, Any]:
    return {
        "id": str(doc.document_id),
        "type": doc.doc_type,
        "number": doc.doc_number,
        "status": doc.status,
        "version": doc.version,
        "lastAction": doc.last_action,
        "parentRefs": [str(p) for p in doc.parent_refs],
        "counterpartyId": _plain(doc.counterparty_id),
        "warehouseId": _plain(doc.warehouse_id),
        "destWarehouseId": _plain(doc.dest_warehouse_id),
        "attributes": _plain(doc.attributes),
        "statusChangedAt": _plain(doc.status_changed_at),
        "createdBy": _plain(doc.created_by_id),
        "items": [render_line(ln) for ln in doc.lines],
    }


def render_transition(result: TransitionResult) -> dict[str, Any]:
    return {
        "document": render_document(result.document),
        "action": result.action,
        "fromStatus": result.from_status,
        "toStatus": result.to_status,
        "replayed": result.replayed,
    }


def render_tolerance(setting: ToleranceSettingInfo) -> dict[str, Any]:
    return {
        "id": str(setting.tolerance_id),
        "companyId": str(setting.company_id),
        "level": setting.level,
        "categoryName": setting.category_name,
        "productId": _plain(setting.product_id),
        "underDeliveryTolerance": str(setting.under_pct),
        "overDeliveryTolerance": str(setting.over_pct),
        "unlimitedOverDelivery": setting.unlimited_over,
        "isActive": setting.is_active,
        "notes": setting.notes,
    }


def render_effective_tolerance(product_id: UUID, tol: EffectiveTolerance) -> dict[str, Any]:
    return {
        "productId": str(product_id),
        "underDeliveryTolerance": str(tol.under_pct),
        "overDeliveryTolerance": str(tol.over_pct),
        "unlimitedOverDelivery": tol.unlimited_over,
        "resolvedFrom": tol.resolved_from,
        "toleranceId": _plain(tol.tolerance_id),
    }


def render_disposition(info: DispositionInfo) -> dict[str, Any]:
    return {
        "id": str(info.disposition_id),
        "grnId": str(info.grn_id),
        "grnItemId": str(info.grn_line_id),
        "productId": str(info.product_id),
        "rejectedQty": str(info.rejected_qty),
        "disposition": info.disposition,
        "resolved": info.resolved,
        "notes": info.notes,
        "resolvedBy": _plain(info.resolved_by),
        "resolvedAt": _plain(info.resolved_at),
    }


def render_stock(balance: StockBalance) -> dict[str, Any]:
    return {
        "warehouseId": str(balance.warehouse_id),
        "productId": str(balance.product_id),
        "quantity": str(balance.quantity),
    }


def render_error(exc: ErpKernelError) -> dict[str, Any]:
    """Error payload: machine-readable code plus the offending bound or field."""
    return {
        "code": exc.code,
        "message": str(exc),
        "category": exc.category,
        "details": _plain(exc.details()),
    }
