"""
Typed Exception Hierarchy for the ERP Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Document actions fail for very different reasons, and the caller must react
differently to each of them:
  - A malformed quantity is the client's fault and must never be retried.
  - An illegal transition means the document moved on; the UI must refresh.
  - A ledger conflict carries the offending bound so it can be displayed.
  - Lock contention is transient and may be retried exactly once.

Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A CATEGORY class attribute (one of the five families below)
  4. Structured DATA attributes (never parse the message)

Example - WRONG way to handle errors:
    try:
        service.accept_goods_receipt(grn_id, ctx)
    except Exception as e:
        if "tolerance" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        service.accept_goods_receipt(grn_id, ctx)
    except ToleranceExceededError as e:
        api_response(code=e.code, min=e.min_qty, max=e.max_qty)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpKernelError (base)
    |
    +-- ValidationError                  malformed input, nothing touched
    |   +-- InvalidQuantityError
    |   +-- InvalidToleranceError
    |   +-- InvalidIdempotencyKeyError
    |   +-- IdempotencyKeyMismatchError
    |   +-- MissingBatchNumberError
    |   +-- MissingExpiryDateError
    |   +-- ProductMismatchError
    |
    +-- StateError                       illegal transition for current status
    |   +-- InvalidTransitionError
    |   +-- GuardRejectedError
    |   +-- DocumentImmutableError
    |   +-- DispositionResolvedError
    |
    +-- ConflictError                    ledger invariant or tolerance breach
    |   +-- QuantityInvariantError
    |   +-- ToleranceExceededError
    |   +-- InvoiceCeilingExceededError
    |   +-- InsufficientStockError
    |   +-- DuplicateToleranceError
    |   +-- VersionConflictError
    |   +-- LockContentionError          (retryable=True)
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- DocumentLineNotFoundError
    |   +-- ToleranceNotFoundError
    |   +-- DispositionNotFoundError
    |   +-- ProductNotFoundError
    |
    +-- InternalError
        +-- PersistenceError
        +-- WorkflowConfigurationError

===============================================================================
RETRY SEMANTICS
===============================================================================

Only ConflictError carries ``retryable``.  It is True exclusively for
LockContentionError, raised when the database refused a row lock or
aborted the transaction because of a concurrent writer.  A genuine
invariant breach is never retryable: re-running it against the same
totals fails again.  The transition layer inspects ``retryable`` and
never guesses from the message.

===============================================================================
"""

from decimal import Decimal
from typing import Any
from uuid import UUID


def _plain(value: Any) -> Any:
    """Render structured attribute values as JSON-safe primitives."""
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


class ErpKernelError(Exception):
    """
    Base exception for all ERP kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification, and inherit ``category`` from one of the five
    category bases.
    """

    code: str = "ERP_KERNEL_ERROR"
    category: str = "INTERNAL_ERROR"

    def details(self) -> dict[str, Any]:
        """Structured attributes, excluding private ones."""
        return {
            k: _plain(v)
            for k, v in vars(self).items()
            if not k.startswith("_")
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category,
            "message": str(self),
            "details": self.details(),
        }


# =============================================================================
# Validation
# =============================================================================


class ValidationError(ErpKernelError):
    """Malformed input, rejected before the ledger is touched."""

    code: str = "VALIDATION_ERROR"
    category: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidQuantityError(ValidationError):
    """Quantity is not a fixed-point decimal, is negative, or has too many places."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: Any, reason: str):
        self.value = value if isinstance(value, (str, int, Decimal)) else repr(value)
        self.reason = reason
        super().__init__(f"Invalid quantity for {field}: {reason}", field=field)


class InvalidToleranceError(ValidationError):
    """Tolerance setting fails level-specific or range validation."""

    code: str = "INVALID_TOLERANCE"


class InvalidIdempotencyKeyError(ValidationError):
    """Idempotency key does not satisfy the length/charset contract."""

    code: str = "INVALID_IDEMPOTENCY_KEY"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid idempotency key: {reason}", field="idempotencyKey")


class IdempotencyKeyMismatchError(ValidationError):
    """
    Idempotency key was already used for a different document or action.

    Keys are single-use per (document, action); reusing one elsewhere is a
    client bug, not a replay.
    """

    code: str = "IDEMPOTENCY_KEY_MISMATCH"

    def __init__(
        self,
        key: str,
        stored_document_id: UUID,
        stored_action: str,
        document_id: UUID,
        action: str,
    ):
        self.key = key
        self.stored_document_id = stored_document_id
        self.stored_action = stored_action
        self.document_id = document_id
        self.action = action
        super().__init__(
            f"Idempotency key {key} already used for {stored_action} "
            f"on document {stored_document_id}",
            field="idempotencyKey",
        )


class MissingBatchNumberError(ValidationError):
    """Batch-tracked product received without a batch number."""

    code: str = "MISSING_BATCH_NUMBER"

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(
            f"Batch number is required for batch-tracked product {product_id}",
            field="batchNumber",
        )


class MissingExpiryDateError(ValidationError):
    """Perishable product received without an expiry date."""

    code: str = "MISSING_EXPIRY_DATE"

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(
            f"Expiry date is required for perishable product {product_id}",
            field="expiryDate",
        )


class ProductMismatchError(ValidationError):
    """Line product differs from the product on the referenced line."""

    code: str = "PRODUCT_MISMATCH"

    def __init__(self, reference_line_id: UUID, expected: UUID, received: UUID):
        self.reference_line_id = reference_line_id
        self.expected = expected
        self.received = received
        super().__init__(
            f"Product {received} does not match product {expected} "
            f"on referenced line {reference_line_id}",
            field="productId",
        )


# =============================================================================
# State
# =============================================================================


class StateError(ErpKernelError):
    """Action is not legal for the document's current status."""

    code: str = "STATE_ERROR"
    category: str = "STATE_ERROR"


class InvalidTransitionError(StateError):
    """No outgoing edge for ``action`` from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, doc_type: str, document_id: UUID, status: str, action: str):
        self.doc_type = doc_type
        self.document_id = document_id
        self.status = status
        self.action = action
        super().__init__(
            f"{doc_type} {document_id}: action '{action}' "
            f"is not allowed from status {status}"
        )


class GuardRejectedError(StateError):
    """An edge exists but its type-specific guard refused it."""

    code: str = "GUARD_REJECTED"

    def __init__(
        self,
        doc_type: str,
        document_id: UUID,
        status: str,
        action: str,
        guard: str,
        reason: str,
    ):
        self.doc_type = doc_type
        self.document_id = document_id
        self.status = status
        self.action = action
        self.guard = guard
        self.reason = reason
        super().__init__(
            f"{doc_type} {document_id}: '{action}' blocked by guard "
            f"{guard}: {reason}"
        )


class DocumentImmutableError(StateError):
    """Line or header belongs to a document in a terminal status."""

    code: str = "DOCUMENT_IMMUTABLE"

    def __init__(self, document_id: UUID, status: str, field: str | None = None):
        self.document_id = document_id
        self.status = status
        self.field = field
        super().__init__(
            f"Document {document_id} is {status} and can no longer be modified"
        )


class DispositionResolvedError(StateError):
    """Disposition record was resolved; it accepts no further changes."""

    code: str = "DISPOSITION_RESOLVED"

    def __init__(self, grn_line_id: UUID):
        self.grn_line_id = grn_line_id
        super().__init__(f"Disposition for GRN line {grn_line_id} is already resolved")


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(ErpKernelError):
    """
    Ledger invariant or tolerance breach.

    ``field``/``attempted``/``limit`` identify the offending bound.
    ``retryable`` is True only when the failure was caused purely by lock
    contention.
    """

    code: str = "CONFLICT"
    category: str = "CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        attempted: Decimal | None = None,
        limit: Decimal | None = None,
        retryable: bool = False,
    ):
        self.field = field
        self.attempted = attempted
        self.limit = limit
        self.retryable = retryable
        super().__init__(message)


class QuantityInvariantError(ConflictError):
    """Projected line totals would violate a ledger invariant."""

    code: str = "QUANTITY_INVARIANT_VIOLATION"

    def __init__(
        self,
        line_id: UUID,
        field: str,
        attempted: Decimal,
        limit: Decimal,
        rule: str,
    ):
        self.line_id = line_id
        self.rule = rule
        super().__init__(
            f"Line {line_id}: {field}={attempted} violates {rule} (limit {limit})",
            field=field,
            attempted=attempted,
            limit=limit,
        )


class ToleranceExceededError(ConflictError):
    """Received or delivered quantity falls outside the tolerance window."""

    code: str = "TOLERANCE_EXCEEDED"

    def __init__(
        self,
        field: str,
        attempted: Decimal,
        expected: Decimal,
        min_qty: Decimal,
        max_qty: Decimal | None,
        violation_type: str,
        deviation_pct: Decimal,
        resolved_from: str,
        tolerance_id: UUID | None = None,
    ):
        self.expected = expected
        self.min_qty = min_qty
        self.max_qty = max_qty
        self.violation_type = violation_type
        self.deviation_pct = deviation_pct
        self.resolved_from = resolved_from
        self.tolerance_id = tolerance_id
        upper = "unlimited" if max_qty is None else str(max_qty)
        limit = min_qty if violation_type == "UNDER" else max_qty
        super().__init__(
            f"{field}={attempted} is outside the acceptable range "
            f"[{min_qty}, {upper}] ({violation_type}, tolerance from {resolved_from})",
            field=field,
            attempted=attempted,
            limit=limit,
        )


class InvoiceCeilingExceededError(ConflictError):
    """Invoice quantity would exceed the accepted quantity (3-way match)."""

    code: str = "INVOICE_CEILING_EXCEEDED"

    def __init__(
        self,
        grn_line_id: UUID,
        attempted: Decimal,
        limit: Decimal,
        baseline: str,
    ):
        self.grn_line_id = grn_line_id
        self.baseline = baseline
        super().__init__(
            f"GRN line {grn_line_id}: invoiced quantity {attempted} exceeds "
            f"invoiceable ceiling {limit} ({baseline} baseline)",
            field="invoicedQty",
            attempted=attempted,
            limit=limit,
        )


class InsufficientStockError(ConflictError):
    """Stock movement would drive a warehouse balance negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        available: Decimal,
        requested: Decimal,
    ):
        self.warehouse_id = warehouse_id
        self.product_id = product_id
        super().__init__(
            f"Insufficient stock of {product_id} in warehouse {warehouse_id}: "
            f"available {available}, requested {requested}",
            field="quantity",
            attempted=requested,
            limit=available,
        )


class DuplicateToleranceError(ConflictError):
    """An active setting already exists for the (level, scope) pair."""

    code: str = "DUPLICATE_TOLERANCE"

    def __init__(self, level: str, scope_key: str, existing_id: UUID):
        self.level = level
        self.scope_key = scope_key
        self.existing_id = existing_id
        super().__init__(
            f"Active {level} tolerance for {scope_key} already exists ({existing_id})",
            field="level",
        )


class VersionConflictError(ConflictError):
    """Caller's expected document version is stale."""

    code: str = "VERSION_CONFLICT"

    def __init__(self, document_id: UUID, expected_version: int, actual_version: int):
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Document {document_id}: expected version {expected_version}, "
            f"found {actual_version}",
            field="version",
            attempted=Decimal(expected_version),
            limit=Decimal(actual_version),
        )


class LockContentionError(ConflictError):
    """
    The database refused or aborted a row lock because of a concurrent writer.

    This is the only retryable conflict.
    """

    code: str = "LOCK_CONTENTION"

    def __init__(self, resource: str, resource_id: UUID | None = None, detail: str = ""):
        self.resource = resource
        self.resource_id = resource_id
        self.detail = detail
        super().__init__(
            f"Lock contention on {resource} {resource_id or ''}".rstrip(),
            retryable=True,
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(ErpKernelError):
    """Referenced entity does not exist in the caller's tenant/company."""

    code: str = "NOT_FOUND"
    category: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: UUID, doc_type: str | None = None):
        self.document_id = document_id
        self.doc_type = doc_type
        super().__init__(f"{doc_type or 'Document'} not found: {document_id}")


class DocumentLineNotFoundError(NotFoundError):
    code: str = "DOCUMENT_LINE_NOT_FOUND"

    def __init__(self, line_id: UUID):
        self.line_id = line_id
        super().__init__(f"Document line not found: {line_id}")


class ToleranceNotFoundError(NotFoundError):
    code: str = "TOLERANCE_NOT_FOUND"

    def __init__(self, tolerance_id: UUID):
        self.tolerance_id = tolerance_id
        super().__init__(f"Tolerance setting not found: {tolerance_id}")


class DispositionNotFoundError(NotFoundError):
    code: str = "DISPOSITION_NOT_FOUND"

    def __init__(self, grn_line_id: UUID):
        self.grn_line_id = grn_line_id
        super().__init__(f"No disposition record for GRN line {grn_line_id}")


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


# =============================================================================
# Internal
# =============================================================================


class InternalError(ErpKernelError):
    """Unexpected failure; the action was rolled back."""

    code: str = "INTERNAL_ERROR"
    category: str = "INTERNAL_ERROR"


class PersistenceError(InternalError):
    """Database failure that is neither a lock conflict nor a constraint we map."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


class WorkflowConfigurationError(InternalError):
    """A workflow is malformed, lacks guard evaluators, or was never registered."""

    code: str = "WORKFLOW_CONFIGURATION"

    def __init__(self, doc_type: str, detail: str):
        self.doc_type = doc_type
        self.detail = detail
        super().__init__(f"Workflow for {doc_type}: {detail}")
