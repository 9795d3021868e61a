"""
erp_services.state_machine -- Document lifecycle execution.

Responsibility:
    Creates documents in their workflow's initial status and applies
    actions to them: locate the edge for (status, action), evaluate its
    guard, run the caller's ledger/stock effect, then move the status and
    bump the version -- all inside the caller's transaction.

Architecture position:
    Services layer.  May import from erp_engines/ and erp_kernel/.  Module
    services own the Session and the commit; this executor only flushes.

Invariants enforced:
    - Status only moves along declared edges; the first candidate edge
      whose guard passes wins; when none passes, the last refusal is raised.
    - The header row is locked for the whole action, so two concurrent
      actions on one document serialize and the loser sees the new status.
    - Status change, ledger deltas and stock moves share one transaction:
      an effect that raises leaves the status untouched.
    - A terminal status has no outgoing edges (checked at registration).
    - An action carrying a known idempotency key replays the stored result
      without re-running guards or effects.
    - A caller that re-sends the action it just committed, with the version
      it read before, gets the current snapshot back instead of a conflict.

Failure modes:
    - DocumentNotFoundError, InvalidTransitionError, GuardRejectedError,
      VersionConflictError, IdempotencyKeyMismatchError, plus whatever the
      effect raises.
    - WorkflowConfigurationError for a malformed or unregistered workflow.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.context import RequestContext
from erp_kernel.domain.dtos import DocumentSnapshot, TransitionResult
from erp_kernel.domain.workflow import Guard, Transition, Workflow
from erp_kernel.exceptions import (
    DocumentNotFoundError,
    GuardRejectedError,
    InvalidTransitionError,
    PersistenceError,
    VersionConflictError,
    WorkflowConfigurationError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.models.document import DocumentHeader, DocumentLine
from erp_kernel.services.base import translate_db_errors
from erp_kernel.services.idempotency_store import IdempotencyStore
from erp_kernel.services.sequence_service import SequenceService
from erp_kernel.utils.idempotency import validate_idempotency_key

logger = get_logger("services.state_machine")

OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_NO_TRANSITION = "no_transition"


# ---------------------------------------------------------------------------
# Guard evaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GuardVerdict:
    passed: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> GuardVerdict:
        return cls(True)

    @classmethod
    def fail(cls, reason: str) -> GuardVerdict:
        return cls(False, reason)


@dataclass(frozen=True)
class GuardContext:
    """What a guard may look at: the locked document and the request."""
    document: DocumentSnapshot
    payload: Mapping[str, Any]
    ctx: RequestContext

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


GuardFn = Callable[[GuardContext], "GuardVerdict | bool"]


class GuardExecutor:
    """Evaluates workflow guards by name.

    Guards are declared on transitions (name + description); the module
    that owns a workflow registers the matching evaluator here.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, GuardFn] = {}

    def register(self, guard_name: str, evaluator: GuardFn) -> None:
        self._evaluators[guard_name] = evaluator

    def has(self, guard_name: str) -> bool:
        return guard_name in self._evaluators

    def evaluate(self, guard: Guard, context: GuardContext) -> GuardVerdict:
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return GuardVerdict.fail(f"no evaluator registered for {guard.name}")
        verdict = fn(context)
        if isinstance(verdict, bool):
            return GuardVerdict(verdict, "" if verdict else guard.description)
        return verdict


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass
class EffectContext:
    """Handed to an action's effect after the edge is chosen.

    ``header`` is the locked ORM row; the effect changes quantities only
    through the ledger and stock services, never by assigning columns.
    """
    session: Session
    ctx: RequestContext
    header: DocumentHeader
    transition: Transition
    payload: Mapping[str, Any]
    notes: dict[str, Any] = field(default_factory=dict)

    @property
    def lines(self) -> list[DocumentLine]:
        return sorted(self.header.lines, key=lambda ln: ln.line_no)


Effect = Callable[[EffectContext], None]


def _emit_transition_trace(
    workflow: Workflow,
    action: str,
    document_id: UUID,
    from_state: str,
    outcome: str,
    duration_ms: float,
    to_state: str | None = None,
    reason: str = "",
    mutates_stock: bool = False,
) -> None:
    extra: dict[str, Any] = {
        "workflow": workflow.name,
        "doc_type": workflow.doc_type,
        "action": action,
        "entity_id": str(document_id),
        "from_state": from_state,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
        "mutates_stock": mutates_stock,
    }
    if to_state is not None:
        extra["to_state"] = to_state
    if reason:
        extra["reason"] = reason
    extra.update(LogContext.get_all())
    if outcome == OUTCOME_SUCCESS:
        logger.info("transition_committed", extra=extra)
    else:
        logger.info("transition_refused", extra=extra)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class DocumentStateMachine:
    """
    Table-driven document lifecycle executor.

    Usage:
        machine = DocumentStateMachine(session, guards)
        machine.register(PURCHASE_ORDER_WORKFLOW)
        doc = machine.create(ctx, "PURCHASE_ORDER", prefix="PO", lines=[...])
        result = machine.transition(ctx, doc.id, "confirm")
    """

    def __init__(
        self,
        session: Session,
        guards: GuardExecutor | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._guards = guards or GuardExecutor()
        self._clock = clock or SystemClock()
        self._workflows: dict[str, Workflow] = {}
        self._idempotency = IdempotencyStore(session, self._clock)
        self._sequences = SequenceService(session)

    @property
    def guards(self) -> GuardExecutor:
        return self._guards

    def register(self, workflow: Workflow) -> None:
        """Add a workflow after checking its graph and guard evaluators."""
        problems = workflow.problems()
        if problems:
            raise WorkflowConfigurationError(
                workflow.doc_type, f"{workflow.name} is malformed: {'; '.join(problems)}"
            )
        missing = [g.name for g in workflow.guards if not self._guards.has(g.name)]
        if missing:
            raise WorkflowConfigurationError(
                workflow.doc_type,
                f"{workflow.name} uses guards without evaluators: {', '.join(missing)}",
            )
        self._workflows[workflow.doc_type] = workflow

    def workflow_for(self, doc_type: str) -> Workflow:
        try:
            return self._workflows[doc_type]
        except KeyError:
            raise WorkflowConfigurationError(doc_type, "no workflow registered") from None

    # -- creation -----------------------------------------------------------

    def create(
        self,
        ctx: RequestContext,
        doc_type: str,
        *,
        prefix: str,
        lines: Iterable[Mapping[str, Any]],
        parent_refs: Iterable[UUID] = (),
        counterparty_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        dest_warehouse_id: UUID | None = None,
        notes: str | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> DocumentHeader:
        """
        Insert a header in the workflow's initial status with its lines.

        ``lines`` are DocumentLine column values; ``line_no`` is assigned
        in order.  Returns the flushed ORM row for further use inside the
        same transaction.
        """
        workflow = self.workflow_for(doc_type)
        header = DocumentHeader(
            id=uuid4(),
            tenant_id=ctx.tenant_id,
            company_id=ctx.company_id,
            doc_type=doc_type,
            doc_number=self._sequences.next_number(ctx.tenant_id, ctx.company_id, prefix),
            status=workflow.initial_state,
            version=0,
            is_terminal=False,
            parent_refs=[str(p) for p in parent_refs],
            counterparty_id=counterparty_id,
            warehouse_id=warehouse_id,
            dest_warehouse_id=dest_warehouse_id,
            notes=notes,
            attributes=dict(attributes or {}),
            status_changed_at=self._clock.now(),
            created_by_id=ctx.actor_id,
        )
        for number, values in enumerate(lines, start=1):
            header.lines.append(
                DocumentLine(id=uuid4(), line_no=number, created_by_id=ctx.actor_id, **values)
            )
        self._session.add(header)
        try:
            with translate_db_errors("document", header.id):
                self._session.flush()
        except IntegrityError as exc:
            raise PersistenceError("document create", str(exc.orig)) from exc

        logger.info(
            "document_created",
            extra={
                "document_id": str(header.id),
                "doc_type": doc_type,
                "doc_number": header.doc_number,
                "status": header.status,
                "line_count": len(header.lines),
            },
        )
        return header

    # -- transitions --------------------------------------------------------

    def lock_header(
        self, ctx: RequestContext, document_id: UUID, doc_type: str | None = None
    ) -> DocumentHeader:
        with translate_db_errors("document", document_id):
            header = self._session.execute(
                select(DocumentHeader)
                .where(
                    DocumentHeader.id == document_id,
                    DocumentHeader.tenant_id == ctx.tenant_id,
                    DocumentHeader.company_id == ctx.company_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if header is None or (doc_type is not None and header.doc_type != doc_type):
            raise DocumentNotFoundError(document_id, doc_type)
        return header

    def transition(
        self,
        ctx: RequestContext,
        document_id: UUID,
        action: str,
        payload: Mapping[str, Any] | None = None,
        *,
        doc_type: str | None = None,
        idempotency_key: str | None = None,
        expected_version: int | None = None,
        effect: Effect | None = None,
    ) -> TransitionResult:
        """
        Apply ``action`` to a document.

        Preconditions: called inside the owning module's transaction.
        Postconditions: on success the header carries the new status,
            ``version + 1`` and ``last_action``, and the effect's ledger
            and stock changes are flushed with it.
        """
        payload = payload or {}
        start = time.monotonic()
        if idempotency_key is not None:
            validate_idempotency_key(idempotency_key)
            stored = self._idempotency.lookup(ctx, idempotency_key, document_id, action)
            if stored is not None:
                return self._replayed(stored, document_id, action)

        header = self.lock_header(ctx, document_id, doc_type)
        workflow = self.workflow_for(header.doc_type)
        from_state = header.status

        # A concurrent duplicate may have committed while we waited on the lock.
        if idempotency_key is not None:
            stored = self._idempotency.lookup(ctx, idempotency_key, document_id, action)
            if stored is not None:
                return self._replayed(stored, document_id, action)

        if expected_version is not None and expected_version != header.version:
            if expected_version == header.version - 1 and header.last_action == action:
                logger.info(
                    "idempotent_replay",
                    extra={"document_id": str(document_id), "action": action, "via": "version"},
                )
                return TransitionResult(
                    document=header.to_dto(),
                    action=action,
                    from_status=header.previous_status or header.status,
                    to_status=header.status,
                    replayed=True,
                )
            raise VersionConflictError(document_id, expected_version, header.version)

        candidates = workflow.candidates(from_state, action)
        if not candidates:
            _emit_transition_trace(
                workflow, action, document_id, from_state, OUTCOME_NO_TRANSITION,
                (time.monotonic() - start) * 1000,
            )
            raise InvalidTransitionError(header.doc_type, document_id, from_state, action)

        chosen, rejection = self._select(workflow, candidates, header, payload, ctx)
        if chosen is None:
            guard_name, reason = rejection
            _emit_transition_trace(
                workflow, action, document_id, from_state, OUTCOME_GUARD_FAILED,
                (time.monotonic() - start) * 1000, reason=reason,
            )
            raise GuardRejectedError(
                header.doc_type, document_id, from_state, action, guard_name, reason
            )

        if effect is not None:
            effect(EffectContext(self._session, ctx, header, chosen, payload))

        header.previous_status = from_state
        header.status = chosen.to_state
        header.is_terminal = workflow.is_terminal(chosen.to_state)
        header.version += 1
        header.last_action = action
        header.status_changed_at = self._clock.now()
        header.updated_by_id = ctx.actor_id
        with translate_db_errors("document", document_id):
            self._session.flush()

        result = TransitionResult(
            document=header.to_dto(),
            action=action,
            from_status=from_state,
            to_status=chosen.to_state,
        )
        if idempotency_key is not None:
            self._idempotency.record(ctx, idempotency_key, document_id, action, result.to_record())

        _emit_transition_trace(
            workflow, action, document_id, from_state, OUTCOME_SUCCESS,
            (time.monotonic() - start) * 1000,
            to_state=chosen.to_state,
            mutates_stock=chosen.mutates_stock,
        )
        return result

    def _select(
        self,
        workflow: Workflow,
        candidates: tuple[Transition, ...],
        header: DocumentHeader,
        payload: Mapping[str, Any],
        ctx: RequestContext,
    ) -> tuple[Transition | None, tuple[str, str]]:
        guard_ctx = GuardContext(document=header.to_dto(), payload=payload, ctx=ctx)
        # Later edges are fallbacks, so the last refusal is the decisive one.
        rejection: tuple[str, str] = ("", "")
        for candidate in candidates:
            if candidate.guard is None:
                return candidate, ("", "")
            verdict = self._guards.evaluate(candidate.guard, guard_ctx)
            if verdict.passed:
                return candidate, ("", "")
            rejection = (candidate.guard.name, verdict.reason)
        return None, rejection

    def _replayed(self, stored: dict[str, Any], document_id: UUID, action: str) -> TransitionResult:
        logger.info(
            "idempotent_replay",
            extra={"document_id": str(document_id), "action": action, "via": "key"},
        )
        return TransitionResult.from_record(stored, replayed=True)
