"""
DocumentStateMachine: declared edges only, guards, atomic effects,
idempotency-key and stale-version replay, transition trace logging.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_kernel.domain.values import QuantityField
from erp_kernel.domain.workflow import Guard, Transition, Workflow
from erp_kernel.exceptions import (
    DocumentNotFoundError,
    GuardRejectedError,
    IdempotencyKeyMismatchError,
    InvalidIdempotencyKeyError,
    InvalidTransitionError,
    QuantityInvariantError,
    VersionConflictError,
    WorkflowConfigurationError,
)
from erp_kernel.services.quantity_ledger import QuantityLedger
from erp_modules.procurement.workflows import (
    PURCHASE_ORDER_WORKFLOW,
    register_guards,
)
from erp_services.state_machine import (
    DocumentStateMachine,
    GuardContext,
    GuardExecutor,
    GuardVerdict,
)

PO = PURCHASE_ORDER_WORKFLOW.doc_type
KEY = "client-key-0001-confirm"


@pytest.fixture
def machine(session, deterministic_clock):
    guards = GuardExecutor()
    register_guards(guards)
    m = DocumentStateMachine(session, guards, deterministic_clock)
    m.register(PURCHASE_ORDER_WORKFLOW)
    return m


@pytest.fixture
def draft(machine, session, ctx, products):
    header = machine.create(
        ctx, PO, prefix="PO",
        lines=[{"product_id": products["cola"].product_id, "ordered_qty": Decimal("10")}],
    )
    session.commit()
    return header


class TestCreate:

    def test_initial_status_and_number(self, draft):
        dto = draft.to_dto()
        assert dto.status == "DRAFT"
        assert dto.version == 0
        assert dto.doc_number.startswith("PO-")
        assert [ln.line_no for ln in dto.lines] == [1]

    def test_numbers_are_sequential(self, machine, session, ctx, products, draft):
        second = machine.create(
            ctx, PO, prefix="PO",
            lines=[{"product_id": products["cola"].product_id, "ordered_qty": Decimal("1")}],
        )
        assert second.doc_number > draft.doc_number

    def test_unregistered_doc_type(self, machine, ctx):
        with pytest.raises(WorkflowConfigurationError) as exc_info:
            machine.create(ctx, "SALES_ORDER", prefix="SO", lines=[])
        assert exc_info.value.doc_type == "SALES_ORDER"
        assert exc_info.value.category == "INTERNAL_ERROR"


class TestTransitions:

    def test_confirm(self, machine, session, ctx, draft):
        result = machine.transition(ctx, draft.id, "confirm")
        session.commit()
        assert (result.from_status, result.to_status) == ("DRAFT", "CONFIRMED")
        assert result.document.version == 1
        assert result.document.last_action == "confirm"
        assert result.replayed is False

    def test_undeclared_action(self, machine, ctx, draft):
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(ctx, draft.id, "complete")
        assert exc_info.value.status == "DRAFT"
        assert exc_info.value.action == "complete"

    def test_terminal_has_no_exits(self, machine, session, ctx, draft):
        machine.transition(ctx, draft.id, "cancel")
        session.commit()
        with pytest.raises(InvalidTransitionError):
            machine.transition(ctx, draft.id, "confirm")

    def test_guard_rejection_carries_reason(self, machine, session, ctx, draft):
        machine.transition(ctx, draft.id, "confirm")
        session.commit()
        with pytest.raises(GuardRejectedError) as exc_info:
            machine.transition(ctx, draft.id, "complete")
        assert exc_info.value.guard == "po_all_lines_received"
        assert "forceClose" in exc_info.value.reason

    def test_guard_reads_payload(self, machine, session, ctx, draft):
        machine.transition(ctx, draft.id, "confirm")
        result = machine.transition(
            ctx, draft.id, "complete", {"forceClose": True, "reason": "discontinued"}
        )
        assert result.to_status == "COMPLETED"

    def test_failing_effect_leaves_status(self, machine, session, ctx, draft):
        line_id = draft.lines[0].id

        def effect(ec):
            QuantityLedger(ec.session).apply_delta(line_id, QuantityField.RECEIVED, "-1")

        with pytest.raises(QuantityInvariantError):
            machine.transition(ctx, draft.id, "confirm", effect=effect)
        session.rollback()

        header = machine.lock_header(ctx, draft.id)
        assert header.status == "DRAFT"
        assert header.version == 0

    def test_wrong_doc_type_is_not_found(self, machine, ctx, draft):
        with pytest.raises(DocumentNotFoundError):
            machine.transition(ctx, draft.id, "confirm", doc_type="GOODS_RECEIPT")

    def test_other_company_is_not_found(self, machine, other_company_ctx, draft):
        with pytest.raises(DocumentNotFoundError):
            machine.transition(other_company_ctx, draft.id, "confirm")


class TestReplay:

    def test_same_key_replays(self, machine, session, ctx, draft):
        first = machine.transition(ctx, draft.id, "confirm", idempotency_key=KEY)
        session.commit()
        again = machine.transition(ctx, draft.id, "confirm", idempotency_key=KEY)
        assert again.replayed is True
        assert again.document.version == first.document.version == 1
        assert again.to_status == "CONFIRMED"

    def test_key_bound_to_document_and_action(self, machine, session, ctx, draft):
        machine.transition(ctx, draft.id, "confirm", idempotency_key=KEY)
        session.commit()
        with pytest.raises(IdempotencyKeyMismatchError):
            machine.transition(ctx, draft.id, "cancel", idempotency_key=KEY)
        with pytest.raises(IdempotencyKeyMismatchError):
            machine.transition(ctx, uuid4(), "confirm", idempotency_key=KEY)

    def test_malformed_key(self, machine, ctx, draft):
        with pytest.raises(InvalidIdempotencyKeyError):
            machine.transition(ctx, draft.id, "confirm", idempotency_key="short")

    def test_stale_version_same_action_replays(self, machine, session, ctx, draft):
        machine.transition(ctx, draft.id, "confirm", expected_version=0)
        session.commit()
        again = machine.transition(ctx, draft.id, "confirm", expected_version=0)
        assert again.replayed is True
        assert (again.from_status, again.to_status) == ("DRAFT", "CONFIRMED")

    def test_stale_version_other_action_conflicts(self, machine, session, ctx, draft):
        machine.transition(ctx, draft.id, "confirm", expected_version=0)
        session.commit()
        with pytest.raises(VersionConflictError) as exc_info:
            machine.transition(ctx, draft.id, "cancel", expected_version=0)
        assert exc_info.value.actual_version == 1


class TestRegistration:

    def test_missing_evaluator_refused(self, session):
        machine = DocumentStateMachine(session, GuardExecutor())
        with pytest.raises(WorkflowConfigurationError, match="without evaluators") as exc_info:
            machine.register(PURCHASE_ORDER_WORKFLOW)
        assert exc_info.value.code == "WORKFLOW_CONFIGURATION"

    def test_malformed_workflow_refused(self, session):
        looped = Workflow(
            name="looped", doc_type="LOOPED", description="", initial_state="A",
            states=("A", "B"),
            transitions=(Transition("A", "B", "go"), Transition("B", "A", "back")),
            terminal_states=(),
        )
        with pytest.raises(WorkflowConfigurationError, match="cycle"):
            DocumentStateMachine(session).register(looped)

    def test_fallback_refusal_is_reported(self, session, ctx, products):
        forked = Workflow(
            name="forked", doc_type="FORKED", description="", initial_state="OPEN",
            states=("OPEN", "CLEAN", "ROUGH"),
            transitions=(
                Transition("OPEN", "CLEAN", "close", guard=Guard("clean", "spotless")),
                Transition("OPEN", "ROUGH", "close", guard=Guard("rough", "something to close")),
            ),
            terminal_states=("CLEAN", "ROUGH"),
        )
        executor = GuardExecutor()
        executor.register("clean", lambda gc: False)
        executor.register("rough", lambda gc: GuardVerdict.fail("nothing to close"))
        machine = DocumentStateMachine(session, executor)
        machine.register(forked)
        header = machine.create(
            ctx, "FORKED", prefix="FK",
            lines=[{"product_id": products["cola"].product_id, "ordered_qty": Decimal("1")}],
        )
        with pytest.raises(GuardRejectedError) as exc_info:
            machine.transition(ctx, header.id, "close")
        assert exc_info.value.guard == "rough"
        assert exc_info.value.reason == "nothing to close"

    def test_bool_guard_uses_description(self, session, ctx, draft):
        guard = Guard(name="never", description="never allowed")
        executor = GuardExecutor()
        executor.register("never", lambda gc: False)
        verdict = executor.evaluate(
            guard, GuardContext(document=draft.to_dto(), payload={}, ctx=ctx)
        )
        assert verdict.passed is False
        assert verdict.reason == "never allowed"


class TestTrace:

    def test_success_trace(self, machine, ctx, draft, captured_logs):
        machine.transition(ctx, draft.id, "confirm")
        (trace,) = [r for r in captured_logs() if r["message"] == "transition_committed"]
        assert trace["workflow"] == "purchase_order"
        assert trace["from_state"] == "DRAFT"
        assert trace["to_state"] == "CONFIRMED"
        assert trace["outcome"] == "success"

    def test_refusal_trace(self, machine, ctx, draft, captured_logs):
        with pytest.raises(InvalidTransitionError):
            machine.transition(ctx, draft.id, "complete")
        refused = [r for r in captured_logs() if r["message"] == "transition_refused"]
        assert refused[-1]["outcome"] == "no_transition"

    def test_key_replay_logged(self, machine, session, ctx, draft, captured_logs):
        machine.transition(ctx, draft.id, "confirm", idempotency_key=KEY)
        session.commit()
        machine.transition(ctx, draft.id, "confirm", idempotency_key=KEY)
        replays = [r for r in captured_logs() if r["message"] == "idempotent_replay"]
        assert replays[-1]["via"] == "key"
