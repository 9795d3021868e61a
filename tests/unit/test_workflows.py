"""
Workflow tables: every document lifecycle is a well-formed DAG whose guards
all have evaluators.
"""

import pytest

from erp_kernel.domain.workflow import Transition, Workflow
from erp_modules.inventory.workflows import INVENTORY_WORKFLOWS
from erp_modules.inventory.workflows import register_guards as register_inventory_guards
from erp_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PROCUREMENT_WORKFLOWS,
    PURCHASE_ORDER_WORKFLOW,
)
from erp_modules.procurement.workflows import register_guards as register_procurement_guards
from erp_modules.sales.workflows import DELIVERY_WORKFLOW, SALES_ORDER_WORKFLOW, SALES_WORKFLOWS
from erp_modules.sales.workflows import register_guards as register_sales_guards
from erp_services.state_machine import GuardExecutor

ALL_WORKFLOWS = PROCUREMENT_WORKFLOWS + SALES_WORKFLOWS + INVENTORY_WORKFLOWS


@pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.name)
def test_workflow_is_well_formed(workflow):
    assert workflow.problems() == []


@pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.name)
def test_terminal_states_have_no_exits(workflow):
    for state in workflow.terminal_states:
        assert workflow.actions_from(state) == ()


def test_every_guard_has_an_evaluator():
    executor = GuardExecutor()
    register_procurement_guards(executor)
    register_sales_guards(executor, lookups=None)
    register_inventory_guards(executor)
    for workflow in ALL_WORKFLOWS:
        for guard in workflow.guards:
            assert executor.has(guard.name), guard.name


def test_doc_types_are_unique():
    doc_types = [wf.doc_type for wf in ALL_WORKFLOWS]
    assert len(doc_types) == len(set(doc_types)) == 8


def test_sales_order_cancellable_from_every_open_state():
    open_states = set(SALES_ORDER_WORKFLOW.states) - set(SALES_ORDER_WORKFLOW.terminal_states)
    for state in open_states:
        assert "cancel" in SALES_ORDER_WORKFLOW.actions_from(state)


def test_sales_order_cancel_waits_for_deliveries_in_transit():
    for state in SALES_ORDER_WORKFLOW.states:
        for edge in SALES_ORDER_WORKFLOW.candidates(state, "cancel"):
            assert edge.guard.name == "so_no_delivery_in_transit"


def test_delivery_ship_and_transit_cancel_need_open_order():
    (ship,) = DELIVERY_WORKFLOW.candidates("PREPARED", "ship")
    (cancel,) = DELIVERY_WORKFLOW.candidates("IN_TRANSIT", "cancel")
    assert ship.guard.name == cancel.guard.name == "delivery_order_open"
    (prepared_cancel,) = DELIVERY_WORKFLOW.candidates("PREPARED", "cancel")
    assert prepared_cancel.guard is None


def test_goods_receipt_accept_prefers_clean_route():
    routes = GOODS_RECEIPT_WORKFLOW.candidates("INSPECTED", "accept")
    assert [t.to_state for t in routes] == ["ACCEPTED", "PARTIAL"]
    assert all(t.mutates_stock for t in routes)


def test_purchase_order_complete_is_guarded():
    (edge,) = PURCHASE_ORDER_WORKFLOW.candidates("CONFIRMED", "complete")
    assert edge.guard is not None


class TestMalformedWorkflows:

    def _wf(self, transitions, terminal=("DONE",), states=("NEW", "DONE")):
        return Workflow(
            name="sketch", doc_type="SKETCH", description="", initial_state="NEW",
            states=states, transitions=transitions, terminal_states=terminal,
        )

    def test_cycle_detected(self):
        wf = self._wf(
            (
                Transition("NEW", "MID", "go"),
                Transition("MID", "NEW", "back"),
                Transition("MID", "DONE", "finish"),
            ),
            states=("NEW", "MID", "DONE"),
        )
        assert "transition graph contains a cycle" in wf.problems()
        with pytest.raises(ValueError):
            wf.check()

    def test_exit_from_terminal_detected(self):
        wf = self._wf((Transition("NEW", "DONE", "go"), Transition("DONE", "NEW", "reopen")))
        assert any("leaves terminal state" in p for p in wf.problems())

    def test_unreachable_state_detected(self):
        wf = self._wf((Transition("NEW", "DONE", "go"),), states=("NEW", "DONE", "LOST"))
        assert "state LOST is unreachable" in wf.problems()
