"""
Inventory Workflows.

Stock transfers, inventory adjustments and stock opname (physical count).
"""

from erp_kernel.domain.values import DocumentType
from erp_kernel.domain.workflow import Guard, Transition, Workflow
from erp_kernel.logging_config import get_logger
from erp_services.state_machine import GuardContext, GuardExecutor, GuardVerdict

logger = get_logger("modules.inventory.workflows")


ALL_LINES_COUNTED = Guard(
    name="opname_all_lines_counted",
    description="Every opname line has a counted quantity",
)


def _all_lines_counted(context: GuardContext) -> GuardVerdict:
    missing = [ln.line_no for ln in context.document.lines if ln.counted_qty is None]
    if missing:
        return GuardVerdict.fail(f"line(s) {missing} not counted")
    return GuardVerdict.ok()


def register_guards(executor: GuardExecutor) -> None:
    executor.register(ALL_LINES_COUNTED.name, _all_lines_counted)


STOCK_TRANSFER_WORKFLOW = Workflow(
    name="stock_transfer",
    doc_type=DocumentType.STOCK_TRANSFER.value,
    description="Move stock between two warehouses",
    initial_state="DRAFT",
    states=("DRAFT", "SHIPPED", "RECEIVED", "CANCELLED"),
    transitions=(
        Transition("DRAFT", "SHIPPED", action="ship", mutates_stock=True),
        Transition("SHIPPED", "RECEIVED", action="receive", mutates_stock=True),
        Transition("DRAFT", "CANCELLED", action="cancel"),
        Transition("SHIPPED", "CANCELLED", action="cancel", mutates_stock=True),
    ),
    terminal_states=("RECEIVED", "CANCELLED"),
)

INVENTORY_ADJUSTMENT_WORKFLOW = Workflow(
    name="inventory_adjustment",
    doc_type=DocumentType.INVENTORY_ADJUSTMENT.value,
    description="Manual stock correction with a reason per line",
    initial_state="DRAFT",
    states=("DRAFT", "APPROVED", "CANCELLED"),
    transitions=(
        Transition("DRAFT", "APPROVED", action="approve", mutates_stock=True),
        Transition("DRAFT", "CANCELLED", action="cancel"),
    ),
    terminal_states=("APPROVED", "CANCELLED"),
)

STOCK_OPNAME_WORKFLOW = Workflow(
    name="stock_opname",
    doc_type=DocumentType.STOCK_OPNAME.value,
    description="Physical count reconciled against system stock",
    initial_state="DRAFT",
    states=("DRAFT", "IN_PROGRESS", "COMPLETED", "APPROVED", "CANCELLED"),
    transitions=(
        Transition("DRAFT", "IN_PROGRESS", action="start"),
        Transition("IN_PROGRESS", "COMPLETED", action="complete", guard=ALL_LINES_COUNTED),
        Transition("COMPLETED", "APPROVED", action="approve", mutates_stock=True),
        Transition("DRAFT", "CANCELLED", action="cancel"),
        Transition("IN_PROGRESS", "CANCELLED", action="cancel"),
        Transition("COMPLETED", "CANCELLED", action="cancel"),
    ),
    terminal_states=("APPROVED", "CANCELLED"),
)

INVENTORY_WORKFLOWS = (
    STOCK_TRANSFER_WORKFLOW,
    INVENTORY_ADJUSTMENT_WORKFLOW,
    STOCK_OPNAME_WORKFLOW,
)

for _wf in INVENTORY_WORKFLOWS:
    logger.info(
        "inventory_workflow_registered",
        extra={
            "workflow_name": _wf.name,
            "state_count": len(_wf.states),
            "transition_count": len(_wf.transitions),
        },
    )
