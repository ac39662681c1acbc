"""
Purchasing Workflows.

State machines for requisition and purchase order processing.  Lifecycle
services call ``require_transition`` against these before every status
change.
"""

from supply_kernel.domain.workflow import Guard, Transition, Workflow
from supply_kernel.logging_config import get_logger
from supply_modules.purchasing.models import PurchaseOrderStatus as PO
from supply_modules.purchasing.models import RequisitionStatus as RQ

logger = get_logger("modules.purchasing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

PROOF_OF_SEND = Guard(
    name="proof_of_send",
    description="Recipient address (EMAIL) or proof note (MANUAL) supplied",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every line has received quantity >= ordered quantity",
)

CANCELLABLE = Guard(
    name="cancellable",
    description="Nothing received yet and actor holds the administrative role",
)

logger.info(
    "purchasing_workflow_guards_defined",
    extra={
        "guards": [
            PROOF_OF_SEND.name,
            ALL_LINES_RECEIVED.name,
            CANCELLABLE.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Requisition Workflow
# -----------------------------------------------------------------------------

REQUISITION_WORKFLOW = Workflow(
    name="requisition",
    description="Purchase requisition lifecycle",
    initial_state=RQ.DRAFT.value,
    states=tuple(s.value for s in RQ),
    transitions=(
        Transition(RQ.DRAFT.value, RQ.SUBMITTED.value, action="submit"),
        Transition(RQ.SUBMITTED.value, RQ.APPROVED.value, action="approve"),
        Transition(RQ.SUBMITTED.value, RQ.REJECTED.value, action="reject"),
        Transition(RQ.APPROVED.value, RQ.ORDERED.value, action="order"),
        Transition(RQ.ORDERED.value, RQ.CLOSED.value, action="close"),
    ),
    terminal_states=(RQ.REJECTED.value, RQ.CLOSED.value),
)

logger.info(
    "purchasing_requisition_workflow_registered",
    extra={
        "workflow_name": REQUISITION_WORKFLOW.name,
        "state_count": len(REQUISITION_WORKFLOW.states),
        "transition_count": len(REQUISITION_WORKFLOW.transitions),
        "initial_state": REQUISITION_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state=PO.DRAFT.value,
    states=tuple(s.value for s in PO),
    transitions=(
        Transition(PO.DRAFT.value, PO.SENT.value, action="send", guard=PROOF_OF_SEND),
        Transition(PO.SENT.value, PO.CONFIRMED.value, action="confirm"),
        Transition(PO.SENT.value, PO.PARTIAL.value, action="receive"),
        Transition(PO.SENT.value, PO.RECEIVED.value, action="receive", guard=ALL_LINES_RECEIVED),
        Transition(PO.CONFIRMED.value, PO.PARTIAL.value, action="receive"),
        Transition(PO.CONFIRMED.value, PO.RECEIVED.value, action="receive", guard=ALL_LINES_RECEIVED),
        Transition(PO.PARTIAL.value, PO.PARTIAL.value, action="receive"),
        Transition(PO.PARTIAL.value, PO.RECEIVED.value, action="receive", guard=ALL_LINES_RECEIVED),
        Transition(PO.DRAFT.value, PO.CANCELLED.value, action="cancel", guard=CANCELLABLE),
        Transition(PO.SENT.value, PO.CANCELLED.value, action="cancel", guard=CANCELLABLE),
        Transition(PO.CONFIRMED.value, PO.CANCELLED.value, action="cancel", guard=CANCELLABLE),
    ),
    terminal_states=(PO.RECEIVED.value, PO.CANCELLED.value),
)

logger.info(
    "purchasing_po_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)
