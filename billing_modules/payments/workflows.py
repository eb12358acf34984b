"""
Payment Workflows.

State machine for payments reported by the payment capture service.
"""

from ledger_kernel.domain.workflow import Guard, Transition, Workflow
from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.payments.workflows")


NOT_YET_APPLIED = Guard(
    name="not_yet_applied",
    description="Payment id has not been applied to its invoice",
)

PREVIOUSLY_APPLIED = Guard(
    name="previously_applied",
    description="Payment was applied and has not been reversed",
)


PAYMENT_WORKFLOW = Workflow(
    name="rental_payment",
    description="Payment capture and refund lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "completed",
        "failed",
        "refunded",
    ),
    transitions=(
        Transition("pending", "completed", action="complete", guard=NOT_YET_APPLIED, posts_entry=True),
        Transition("pending", "failed", action="fail"),
        Transition("completed", "refunded", action="refund", guard=PREVIOUSLY_APPLIED, posts_entry=True),
    ),
    terminal_states=("failed", "refunded"),
)

logger.info(
    "payment_workflow_registered",
    extra={
        "workflow_name": PAYMENT_WORKFLOW.name,
        "state_count": len(PAYMENT_WORKFLOW.states),
        "transition_count": len(PAYMENT_WORKFLOW.transitions),
        "initial_state": PAYMENT_WORKFLOW.initial_state,
    },
)
