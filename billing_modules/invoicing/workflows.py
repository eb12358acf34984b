"""
Invoice Workflows.

State machine for rental invoices.
"""

from ledger_kernel.domain.workflow import Guard, Transition, Workflow
from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.invoicing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

FULLY_COVERED = Guard(
    name="fully_covered",
    description="amount_paid >= amount_due",
)

NO_LONGER_COVERED = Guard(
    name="no_longer_covered",
    description="A refund left amount_paid below amount_due",
)

PAST_DUE_UNPAID = Guard(
    name="past_due_unpaid",
    description="due_date has passed and the invoice is not fully covered",
)

NO_PAYMENTS = Guard(
    name="no_payments",
    description="Nothing has been paid against the invoice",
)

logger.info(
    "invoice_workflow_guards_defined",
    extra={
        "guards": [
            FULLY_COVERED.name,
            NO_LONGER_COVERED.name,
            PAST_DUE_UNPAID.name,
            NO_PAYMENTS.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="rental_invoice",
    description="Rental invoice lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "sent",
        "paid",
        "overdue",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "sent", action="send", posts_entry=True),  # accrual
        Transition("sent", "overdue", action="mark_overdue", guard=PAST_DUE_UNPAID),
        Transition("sent", "paid", action="apply_payment", guard=FULLY_COVERED, posts_entry=True),
        Transition("overdue", "paid", action="apply_payment", guard=FULLY_COVERED, posts_entry=True),
        Transition("paid", "sent", action="refund_payment", guard=NO_LONGER_COVERED, posts_entry=True),
        Transition("draft", "cancelled", action="cancel", guard=NO_PAYMENTS),
        Transition("sent", "cancelled", action="cancel", guard=NO_PAYMENTS, posts_entry=True),  # reversal
        Transition("overdue", "cancelled", action="cancel", guard=NO_PAYMENTS, posts_entry=True),  # reversal
    ),
    terminal_states=("cancelled",),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)
