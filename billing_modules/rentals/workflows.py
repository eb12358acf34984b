"""
Rental Workflows.

State machine for the rental agreement lifecycle.
"""

from ledger_kernel.domain.workflow import Guard, Transition, Workflow
from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.rentals.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

FIELDS_COMPLETE = Guard(
    name="fields_complete",
    description="Customer, unit, rate and (when required) insurance are set",
)

SIGNATURE_CONFIRMED = Guard(
    name="signature_confirmed",
    description="Signature provider reports a completed signature",
)

EFFECTIVE_AFTER_LAST_PERIOD = Guard(
    name="effective_after_last_period",
    description="Termination date is on or after the last invoiced period end",
)

END_DATE_REACHED = Guard(
    name="end_date_reached",
    description="Fixed-term rental reached end_date without auto-renewal",
)

logger.info(
    "rental_workflow_guards_defined",
    extra={
        "guards": [
            FIELDS_COMPLETE.name,
            SIGNATURE_CONFIRMED.name,
            EFFECTIVE_AFTER_LAST_PERIOD.name,
            END_DATE_REACHED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Rental Workflow
# -----------------------------------------------------------------------------

RENTAL_WORKFLOW = Workflow(
    name="rental",
    description="Customer-unit rental agreement lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending_signature",
        "active",
        "terminated",
        "expired",
    ),
    transitions=(
        Transition("draft", "pending_signature", action="submit_for_signature", guard=FIELDS_COMPLETE),
        Transition("pending_signature", "active", action="activate", guard=SIGNATURE_CONFIRMED),
        Transition("active", "terminated", action="terminate", guard=EFFECTIVE_AFTER_LAST_PERIOD),
        Transition("active", "expired", action="expire", guard=END_DATE_REACHED),
    ),
    terminal_states=("terminated", "expired"),
)

logger.info(
    "rental_workflow_registered",
    extra={
        "workflow_name": RENTAL_WORKFLOW.name,
        "state_count": len(RENTAL_WORKFLOW.states),
        "transition_count": len(RENTAL_WORKFLOW.transitions),
        "initial_state": RENTAL_WORKFLOW.initial_state,
    },
)
