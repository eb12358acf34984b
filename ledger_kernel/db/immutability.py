"""
ORM-level immutability enforcement for append-only records.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity       | Immutable when        | Why
-------------|-----------------------|------------------------------------------
LedgerEntry  | ALWAYS (from insert)  | The ledger is the audit trail; corrections
             |                       | are new adjustment entries, never edits

Module-owned records register their own listeners (payments register theirs
in billing_modules.payments.orm).

===============================================================================
USAGE
===============================================================================

Called once at startup (the Billing Orchestrator does it on construction):

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import LedgerEntryModel

logger = get_logger("db.immutability")


def _check_ledger_entry_update(mapper, connection, target):
    """Reject every UPDATE of a ledger entry."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerEntry",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="ledger entries are append-only",
    )


def _check_ledger_entry_delete(mapper, connection, target):
    """Reject every DELETE of a ledger entry."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="ledger entries cannot be deleted",
    )


_LISTENERS = (
    (LedgerEntryModel, "before_update", _check_ledger_entry_update),
    (LedgerEntryModel, "before_delete", _check_ledger_entry_delete),
)


def register_immutability_listeners() -> None:
    """Register all kernel immutability listeners (idempotent)."""
    for target, name, fn in _LISTENERS:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove kernel immutability listeners. FOR TESTING ONLY."""
    for target, name, fn in _LISTENERS:
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
