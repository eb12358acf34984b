"""
Kernel Invariants Contract.

These invariants are structural law for the billing core.  No
configuration value may switch them off.

This module exists solely to declare them explicitly.  Enforcement is
distributed across LedgerRecorder, the immutability listeners,
SequenceService, the Payment Reconciler and the unique constraints on the
invoice and ledger tables.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel and modules."""

    APPEND_ONLY = "append_only"
    """Ledger entries are never updated or deleted.  Enforced by ORM
    listeners (ledger_kernel.db.immutability)."""

    POSITIVE_AMOUNT = "positive_amount"
    """Every ledger entry amount is > 0; sign is carried by type and
    direction.  Enforced by LedgerRecorder and a check constraint."""

    SCOPED_ENTRY = "scoped_entry"
    """Every ledger entry references a facility, customer or rental."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Ledger sequences are strictly monotonic.  Enforced by
    SequenceService with a locked counter row."""

    ONE_INVOICE_PER_PERIOD = "one_invoice_per_period"
    """(rental_id, period_start) is unique.  Generation is idempotent."""

    PAYMENT_IDEMPOTENCY = "payment_idempotency"
    """A payment id moves money at most once per direction.  Enforced by
    the reconciler and the ledger idempotency_key unique constraint."""

    LEDGER_RECONCILES = "ledger_reconciles"
    """A rental's ledger balance equals its open receivable computed from
    invoices and payments."""


# All invariants as a frozenset for programmatic checks.
ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_import_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "billing_services",
    "billing_config",
    "billing_modules",
)
