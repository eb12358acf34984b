"""
Payment Domain Models (``billing_modules.payments.models``).

Responsibility
--------------
Frozen dataclass value objects for payments received against invoices,
the webhook event shape, and the reconciler's application result.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.payments.models")


class PaymentStatus(Enum):
    """Payment processing states."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class Payment:
    """A receipt applied to exactly one invoice."""
    id: UUID
    owner_id: UUID
    invoice_id: UUID
    customer_id: UUID
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method_id: UUID | None = None
    transaction_id: str | None = None
    notes: str | None = None
    processed_at: datetime | None = None
    applied_at: datetime | None = None
    refunded_at: datetime | None = None

    def __post_init__(self):
        if self.amount <= 0:
            logger.warning(
                "payment_invalid_amount",
                extra={"payment_id": str(self.id), "amount": str(self.amount)},
            )
            raise ValueError("Payment amount must be positive")


@dataclass(frozen=True)
class PaymentApplication:
    """
    Outcome of applying or reversing one payment.

    ``warnings`` carries ``OverpaymentDetected`` instances; they are
    reported, never raised.
    """
    payment_id: UUID
    invoice_id: UUID
    amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    invoice_status: str
    ledger_entry_id: UUID
    settled: bool = False
    reopened: bool = False
    warnings: tuple = field(default_factory=tuple)
