"""
Invoice Domain Models (``billing_modules.invoicing.models``).

Responsibility
--------------
Frozen dataclass value objects for rental invoices.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* period_end >= period_start.
* amount_due > 0; amount_paid >= 0 (may exceed amount_due through
  overpayment); 0 <= late_fee_amount <= amount_due.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.invoicing.models")


class InvoiceStatus(Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# Statuses whose amount_due has been accrued to the ledger and not reversed.
ISSUED_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE})

# Statuses that accept payments.
PAYABLE_STATUSES = ISSUED_STATUSES


@dataclass(frozen=True)
class Invoice:
    """One invoice for one billing window of a rental."""
    id: UUID
    owner_id: UUID
    customer_id: UUID
    rental_id: UUID
    invoice_number: str
    period_start: date
    period_end: date
    amount_due: Decimal
    due_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    amount_paid: Decimal = Decimal("0")
    late_fee_amount: Decimal = Decimal("0")
    is_final: bool = False
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None

    def __post_init__(self):
        problems = []
        if self.period_end < self.period_start:
            problems.append("period_end cannot precede period_start")
        if self.amount_due <= 0:
            problems.append("amount_due must be positive")
        if self.amount_paid < 0:
            problems.append("amount_paid cannot be negative")
        if self.late_fee_amount < 0 or self.late_fee_amount > self.amount_due:
            problems.append("late_fee_amount must be between 0 and amount_due")

        if problems:
            logger.warning(
                "invoice_invalid",
                extra={"invoice_id": str(self.id), "problems": problems},
            )
            raise ValueError("; ".join(problems))

    @property
    def rent_amount(self) -> Decimal:
        return self.amount_due - self.late_fee_amount

    @property
    def outstanding(self) -> Decimal:
        """Amount still owed; zero once fully covered."""
        return max(self.amount_due - self.amount_paid, Decimal("0"))

    @property
    def overpaid_by(self) -> Decimal:
        return max(self.amount_paid - self.amount_due, Decimal("0"))

    @property
    def is_issued(self) -> bool:
        return self.status in ISSUED_STATUSES
