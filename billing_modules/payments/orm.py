"""
Payment ORM Models (``billing_modules.payments.orm``).

Responsibility
--------------
SQLAlchemy persistence model for payments and the listener that freezes a
payment once it has completed.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``ledger_kernel``.

Invariants enforced
-------------------
* A completed payment is immutable except for the refund transition
  (status -> refunded, refunded_at) and the one-time ``applied_at`` stamp.
* A refunded or failed payment is immutable.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, event, inspect
from sqlalchemy.orm.attributes import get_history
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.payments.orm")


class PaymentModel(TrackedBase):
    """
    ORM model for payments.

    Guarantees:
        - amount > 0 at the database level.
        - invoice_id FK to invoices.id.
    """

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("idx_payments_owner_status", "owner_id", "status"),
        Index("idx_payments_invoice_id", "invoice_id"),
        Index("idx_payments_transaction_id", "transaction_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    payment_method_id: Mapped[UUID | None] = mapped_column(nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.payments.models import Payment, PaymentStatus

        return Payment(
            id=self.id,
            owner_id=self.owner_id,
            invoice_id=self.invoice_id,
            customer_id=self.customer_id,
            amount=self.amount,
            status=PaymentStatus(self.status),
            payment_method_id=self.payment_method_id,
            transaction_id=self.transaction_id,
            notes=self.notes,
            processed_at=self.processed_at,
            applied_at=self.applied_at,
            refunded_at=self.refunded_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PaymentModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            owner_id=dto.owner_id,
            invoice_id=dto.invoice_id,
            customer_id=dto.customer_id,
            amount=dto.amount,
            status=dto.status.value,
            payment_method_id=dto.payment_method_id,
            transaction_id=dto.transaction_id,
            notes=dto.notes,
            processed_at=dto.processed_at,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id} [{self.status}] {self.amount}>"


# ---------------------------------------------------------------------------
# Immutability
# ---------------------------------------------------------------------------

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_REFUND_FIELDS = frozenset({"status", "refunded_at"})


def _blocked(target, field_name: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Payment",
            "entity_id": str(target.id),
            "operation": "UPDATE",
            "field": field_name,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Payment",
        entity_id=str(target.id),
        reason=reason,
    )


def _check_payment_update(mapper, connection, target):
    """
    Freeze settled payments.

    The status the row had *before* this flush decides what may change:
    pending rows are free; completed rows may only be refunded or stamped
    with applied_at once; failed and refunded rows are frozen.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    else:
        previous = target.status

    if previous == "pending":
        return

    if previous == "completed":
        if status_history.added and status_history.added[0] != "refunded":
            _blocked(target, "status", f"completed payment cannot become '{status_history.added[0]}'")
        for attr in inspect(target).attrs:
            if attr.key in _AUDIT_FIELDS or attr.key in _REFUND_FIELDS:
                continue
            hist = attr.history
            if not hist.has_changes():
                continue
            if attr.key == "applied_at" and not any(hist.deleted):
                continue
            _blocked(target, attr.key, f"cannot modify '{attr.key}' on completed payment")
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(target, attr.key, f"cannot modify '{attr.key}' on {previous} payment")


def _check_payment_delete(mapper, connection, target):
    """Payments are never deleted by business logic."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Payment",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Payment",
        entity_id=str(target.id),
        reason="payments cannot be deleted",
    )


_LISTENERS = (
    (PaymentModel, "before_update", _check_payment_update),
    (PaymentModel, "before_delete", _check_payment_delete),
)


def register_payment_listeners() -> None:
    """Register payment immutability listeners (idempotent)."""
    for target, name, fn in _LISTENERS:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
    logger.debug("payment_listeners_registered")


def unregister_payment_listeners() -> None:
    """Remove payment immutability listeners. FOR TESTING ONLY."""
    for target, name, fn in _LISTENERS:
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
