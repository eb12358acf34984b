"""
Invoice ORM Models (``billing_modules.invoicing.orm``).

Responsibility
--------------
SQLAlchemy persistence model for invoices.  Maps the frozen ``Invoice``
dataclass to the ``invoices`` table.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``ledger_kernel``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class InvoiceModel(TrackedBase):
    """
    ORM model for rental invoices.

    Guarantees:
        - invoice_number is unique per owner (uq_invoices_owner_number).
        - one invoice per (rental_id, period_start) (uq_invoices_rental_period).
        - amount_due > 0 and period_end >= period_start at the database level.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("owner_id", "invoice_number", name="uq_invoices_owner_number"),
        UniqueConstraint("rental_id", "period_start", name="uq_invoices_rental_period"),
        CheckConstraint("amount_due > 0", name="ck_invoices_amount_due_positive"),
        CheckConstraint("amount_paid >= 0", name="ck_invoices_amount_paid_non_negative"),
        CheckConstraint("period_end >= period_start", name="ck_invoices_period_order"),
        Index("idx_invoices_owner_status", "owner_id", "status"),
        Index("idx_invoices_rental_id", "rental_id"),
        Index("idx_invoices_due_date", "due_date"),
    )

    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    rental_id: Mapped[UUID] = mapped_column(ForeignKey("rentals.id"), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    late_fee_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    is_final: Mapped[bool] = mapped_column(Boolean, default=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.invoicing.models import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            owner_id=self.owner_id,
            customer_id=self.customer_id,
            rental_id=self.rental_id,
            invoice_number=self.invoice_number,
            period_start=self.period_start,
            period_end=self.period_end,
            amount_due=self.amount_due,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            amount_paid=self.amount_paid,
            late_fee_amount=self.late_fee_amount,
            is_final=self.is_final,
            sent_at=self.sent_at,
            paid_at=self.paid_at,
            cancelled_at=self.cancelled_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "InvoiceModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            owner_id=dto.owner_id,
            customer_id=dto.customer_id,
            rental_id=dto.rental_id,
            invoice_number=dto.invoice_number,
            period_start=dto.period_start,
            period_end=dto.period_end,
            amount_due=dto.amount_due,
            amount_paid=dto.amount_paid,
            late_fee_amount=dto.late_fee_amount,
            due_date=dto.due_date,
            status=dto.status.value,
            is_final=dto.is_final,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} [{self.status}] {self.amount_due}>"
