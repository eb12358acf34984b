"""
Billing read side (``billing_services.reporting``).

Responsibility:
    Owner-scoped read-only queries over rentals, invoices and payments, the
    open-receivable figure the ledger is reconciled against, and the
    owner's financial summary.

Invariants enforced:
    - Read-only: no add, flush, delete or commit.
    - Every query filters on owner_id; another owner's rows are invisible.
    - Results are frozen DTOs, never ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billing_modules.invoicing.models import ISSUED_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.payments.models import Payment, PaymentStatus
from billing_modules.payments.orm import PaymentModel
from billing_modules.rentals.models import Rental, RentalStatus
from billing_modules.rentals.orm import RentalModel
from ledger_kernel.db.types import ZERO
from ledger_kernel.exceptions import EntityNotFoundError
from ledger_kernel.models.ledger_entry import LedgerEntryType
from ledger_kernel.selectors.ledger_selector import LedgerFilter, LedgerSelector


@dataclass(frozen=True)
class FinancialSummary:
    """Owner-level totals for a date range."""

    owner_id: UUID
    currency: str
    invoice_count: int
    total_due: Decimal
    total_paid: Decimal
    outstanding: Decimal
    income: Decimal
    expenses: Decimal
    invoices_by_status: dict[str, int] = field(default_factory=dict)

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


def _day_bounds(date_from: date | None, date_to: date | None):
    start = (
        datetime.combine(date_from, time.min, tzinfo=timezone.utc)
        if date_from is not None
        else None
    )
    end = (
        datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        if date_to is not None
        else None
    )
    return start, end


class BillingReportSelector:
    """
    Read-only billing queries.

    Usage:
        reports = BillingReportSelector(session)
        open_invoices = reports.list_invoices(owner_id, statuses=(InvoiceStatus.OVERDUE,))
    """

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Rentals
    # =========================================================================

    def get_rental(self, owner_id: UUID, rental_id: UUID) -> Rental:
        model = self.session.execute(
            select(RentalModel).where(
                RentalModel.id == rental_id, RentalModel.owner_id == owner_id
            )
        ).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundError("Rental", str(rental_id))
        return model.to_dto()

    def rental_ids(self, owner_id: UUID, status: RentalStatus | None = None) -> list[UUID]:
        stmt = select(RentalModel.id).where(RentalModel.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(RentalModel.status == status.value)
        return list(self.session.execute(stmt.order_by(RentalModel.start_date, RentalModel.id)).scalars())

    def list_rentals(self, owner_id: UUID, status: RentalStatus | None = None) -> list[Rental]:
        stmt = select(RentalModel).where(RentalModel.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(RentalModel.status == status.value)
        stmt = stmt.order_by(RentalModel.start_date, RentalModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Invoices
    # =========================================================================

    def get_invoice(self, owner_id: UUID, invoice_id: UUID) -> Invoice:
        model = self.session.execute(
            select(InvoiceModel).where(
                InvoiceModel.id == invoice_id, InvoiceModel.owner_id == owner_id
            )
        ).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundError("Invoice", str(invoice_id))
        return model.to_dto()

    def list_invoices(
        self,
        owner_id: UUID,
        rental_id: UUID | None = None,
        statuses: tuple[InvoiceStatus, ...] = (),
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Invoice]:
        """Invoices ordered by period_start; the date range filters on due_date."""
        stmt = select(InvoiceModel).where(InvoiceModel.owner_id == owner_id)
        if rental_id is not None:
            stmt = stmt.where(InvoiceModel.rental_id == rental_id)
        if statuses:
            stmt = stmt.where(InvoiceModel.status.in_([s.value for s in statuses]))
        if date_from is not None:
            stmt = stmt.where(InvoiceModel.due_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(InvoiceModel.due_date <= date_to)
        stmt = stmt.order_by(InvoiceModel.period_start, InvoiceModel.invoice_number)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def invoice_status_counts(self, owner_id: UUID) -> dict[str, int]:
        rows = self.session.execute(
            select(InvoiceModel.status, func.count())
            .where(InvoiceModel.owner_id == owner_id)
            .group_by(InvoiceModel.status)
        ).all()
        return {status: count for status, count in rows}

    def open_receivable(self, owner_id: UUID, rental_id: UUID) -> Decimal:
        """
        sum(amount_due - amount_paid) over the rental's issued invoices.

        Overpaid invoices contribute a negative amount, matching the
        overpayment entries on the ledger.
        """
        total = self.session.execute(
            select(func.sum(InvoiceModel.amount_due - InvoiceModel.amount_paid)).where(
                InvoiceModel.owner_id == owner_id,
                InvoiceModel.rental_id == rental_id,
                InvoiceModel.status.in_([s.value for s in ISSUED_STATUSES]),
            )
        ).scalar_one_or_none()
        return Decimal(total) if total is not None else ZERO

    # =========================================================================
    # Payments
    # =========================================================================

    def get_payment(self, owner_id: UUID, payment_id: UUID) -> Payment:
        model = self.session.execute(
            select(PaymentModel).where(
                PaymentModel.id == payment_id, PaymentModel.owner_id == owner_id
            )
        ).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundError("Payment", str(payment_id))
        return model.to_dto()

    def list_payments(
        self,
        owner_id: UUID,
        invoice_id: UUID | None = None,
        statuses: tuple[PaymentStatus, ...] = (),
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Payment]:
        """Payments ordered by creation; the date range filters on processed_at."""
        stmt = select(PaymentModel).where(PaymentModel.owner_id == owner_id)
        if invoice_id is not None:
            stmt = stmt.where(PaymentModel.invoice_id == invoice_id)
        if statuses:
            stmt = stmt.where(PaymentModel.status.in_([s.value for s in statuses]))
        start, end = _day_bounds(date_from, date_to)
        if start is not None:
            stmt = stmt.where(PaymentModel.processed_at >= start)
        if end is not None:
            stmt = stmt.where(PaymentModel.processed_at < end)
        stmt = stmt.order_by(PaymentModel.created_at, PaymentModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Summary
    # =========================================================================

    def financial_summary(
        self,
        owner_id: UUID,
        currency: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> FinancialSummary:
        """
        Totals over non-cancelled invoices due in the range and ledger
        entries dated in the range.
        """
        invoices = [
            inv
            for inv in self.list_invoices(owner_id, date_from=date_from, date_to=date_to)
            if inv.status != InvoiceStatus.CANCELLED
        ]
        total_due = sum((inv.amount_due for inv in invoices), ZERO)
        total_paid = sum((inv.amount_paid for inv in invoices), ZERO)

        by_status: dict[str, int] = {}
        for inv in invoices:
            by_status[inv.status.value] = by_status.get(inv.status.value, 0) + 1

        entries = LedgerSelector(self.session).entries(
            owner_id, LedgerFilter(date_from=date_from, date_to=date_to)
        )
        income = sum(
            (e.amount for e in entries if e.entry_type == LedgerEntryType.INCOME), ZERO
        )
        expenses = sum(
            (e.amount for e in entries if e.entry_type == LedgerEntryType.EXPENSE), ZERO
        )

        return FinancialSummary(
            owner_id=owner_id,
            currency=currency,
            invoice_count=len(invoices),
            total_due=total_due,
            total_paid=total_paid,
            outstanding=total_due - total_paid,
            income=income,
            expenses=expenses,
            invoices_by_status=by_status,
        )
