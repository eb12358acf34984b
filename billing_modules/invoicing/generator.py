"""
Invoice Generator (``billing_modules.invoicing.generator``).

Responsibility
--------------
Derives invoices for an active rental's billing periods: one invoice per
(rental_id, period_start), amount_due = rent (prorated for a truncated final
window) + flat late fee, due on period_start, created in ``draft``.

Architecture position
---------------------
**Modules layer** -- imperative shell around the pure functions in
``calculations.py``.  Uses ``SequenceService`` for invoice numbers.  Never
commits; the Billing Orchestrator owns the transaction.

Invariants enforced
-------------------
* ONE_INVOICE_PER_PERIOD -- generating an existing period returns the
  existing invoice; a concurrent insert of the same period surfaces as
  ``ConcurrencyConflict`` so the unit of work is retried.
* Late fees are flat and charged once per overdue invoice per billing
  period: the invoice for a period carries ``late_fee_rate x monthly_rate``
  for every earlier issued invoice that was still short when the period
  began.  "Still short" is judged from payment timestamps, so the fee does
  not depend on when the generator runs.
* Invoice numbers are ``{prefix}-YYYYMM-NNNN`` from a per-owner, per-month
  locked counter.

Failure modes
-------------
* ValidationError -- rental is not active or has no monthly_rate.
* ConcurrencyConflict -- unique constraint race on the period or counter.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from billing_modules.invoicing.calculations import (
    BillingPeriod,
    billing_period,
    late_fee,
    prorate,
)
from billing_modules.invoicing.models import ISSUED_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.payments.orm import PaymentModel
from billing_modules.rentals.models import Rental, RentalStatus
from ledger_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money
from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import ConcurrencyConflict, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("modules.invoicing.generator")


def _utc(value: datetime) -> datetime:
    # Rows added in this session keep the caller's tzinfo until reloaded.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class GeneratedInvoice:
    """An invoice returned by the generator and whether this call created it."""
    invoice: Invoice
    created: bool


class InvoiceGenerator(BaseService):
    """
    Creates billing-period invoices for active rentals.

    Usage:
        generator = InvoiceGenerator(session, clock)
        first = generator.generate_first(rental, actor_id)
        new = generator.generate_due(rental, as_of=date(2024, 3, 1), actor_id=actor_id)
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        invoice_prefix: str = "INV",
        money_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)
        self._prefix = invoice_prefix
        self._places = money_places

    # =========================================================================
    # Queries
    # =========================================================================

    def find_for_period(self, rental_id: UUID, period_start: date) -> InvoiceModel | None:
        return self.session.execute(
            select(InvoiceModel).where(
                InvoiceModel.rental_id == rental_id,
                InvoiceModel.period_start == period_start,
            )
        ).scalar_one_or_none()

    def last_invoiced_period_end(self, rental_id: UUID) -> date | None:
        """Latest period_end over the rental's non-cancelled invoices."""
        return self.session.execute(
            select(func.max(InvoiceModel.period_end)).where(
                InvoiceModel.rental_id == rental_id,
                InvoiceModel.status != InvoiceStatus.CANCELLED.value,
            )
        ).scalar_one_or_none()

    def _paid_at(self, invoice_id: UUID, instant: datetime) -> Decimal:
        """Applied payments minus refunds recorded before ``instant``, floored at 0."""
        paid = ZERO
        payments = self.session.execute(
            select(PaymentModel).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.applied_at.is_not(None),
            )
        ).scalars()
        for payment in payments:
            if _utc(payment.processed_at or payment.applied_at) < instant:
                paid += payment.amount
            if payment.refunded_at is not None and _utc(payment.refunded_at) < instant:
                paid -= payment.amount
        return max(paid, ZERO)

    def overdue_at(self, rental_id: UUID, period_start: date) -> list[InvoiceModel]:
        """
        Issued invoices due before ``period_start`` that were still short of
        amount_due at the start of that day (UTC).
        """
        instant = datetime.combine(period_start, time.min, tzinfo=timezone.utc)
        candidates = self.session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.rental_id == rental_id,
                InvoiceModel.status.in_([s.value for s in ISSUED_STATUSES]),
                InvoiceModel.due_date < period_start,
            )
            .order_by(InvoiceModel.due_date)
        ).scalars().all()
        return [inv for inv in candidates if self._paid_at(inv.id, instant) < inv.amount_due]

    # =========================================================================
    # Generation
    # =========================================================================

    def _next_invoice_number(self, owner_id: UUID) -> str:
        today = self.clock.today()
        value = self._sequences.next_value(
            SequenceService.invoice_sequence_name(owner_id, today.year, today.month)
        )
        return f"{self._prefix}-{today.year:04d}{today.month:02d}-{value:04d}"

    def generate(
        self,
        rental: Rental,
        period: BillingPeriod,
        actor_id: UUID,
        window_end: date | None = None,
        is_final: bool = False,
    ) -> GeneratedInvoice:
        """
        Create the invoice for ``period`` (or return the existing one).

        Args:
            window_end: Truncates the period for a prorated final invoice.
            is_final: Marks the invoice as the rental's last.
        """
        if rental.status != RentalStatus.ACTIVE:
            logger.warning(
                "invoice_generation_rejected",
                extra={
                    "rental_id": str(rental.id),
                    "expected_status": RentalStatus.ACTIVE.value,
                    "actual_status": rental.status.value,
                },
            )
            raise ValidationError(
                f"Invoices are generated only for active rentals; "
                f"rental {rental.id} is {rental.status.value}",
                entity_type="Rental",
                entity_id=str(rental.id),
                fields=("status",),
            )
        if rental.monthly_rate is None or rental.customer_id is None:
            raise ValidationError(
                f"Rental {rental.id} has no monthly_rate or customer",
                entity_type="Rental",
                entity_id=str(rental.id),
                fields=("monthly_rate", "customer_id"),
            )

        existing = self.find_for_period(rental.id, period.start)
        if existing is not None:
            logger.debug(
                "invoice_period_exists",
                extra={
                    "rental_id": str(rental.id),
                    "period_start": period.start,
                    "invoice_number": existing.invoice_number,
                },
            )
            return GeneratedInvoice(invoice=existing.to_dto(), created=False)

        period_end = period.end
        if window_end is not None and window_end < period.end:
            rent = prorate(rental.monthly_rate, period, window_end, self._places)
            period_end = window_end
        else:
            rent = round_money(rental.monthly_rate, self._places)

        overdue = self.overdue_at(rental.id, period.start)
        fee = late_fee(rental.monthly_rate, rental.late_fee_rate, len(overdue), self._places)

        try:
            invoice = Invoice(
                id=uuid4(),
                owner_id=rental.owner_id,
                customer_id=rental.customer_id,
                rental_id=rental.id,
                invoice_number=self._next_invoice_number(rental.owner_id),
                period_start=period.start,
                period_end=period_end,
                amount_due=rent + fee,
                late_fee_amount=fee,
                due_date=period.start,
                status=InvoiceStatus.DRAFT,
                is_final=is_final,
            )
        except ValueError as exc:
            raise ValidationError(
                f"Rental {rental.id} cannot be invoiced for {period.start}: {exc}",
                entity_type="Rental",
                entity_id=str(rental.id),
                fields=("monthly_rate",),
            ) from exc

        self.session.add(InvoiceModel.from_dto(invoice, created_by_id=actor_id))
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.info(
                "invoice_period_insert_race",
                extra={"rental_id": str(rental.id), "period_start": period.start},
            )
            raise ConcurrencyConflict("Invoice", f"{rental.id}:{period.start}") from exc

        logger.info(
            "invoice_generated",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "rental_id": str(rental.id),
                "period_start": invoice.period_start,
                "period_end": invoice.period_end,
                "amount_due": str(invoice.amount_due),
                "late_fee_amount": str(fee),
                "overdue_invoices": len(overdue),
                "is_final": is_final,
            },
        )
        return GeneratedInvoice(invoice=invoice, created=True)

    def generate_first(self, rental: Rental, actor_id: UUID) -> GeneratedInvoice:
        """Invoice for period 0, truncated at end_date for a short fixed term."""
        period = billing_period(rental.start_date, 0)
        if rental.has_fixed_term and rental.end_date <= period.end:
            return self.generate(
                rental, period, actor_id, window_end=rental.end_date, is_final=True
            )
        return self.generate(rental, period, actor_id)

    def generate_due(
        self,
        rental: Rental,
        as_of: date,
        actor_id: UUID,
        cutoff: date | None = None,
        issue: Callable[[InvoiceModel], Any] | None = None,
    ) -> list[GeneratedInvoice]:
        """
        Create every missing period with period_start <= as_of.

        ``cutoff`` (termination effective date or fixed-term end_date) stops
        generation: no period starting after it is billed, and the period
        containing it is prorated to end on it and flagged final.

        ``issue`` is called with each created invoice due by ``as_of`` before
        the next period is generated, so a catch-up run sees the same
        issued invoices (and late fees) as one run per period would.

        Returns only the invoices created by this call.
        """
        limit = as_of if cutoff is None else min(as_of, cutoff)
        existing = set(
            self.session.execute(
                select(InvoiceModel.period_start).where(
                    InvoiceModel.rental_id == rental.id
                )
            ).scalars()
        )

        created: list[GeneratedInvoice] = []
        index = 0
        while True:
            period = billing_period(rental.start_date, index)
            if period.start > limit:
                break
            index += 1
            if period.start in existing:
                continue
            is_final = cutoff is not None and period.contains(cutoff)
            window_end = cutoff if is_final else None
            result = self.generate(
                rental, period, actor_id, window_end=window_end, is_final=is_final
            )
            if not result.created:
                continue
            if issue is not None and result.invoice.due_date <= as_of:
                model = self.session.get(InvoiceModel, result.invoice.id)
                issue(model)
                result = replace(result, invoice=model.to_dto())
            created.append(result)

        if created:
            logger.info(
                "invoices_generated_through",
                extra={
                    "rental_id": str(rental.id),
                    "as_of": as_of,
                    "cutoff": cutoff,
                    "count": len(created),
                },
            )
        return created
