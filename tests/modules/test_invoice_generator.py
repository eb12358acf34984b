"""
InvoiceGenerator tests.

Covers one-invoice-per-period idempotency, catch-up generation, the flat
late fee and invoice numbering.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from billing_modules.invoicing.calculations import billing_period
from billing_modules.invoicing.generator import InvoiceGenerator
from billing_modules.invoicing.models import InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.rentals.models import RentalStatus
from billing_modules.rentals.orm import RentalModel
from ledger_kernel.exceptions import ValidationError


def _invoice_count(session, rental_id) -> int:
    return session.execute(
        select(func.count()).select_from(InvoiceModel).where(InvoiceModel.rental_id == rental_id)
    ).scalar_one()


class TestOneInvoicePerPeriod:

    def test_regenerating_period_returns_existing(self, session, activate, generator, actor_id):
        outcome = activate()
        rental = outcome.rental

        again = generator.generate(rental, billing_period(rental.start_date, 0), actor_id)

        assert not again.created
        assert again.invoice.id == outcome.invoices[0].invoice.id
        assert _invoice_count(session, rental.id) == 1

    def test_generate_due_catches_up(self, session, activate, generator, actor_id):
        rental = activate().rental

        created = generator.generate_due(rental, as_of=date(2024, 4, 1), actor_id=actor_id)

        assert [g.invoice.period_start for g in created] == [
            date(2024, 2, 1),
            date(2024, 3, 1),
            date(2024, 4, 1),
        ]
        assert all(g.created for g in created)
        assert _invoice_count(session, rental.id) == 4

    def test_generate_due_is_idempotent(self, session, activate, generator, actor_id):
        rental = activate().rental
        generator.generate_due(rental, as_of=date(2024, 3, 1), actor_id=actor_id)

        assert generator.generate_due(rental, as_of=date(2024, 3, 1), actor_id=actor_id) == []
        assert _invoice_count(session, rental.id) == 3

    def test_periods_follow_month_end_anchor(self, activate, generator, actor_id):
        rental = activate(start_date=date(2024, 1, 31)).rental

        created = generator.generate_due(rental, as_of=date(2024, 3, 31), actor_id=actor_id)

        periods = [(g.invoice.period_start, g.invoice.period_end) for g in created]
        assert periods == [
            (date(2024, 2, 29), date(2024, 3, 30)),
            (date(2024, 3, 31), date(2024, 4, 29)),
        ]


class TestLateFee:

    def test_flat_fee_for_unpaid_issued_invoice(self, session, sent_invoice, generator, actor_id):
        first = sent_invoice(late_fee_rate=Decimal("0.05"))

        rental = session.get(RentalModel, first.rental_id).to_dto()
        (feb,) = generator.generate_due(rental, as_of=date(2024, 2, 1), actor_id=actor_id)

        assert feb.invoice.late_fee_amount == Decimal("5.00")
        assert feb.invoice.amount_due == Decimal("105.00")

    def test_catch_up_without_issuing_leaves_drafts_out(self, session, sent_invoice, generator, actor_id):
        first = sent_invoice(late_fee_rate=Decimal("0.05"))

        rental = session.get(RentalModel, first.rental_id).to_dto()
        created = generator.generate_due(rental, as_of=date(2024, 3, 1), actor_id=actor_id)

        # Feb stays a draft, so only Jan counts against March.
        feb, mar = (g.invoice for g in created)
        assert feb.late_fee_amount == Decimal("5.00")
        assert mar.late_fee_amount == Decimal("5.00")

    def test_catch_up_matches_monthly_runs(self, session, sent_invoice, generator, issuer, actor_id):
        first = sent_invoice(late_fee_rate=Decimal("0.05"))
        rental = session.get(RentalModel, first.rental_id).to_dto()

        created = generator.generate_due(
            rental,
            as_of=date(2024, 3, 1),
            actor_id=actor_id,
            issue=lambda model: issuer.send(model, actor_id),
        )

        # Jan and Feb are both short on Mar 1; each is charged once for March.
        feb, mar = (g.invoice for g in created)
        assert feb.status == InvoiceStatus.SENT
        assert feb.late_fee_amount == Decimal("5.00")
        assert mar.late_fee_amount == Decimal("10.00")
        assert mar.amount_due == Decimal("110.00")

    def test_paid_invoice_stops_counting(
        self, session, sent_invoice, generator, issuer, reconciler, add_payment, actor_id
    ):
        first = sent_invoice(late_fee_rate=Decimal("0.05"))
        rental = session.get(RentalModel, first.rental_id).to_dto()

        def send(model):
            issuer.send(model, actor_id)

        (feb,) = generator.generate_due(rental, date(2024, 2, 1), actor_id, issue=send)
        feb_model = session.get(InvoiceModel, feb.invoice.id)
        reconciler.apply(
            add_payment(feb_model, Decimal("105.00"), processed_at=datetime(2024, 2, 10, tzinfo=timezone.utc)),
            actor_id,
        )

        (mar,) = generator.generate_due(rental, date(2024, 3, 1), actor_id, issue=send)

        assert mar.invoice.late_fee_amount == Decimal("5.00")

    def test_late_payment_judged_by_processed_time(
        self, session, sent_invoice, generator, issuer, reconciler, add_payment, actor_id
    ):
        first = sent_invoice(late_fee_rate=Decimal("0.05"))
        reconciler.apply(
            add_payment(first, Decimal("100.00"), processed_at=datetime(2024, 2, 15, tzinfo=timezone.utc)),
            actor_id,
        )
        rental = session.get(RentalModel, first.rental_id).to_dto()

        created = generator.generate_due(
            rental,
            as_of=date(2024, 3, 1),
            actor_id=actor_id,
            issue=lambda model: issuer.send(model, actor_id),
        )

        # Jan was still short on Feb 1 even though the run happens after it was paid.
        feb, mar = (g.invoice for g in created)
        assert feb.late_fee_amount == Decimal("5.00")
        assert mar.late_fee_amount == Decimal("5.00")

    def test_no_fee_when_previous_invoice_is_draft(self, activate, generator, actor_id):
        rental = activate(late_fee_rate=Decimal("0.05")).rental
        (feb,) = generator.generate_due(rental, as_of=date(2024, 2, 1), actor_id=actor_id)
        assert feb.invoice.late_fee_amount == Decimal("0")

    def test_no_fee_without_rate(self, session, sent_invoice, generator, actor_id):
        first = sent_invoice()

        rental = session.get(RentalModel, first.rental_id).to_dto()
        (feb,) = generator.generate_due(rental, as_of=date(2024, 2, 1), actor_id=actor_id)
        assert feb.invoice.amount_due == Decimal("100.00")


class TestGuards:

    def test_inactive_rental_rejected(self, lifecycle, generator, make_rental, actor_id):
        rental = lifecycle.create(make_rental(), actor_id)
        assert rental.status == RentalStatus.DRAFT

        with pytest.raises(ValidationError):
            generator.generate_first(rental, actor_id)


class TestNumbering:

    def test_sequential_numbers_per_owner_month(self, activate, generator, actor_id):
        first = activate().invoices[0].invoice
        second = activate().invoices[0].invoice

        assert first.invoice_number == "INV-202401-0001"
        assert second.invoice_number == "INV-202401-0002"

    def test_numbers_use_current_month(self, session, clock, activate, actor_id):
        rental = activate().rental
        clock.set_date(date(2024, 3, 1))
        generator = InvoiceGenerator(session, clock, invoice_prefix="SS")

        (feb,) = generator.generate_due(rental, as_of=date(2024, 2, 1), actor_id=actor_id)

        assert feb.invoice.invoice_number == "SS-202403-0001"
