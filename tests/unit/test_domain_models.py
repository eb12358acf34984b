"""
Unit tests for the frozen rental, invoice and payment DTOs.

Verifies constructor-time validation and derived properties.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_modules.invoicing.models import Invoice, InvoiceStatus
from billing_modules.payments.models import Payment
from billing_modules.rentals.models import Rental, RentalStatus


def _rental(**overrides):
    fields = {
        "id": uuid4(),
        "owner_id": uuid4(),
        "start_date": date(2024, 1, 1),
        "customer_id": uuid4(),
        "unit_id": uuid4(),
        "monthly_rate": Decimal("100"),
    }
    fields.update(overrides)
    return Rental(**fields)


def _invoice(**overrides):
    fields = {
        "id": uuid4(),
        "owner_id": uuid4(),
        "customer_id": uuid4(),
        "rental_id": uuid4(),
        "invoice_number": "INV-202401-0001",
        "period_start": date(2024, 1, 1),
        "period_end": date(2024, 1, 31),
        "amount_due": Decimal("100.00"),
        "due_date": date(2024, 1, 1),
    }
    fields.update(overrides)
    return Invoice(**fields)


class TestRental:

    @pytest.mark.parametrize(
        "overrides",
        [
            {"monthly_rate": Decimal("0")},
            {"monthly_rate": Decimal("-5")},
            {"monthly_rate": Decimal("0.004")},
            {"security_deposit": Decimal("-1")},
            {"late_fee_rate": Decimal("-0.01")},
            {"end_date": date(2023, 12, 31)},
        ],
    )
    def test_invalid_terms_rejected(self, overrides):
        with pytest.raises(ValueError):
            _rental(**overrides)

    def test_half_cent_rate_rounds_up_to_a_cent(self):
        assert _rental(monthly_rate=Decimal("0.005")).monthly_rate == Decimal("0.005")

    def test_draft_may_be_incomplete(self):
        rental = _rental(customer_id=None, unit_id=None, monthly_rate=None)
        assert rental.missing_fields() == ("customer_id", "unit_id", "monthly_rate")

    def test_insurance_fields_required_when_insured(self):
        rental = _rental(insurance_required=True, insurance_provider="Acme")
        assert rental.missing_fields() == ("insurance_policy_number",)

    def test_fixed_term(self):
        assert _rental(end_date=date(2024, 6, 30)).has_fixed_term
        assert not _rental(end_date=date(2024, 6, 30), auto_renew=True).has_fixed_term
        assert not _rental().has_fixed_term

    def test_terminal(self):
        assert _rental(status=RentalStatus.EXPIRED).is_terminal
        assert not _rental(status=RentalStatus.ACTIVE).is_terminal


class TestInvoice:

    def test_outstanding(self):
        invoice = _invoice(amount_paid=Decimal("60.00"), status=InvoiceStatus.SENT)
        assert invoice.outstanding == Decimal("40.00")

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValueError):
            _invoice(amount_due=Decimal("0"))

    def test_negative_paid_rejected(self):
        with pytest.raises(ValueError):
            _invoice(amount_paid=Decimal("-1"))

    def test_period_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            _invoice(period_end=date(2023, 12, 31))

    def test_rent_excludes_late_fee(self):
        invoice = _invoice(amount_due=Decimal("105.00"), late_fee_amount=Decimal("5.00"))
        assert invoice.rent_amount == Decimal("100.00")

    def test_late_fee_above_amount_due_rejected(self):
        with pytest.raises(ValueError):
            _invoice(late_fee_amount=Decimal("100.01"))

    def test_overpaid_by(self):
        invoice = _invoice(amount_paid=Decimal("120.00"), status=InvoiceStatus.PAID)
        assert invoice.overpaid_by == Decimal("20.00")
        assert invoice.outstanding == Decimal("0")
        assert _invoice().overpaid_by == Decimal("0")

    @pytest.mark.parametrize(
        "status, issued",
        [
            (InvoiceStatus.DRAFT, False),
            (InvoiceStatus.SENT, True),
            (InvoiceStatus.OVERDUE, True),
            (InvoiceStatus.PAID, True),
            (InvoiceStatus.CANCELLED, False),
        ],
    )
    def test_is_issued(self, status, issued):
        assert _invoice(status=status).is_issued is issued


class TestPayment:

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValueError):
            Payment(
                id=uuid4(),
                owner_id=uuid4(),
                invoice_id=uuid4(),
                customer_id=uuid4(),
                amount=amount,
            )
