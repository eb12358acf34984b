"""
Payment immutability listener tests.

Settled payments are financial records: completed rows may only be
stamped as applied or moved to refunded; failed and refunded rows are
frozen; no payment is ever deleted.
"""

from decimal import Decimal

import pytest

from billing_modules.payments.models import PaymentStatus
from billing_modules.payments.orm import register_payment_listeners, unregister_payment_listeners
from ledger_kernel.exceptions import ImmutabilityViolationError


class TestPaymentImmutability:

    def test_pending_payment_is_mutable(self, session, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"), status=PaymentStatus.PENDING)

        payment.amount = Decimal("12.00")
        payment.status = PaymentStatus.COMPLETED.value
        session.flush()

        assert payment.status == "completed"

    def test_completed_amount_frozen(self, session, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"))

        payment.amount = Decimal("99.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_completed_cannot_fail(self, session, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"))

        payment.status = PaymentStatus.FAILED.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_completed_may_be_refunded(self, session, clock, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"))

        payment.status = PaymentStatus.REFUNDED.value
        payment.refunded_at = clock.now()
        session.flush()

        assert payment.status == "refunded"

    def test_refunded_is_frozen(self, session, clock, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"))
        payment.status = PaymentStatus.REFUNDED.value
        payment.refunded_at = clock.now()
        session.flush()

        payment.notes = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_failed_is_frozen(self, session, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"), status=PaymentStatus.FAILED)

        payment.status = PaymentStatus.COMPLETED.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, sent_invoice, add_payment):
        payment = add_payment(sent_invoice(), Decimal("10.00"))

        session.delete(payment)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


def test_unregistered_listeners_allow_correction(session, sent_invoice, add_payment):
    payment = add_payment(sent_invoice(), Decimal("10.00"))

    unregister_payment_listeners()
    try:
        payment.amount = Decimal("11.00")
        session.flush()
    finally:
        register_payment_listeners()

    payment.amount = Decimal("12.00")
    with pytest.raises(ImmutabilityViolationError):
        session.flush()
