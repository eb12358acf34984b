"""
Fixtures for module-level tests.

Module services never commit; these fixtures drive them directly on the
shared ``session`` fixture.
"""

from uuid import uuid4

import pytest

from billing_modules.invoicing.generator import InvoiceGenerator
from billing_modules.invoicing.issuance import InvoiceIssuer
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.payments.models import Payment, PaymentStatus
from billing_modules.payments.orm import PaymentModel
from billing_modules.payments.reconciler import PaymentReconciler
from billing_modules.rentals.lifecycle import RentalLifecycle
from ledger_kernel.services.ledger_recorder import LedgerRecorder


@pytest.fixture
def generator(session, clock):
    return InvoiceGenerator(session, clock)


@pytest.fixture
def lifecycle(session, clock, generator):
    return RentalLifecycle(session, clock, generator)


@pytest.fixture
def recorder(session, clock):
    return LedgerRecorder(session, clock)


@pytest.fixture
def issuer(session, clock, recorder):
    return InvoiceIssuer(session, clock, recorder)


@pytest.fixture
def reconciler(session, clock, recorder):
    return PaymentReconciler(session, clock, recorder)


@pytest.fixture
def activate(lifecycle, make_rental, owner_id, actor_id):
    """Factory: create, submit and activate a rental; returns the LifecycleOutcome."""

    def _activate(**overrides):
        rental = lifecycle.create(make_rental(**overrides), actor_id)
        lifecycle.submit_for_signature(owner_id, rental.id, actor_id)
        return lifecycle.activate(owner_id, rental.id, actor_id, signature_confirmed=True)

    return _activate


@pytest.fixture
def sent_invoice(session, activate, issuer, actor_id):
    """Factory: an activated rental's first invoice, sent. Returns the InvoiceModel."""

    def _sent(**overrides) -> InvoiceModel:
        outcome = activate(**overrides)
        model = session.get(InvoiceModel, outcome.invoices[0].invoice.id)
        issuer.send(model, actor_id)
        return model

    return _sent


@pytest.fixture
def add_payment(session, actor_id):
    """Factory: persist a payment row against an invoice model."""

    def _add(invoice: InvoiceModel, amount, status=PaymentStatus.COMPLETED, processed_at=None) -> PaymentModel:
        payment = Payment(
            id=uuid4(),
            owner_id=invoice.owner_id,
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            amount=amount,
            status=status,
            processed_at=processed_at,
        )
        model = PaymentModel.from_dto(payment, created_by_id=actor_id)
        session.add(model)
        session.flush()
        return model

    return _add
