"""
Fixtures for orchestrator-level tests.
"""

from uuid import uuid4

import pytest

from billing_modules.payments.models import Payment, PaymentStatus


@pytest.fixture
def issued_invoice(orchestrator, active_rental, owner_id, actor_id):
    """Factory: activate a rental and send its first invoice. Returns the sent Invoice."""

    def _issued(**overrides):
        outcome = active_rental(**overrides)
        result = orchestrator.send_invoice(owner_id, outcome.invoices[0].invoice.id, actor_id)
        assert result.is_success, result.error
        return result.value

    return _issued


@pytest.fixture
def payment_event(owner_id):
    """Factory for processor events against an invoice."""

    def _event(invoice, amount, status=PaymentStatus.COMPLETED, payment_id=None, **fields):
        return Payment(
            id=payment_id or uuid4(),
            owner_id=fields.pop("owner_id", owner_id),
            invoice_id=invoice.id,
            customer_id=fields.pop("customer_id", invoice.customer_id),
            amount=amount,
            status=status,
            **fields,
        )

    return _event
