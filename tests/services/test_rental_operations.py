"""
Rental and invoice operations through the BillingOrchestrator.

Tests cover:
- create / submit / activate results and rejection mapping
- Signature provider refusal and timeout
- Termination sends the final invoices
- Invoice send and cancel
- Manual ledger entries
"""

import threading
from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_modules.invoicing.models import InvoiceStatus
from billing_modules.rentals.models import RentalStatus
from billing_services.billing_orchestrator import BillingOrchestrator
from billing_services.results import BillingStatus
from ledger_kernel.exceptions import ExternalCollaboratorError, ExternalCollaboratorTimeout
from ledger_kernel.models.ledger_entry import LedgerEntryType
from ledger_kernel.selectors.ledger_selector import LedgerScope
from ledger_kernel.services.ledger_recorder import LedgerEntryRequest


class TestCreateRental:

    def test_created_in_draft(self, orchestrator, owner_id, actor_id, rental_terms):
        result = orchestrator.create_rental(owner_id, actor_id, **rental_terms())

        assert result.status == BillingStatus.SUCCESS
        assert result.value.status == RentalStatus.DRAFT
        assert orchestrator.get_rental(owner_id, result.value.id) == result.value

    def test_invalid_terms_rejected(self, orchestrator, owner_id, actor_id, rental_terms):
        result = orchestrator.create_rental(
            owner_id, actor_id, **rental_terms(monthly_rate=Decimal("-5"))
        )

        assert result.status == BillingStatus.REJECTED
        assert result.error_code == "VALIDATION_ERROR"
        assert orchestrator.list_rentals(owner_id) == []

    def test_sub_cent_rate_rejected(self, orchestrator, owner_id, actor_id, rental_terms):
        result = orchestrator.create_rental(
            owner_id, actor_id, **rental_terms(monthly_rate=Decimal("0.004"))
        )

        assert result.status == BillingStatus.REJECTED
        assert result.error_code == "VALIDATION_ERROR"
        assert orchestrator.list_rentals(owner_id) == []

    def test_unknown_term_rejected(self, orchestrator, owner_id, actor_id, rental_terms):
        result = orchestrator.create_rental(owner_id, actor_id, **rental_terms(colour="blue"))
        assert result.status == BillingStatus.REJECTED

    def test_incomplete_rental_cannot_be_submitted(self, orchestrator, owner_id, actor_id):
        created = orchestrator.create_rental(owner_id, actor_id, start_date=date(2024, 1, 1))

        result = orchestrator.submit_for_signature(owner_id, created.value.id, actor_id)

        assert result.status == BillingStatus.REJECTED
        assert set(result.error.fields) == {"customer_id", "unit_id", "monthly_rate"}


class TestActivateRental:

    def test_activation_calls_signature_provider(self, orchestrator, active_rental, signature_provider):
        outcome = active_rental()

        assert signature_provider.calls == [outcome.rental.id]
        assert outcome.rental.status == RentalStatus.ACTIVE
        assert outcome.invoices[0].invoice.status == InvoiceStatus.DRAFT

    def test_signature_refused(self, orchestrator, signature_provider, owner_id, actor_id, rental_terms):
        signature_provider.confirmed = False
        rental = orchestrator.create_rental(owner_id, actor_id, **rental_terms()).value
        orchestrator.submit_for_signature(owner_id, rental.id, actor_id)

        result = orchestrator.activate_rental(owner_id, rental.id, actor_id)

        assert result.status == BillingStatus.REJECTED
        assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.PENDING_SIGNATURE
        assert orchestrator.list_invoices(owner_id) == []

    def test_activate_draft_rejected(self, orchestrator, signature_provider, owner_id, actor_id, rental_terms):
        rental = orchestrator.create_rental(owner_id, actor_id, **rental_terms()).value

        result = orchestrator.activate_rental(owner_id, rental.id, actor_id)

        assert result.status == BillingStatus.REJECTED
        assert result.error.current_state == "draft"
        assert result.error.target_state == "active"
        assert signature_provider.calls == []

    def test_missing_signature_provider(self, session_factory, clock, billing_config, owner_id, actor_id, rental_terms):
        orchestrator = BillingOrchestrator(session_factory, clock=clock, config=billing_config)
        try:
            rental = orchestrator.create_rental(owner_id, actor_id, **rental_terms()).value
            orchestrator.submit_for_signature(owner_id, rental.id, actor_id)

            result = orchestrator.activate_rental(owner_id, rental.id, actor_id)

            assert result.status == BillingStatus.REJECTED
            assert result.error.fields == ("signature",)
        finally:
            orchestrator.close()

    def test_zero_first_invoice_rejected(self, orchestrator, owner_id, actor_id, rental_terms):
        # One day of a 0.01/month rate prorates to 0.00.
        rental = orchestrator.create_rental(
            owner_id,
            actor_id,
            **rental_terms(monthly_rate=Decimal("0.01"), end_date=date(2024, 1, 1)),
        ).value
        orchestrator.submit_for_signature(owner_id, rental.id, actor_id)

        result = orchestrator.activate_rental(owner_id, rental.id, actor_id)

        assert result.status == BillingStatus.REJECTED
        assert result.error_code == "VALIDATION_ERROR"
        assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.PENDING_SIGNATURE
        assert orchestrator.list_invoices(owner_id) == []


class FailingSignatureProvider:

    def confirm(self, rental) -> bool:
        raise RuntimeError("signing service returned 503")


def test_signature_provider_error_is_transient(
    session_factory, clock, billing_config, owner_id, actor_id, rental_terms
):
    orchestrator = BillingOrchestrator(
        session_factory, clock=clock, config=billing_config, signature_provider=FailingSignatureProvider()
    )
    try:
        rental = orchestrator.create_rental(owner_id, actor_id, **rental_terms()).value
        orchestrator.submit_for_signature(owner_id, rental.id, actor_id)

        result = orchestrator.activate_rental(owner_id, rental.id, actor_id)

        assert result.status == BillingStatus.TRANSIENT_FAILURE
        assert isinstance(result.error, ExternalCollaboratorError)
        assert result.error.collaborator == "signature_provider"
        assert "503" in result.error.reason
        assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.PENDING_SIGNATURE
        assert orchestrator.list_invoices(owner_id) == []
    finally:
        orchestrator.close()


class BlockingSignatureProvider:

    def __init__(self):
        self.release = threading.Event()

    def confirm(self, rental) -> bool:
        self.release.wait(timeout=5)
        return True


def test_signature_timeout_leaves_rental_pending(
    session_factory, clock, billing_config, owner_id, actor_id, rental_terms
):
    provider = BlockingSignatureProvider()
    config = replace(
        billing_config, collaborators=replace(billing_config.collaborators, timeout_seconds=0.05)
    )
    orchestrator = BillingOrchestrator(
        session_factory, clock=clock, config=config, signature_provider=provider
    )
    try:
        rental = orchestrator.create_rental(owner_id, actor_id, **rental_terms()).value
        orchestrator.submit_for_signature(owner_id, rental.id, actor_id)

        result = orchestrator.activate_rental(owner_id, rental.id, actor_id)

        assert result.status == BillingStatus.TRANSIENT_FAILURE
        assert isinstance(result.error, ExternalCollaboratorTimeout)
        assert result.error.collaborator == "signature_provider"
        assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.PENDING_SIGNATURE
        assert orchestrator.list_invoices(owner_id) == []
    finally:
        provider.release.set()
        orchestrator.close()


class TestTerminateRental:

    def test_final_invoices_sent(self, orchestrator, active_rental, owner_id, actor_id):
        rental = active_rental().rental

        result = orchestrator.terminate_rental(owner_id, rental.id, date(2024, 3, 15), actor_id)

        assert result.status == BillingStatus.SUCCESS
        outcome = result.value
        assert outcome.rental.status == RentalStatus.TERMINATED
        assert [g.invoice.amount_due for g in outcome.invoices] == [Decimal("100.00"), Decimal("48.39")]
        assert all(g.invoice.status == InvoiceStatus.SENT for g in outcome.invoices)
        invoices = orchestrator.list_invoices(owner_id, rental_id=rental.id)
        assert [inv.status for inv in invoices] == [InvoiceStatus.SENT] * 3
        assert invoices[-1].is_final
        balance = orchestrator.ledger_balance(owner_id, rental.id, LedgerScope.RENTAL)
        assert balance.income == Decimal("248.39")
        assert orchestrator.verify_reconciliation(owner_id, rental.id) is None

    def test_early_termination_rejected(self, orchestrator, active_rental, owner_id, actor_id):
        rental = active_rental().rental

        result = orchestrator.terminate_rental(owner_id, rental.id, date(2024, 1, 10), actor_id)

        assert result.status == BillingStatus.REJECTED
        assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.ACTIVE

    def test_terminated_rental_rejects_further_changes(self, orchestrator, active_rental, owner_id, actor_id):
        rental = active_rental().rental
        orchestrator.terminate_rental(owner_id, rental.id, date(2024, 1, 31), actor_id)

        again = orchestrator.terminate_rental(owner_id, rental.id, date(2024, 2, 29), actor_id)
        submit = orchestrator.submit_for_signature(owner_id, rental.id, actor_id)

        assert again.error_code == "INVALID_STATE_TRANSITION"
        assert submit.error_code == "INVALID_STATE_TRANSITION"
        assert again.error.current_state == "terminated"


class TestInvoices:

    def test_send_and_cancel(self, orchestrator, active_rental, owner_id, actor_id):
        invoice = active_rental().invoices[0].invoice

        sent = orchestrator.send_invoice(owner_id, invoice.id, actor_id)
        cancelled = orchestrator.cancel_invoice(owner_id, invoice.id, actor_id)

        assert sent.value.status == InvoiceStatus.SENT
        assert cancelled.value.status == InvoiceStatus.CANCELLED
        balance = orchestrator.ledger_balance(owner_id, invoice.rental_id, LedgerScope.RENTAL)
        assert balance.entry_count == 2
        assert balance.balance == Decimal("0")
        assert orchestrator.verify_reconciliation(owner_id, invoice.rental_id) is None

    def test_unknown_invoice(self, orchestrator, owner_id, actor_id):
        result = orchestrator.send_invoice(owner_id, uuid4(), actor_id)

        assert result.status == BillingStatus.REJECTED
        assert result.error_code == "ENTITY_NOT_FOUND"

    def test_other_owner_cannot_send(self, orchestrator, active_rental, other_owner_id, actor_id):
        invoice = active_rental().invoices[0].invoice

        result = orchestrator.send_invoice(other_owner_id, invoice.id, actor_id)

        assert result.status == BillingStatus.REJECTED


class TestManualLedgerEntries:

    def test_facility_expense(self, orchestrator, owner_id, facility_id, actor_id):
        request = LedgerEntryRequest(
            owner_id=owner_id,
            facility_id=facility_id,
            entry_type=LedgerEntryType.EXPENSE,
            category="maintenance",
            description="Gate repair",
            amount=Decimal("250.00"),
            entry_date=date(2024, 1, 10),
        )

        result = orchestrator.record_ledger_entry(request, actor_id)

        assert result.status == BillingStatus.SUCCESS
        balance = orchestrator.ledger_balance(owner_id, facility_id, LedgerScope.FACILITY)
        assert balance.expense == Decimal("250.00")
        assert balance.balance == Decimal("-250.00")

    def test_invalid_entry_rejected(self, orchestrator, owner_id, facility_id, actor_id):
        request = LedgerEntryRequest(
            owner_id=owner_id,
            facility_id=facility_id,
            entry_type=LedgerEntryType.EXPENSE,
            category="maintenance",
            description="Nothing",
            amount=Decimal("0"),
            entry_date=date(2024, 1, 10),
        )

        result = orchestrator.record_ledger_entry(request, actor_id)

        assert result.status == BillingStatus.REJECTED
        assert orchestrator.list_ledger_entries(owner_id) == []
