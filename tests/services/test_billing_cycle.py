"""
run_billing_cycle tests.

Tests cover:
- Catch-up generation and auto-send
- Re-running the same as_of changes nothing
- Expiry of fixed-term rentals inside the cycle
- Rentals that are not active are skipped
- auto_send_on_cycle disabled leaves drafts
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

from billing_modules.invoicing.models import InvoiceStatus
from billing_modules.rentals.models import RentalStatus
from billing_services.billing_orchestrator import BillingOrchestrator
from billing_services.results import BillingStatus
from ledger_kernel.selectors.ledger_selector import LedgerScope


def test_cycle_generates_and_sends_due_periods(orchestrator, active_rental, owner_id):
    rental = active_rental().rental

    report = orchestrator.run_billing_cycle(owner_id, date(2024, 3, 1))

    result = report.results[rental.id]
    assert result.status == BillingStatus.SUCCESS
    assert len(result.value.generated_invoice_ids) == 2
    assert len(result.value.sent_invoice_ids) == 3
    assert report.invoices_generated == 2
    invoices = orchestrator.list_invoices(owner_id, rental_id=rental.id)
    assert [inv.period_start for inv in invoices] == [
        date(2024, 1, 1),
        date(2024, 2, 1),
        date(2024, 3, 1),
    ]
    assert [inv.status for inv in invoices] == [
        InvoiceStatus.OVERDUE,
        InvoiceStatus.OVERDUE,
        InvoiceStatus.SENT,
    ]
    assert set(result.value.overdue_invoice_ids) == {invoices[0].id, invoices[1].id}


def test_rerun_is_idempotent(orchestrator, active_rental, owner_id):
    rental = active_rental(late_fee_rate=Decimal("0.05")).rental
    orchestrator.run_billing_cycle(owner_id, date(2024, 3, 1))
    before = orchestrator.list_invoices(owner_id, rental_id=rental.id)
    entries_before = orchestrator.list_ledger_entries(owner_id)

    report = orchestrator.run_billing_cycle(owner_id, date(2024, 3, 1))

    cycle = report.results[rental.id].value
    assert cycle.generated_invoice_ids == ()
    assert cycle.sent_invoice_ids == ()
    assert orchestrator.list_invoices(owner_id, rental_id=rental.id) == before
    assert orchestrator.list_ledger_entries(owner_id) == entries_before


def test_each_rental_cycles_independently(orchestrator, active_rental, owner_id):
    first = active_rental().rental
    second = active_rental(start_date=date(2024, 1, 15)).rental

    report = orchestrator.run_billing_cycle(owner_id, date(2024, 2, 1))

    assert set(report.succeeded) == {first.id, second.id}
    assert report.failed == ()
    assert len(report.results[first.id].value.generated_invoice_ids) == 1
    assert report.results[second.id].value.generated_invoice_ids == ()


def test_fixed_term_expires(orchestrator, active_rental, owner_id):
    rental = active_rental(end_date=date(2024, 2, 29)).rental

    report = orchestrator.run_billing_cycle(owner_id, date(2024, 3, 1))

    cycle = report.results[rental.id].value
    assert cycle.expired
    assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.EXPIRED
    invoices = orchestrator.list_invoices(owner_id, rental_id=rental.id)
    assert [inv.period_start for inv in invoices] == [date(2024, 1, 1), date(2024, 2, 1)]
    assert invoices[-1].is_final
    assert [inv.status for inv in invoices] == [InvoiceStatus.OVERDUE] * 2

    again = orchestrator.run_billing_cycle(owner_id, date(2024, 4, 1))
    assert rental.id not in again.results


def test_fixed_term_not_billed_past_end(orchestrator, active_rental, owner_id):
    rental = active_rental(end_date=date(2024, 2, 14)).rental

    orchestrator.run_billing_cycle(owner_id, date(2024, 2, 1))

    invoices = orchestrator.list_invoices(owner_id, rental_id=rental.id)
    feb = invoices[-1]
    assert feb.period_end == date(2024, 2, 14)
    assert feb.amount_due == Decimal("48.28")
    assert feb.is_final
    assert orchestrator.get_rental(owner_id, rental.id).status == RentalStatus.ACTIVE


def test_draft_and_terminated_rentals_skipped(orchestrator, active_rental, owner_id, actor_id, rental_terms):
    orchestrator.create_rental(owner_id, actor_id, **rental_terms())
    terminated = active_rental().rental
    orchestrator.terminate_rental(owner_id, terminated.id, date(2024, 1, 31), actor_id)

    report = orchestrator.run_billing_cycle(owner_id, date(2024, 3, 1))

    assert report.results == {}


def test_auto_send_disabled(session_factory, clock, billing_config, signature_provider, owner_id, actor_id, rental_terms):
    config = replace(
        billing_config, invoicing=replace(billing_config.invoicing, auto_send_on_cycle=False)
    )
    orchestrator = BillingOrchestrator(
        session_factory, clock=clock, config=config, signature_provider=signature_provider
    )
    try:
        rental = orchestrator.create_rental(owner_id, actor_id, **rental_terms()).value
        orchestrator.submit_for_signature(owner_id, rental.id, actor_id)
        orchestrator.activate_rental(owner_id, rental.id, actor_id)

        report = orchestrator.run_billing_cycle(owner_id, date(2024, 2, 1))

        assert report.results[rental.id].value.sent_invoice_ids == ()
        invoices = orchestrator.list_invoices(owner_id, rental_id=rental.id)
        assert [inv.status for inv in invoices] == [InvoiceStatus.DRAFT] * 2
        balance = orchestrator.ledger_balance(owner_id, rental.id, LedgerScope.RENTAL)
        assert balance.entry_count == 0
    finally:
        orchestrator.close()
