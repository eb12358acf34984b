"""
billing_services.billing_orchestrator -- single entry point of the billing core.

Responsibility:
    Accepts owner-scoped commands (rental lifecycle, invoice issuance,
    payment events, manual ledger entries, the periodic billing cycle),
    runs each inside one per-rental unit of work, and reports the outcome
    as a ``BillingResult``.

Architecture position:
    Services -- the only layer that opens sessions and commits.  Module
    services (lifecycle, generator, issuer, reconciler) are constructed
    here per unit of work and share its session and clock.

Invariants enforced:
    - Per-rental serialization: every mutation of a rental holds its
      in-process lock and reads the rental row FOR UPDATE.
    - Atomicity: an invoice or payment change and its ledger entry commit
      together or not at all.
    - No lock or transaction is held while a collaborator is called.
    - Conflicts are retried with backoff; if retries run out the result
      is TRANSIENT_FAILURE.

Failure modes:
    - Typed BillingError subclasses become BillingResult statuses (see
      ``billing_services.results``).
    - Any other exception is a bug and propagates after rollback.

Usage:
    orchestrator = BillingOrchestrator(
        session_factory,
        clock=clock,
        config=get_billing_config(),
        signature_provider=provider,
        payment_gateway=gateway,
    )
    result = orchestrator.create_rental(owner_id, actor_id, start_date=..., monthly_rate=...)
    if result.is_success:
        rental = result.value
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from billing_config import BillingConfig, get_billing_config
from billing_modules._orm_registry import register_all_listeners
from billing_modules.invoicing.generator import InvoiceGenerator
from billing_modules.invoicing.issuance import InvoiceIssuer
from billing_modules.invoicing.models import PAYABLE_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.payments.models import Payment, PaymentApplication, PaymentStatus
from billing_modules.payments.orm import PaymentModel
from billing_modules.payments.reconciler import PaymentReconciler
from billing_modules.payments.workflows import PAYMENT_WORKFLOW
from billing_modules.rentals.lifecycle import LifecycleOutcome, RentalLifecycle
from billing_modules.rentals.models import Rental, RentalStatus
from billing_services.collaborators import (
    ChargeRequest,
    ChargeResult,
    CollaboratorRunner,
    PaymentGateway,
    SignatureProvider,
)
from billing_services.locking import RentalLockRegistry
from billing_services.reporting import BillingReportSelector, FinancialSummary
from billing_services.results import (
    BillingCycleReport,
    BillingResult,
    BillingStatus,
    RentalCycleResult,
)
from billing_services.unit_of_work import UnitOfWork
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    DuplicatePaymentApplication,
    EntityNotFoundError,
    ImmutabilityError,
    InvalidStateTransition,
    TransientError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.selectors.ledger_selector import (
    LedgerBalance,
    LedgerFilter,
    LedgerScope,
    LedgerSelector,
)
from ledger_kernel.services.ledger_recorder import (
    LedgerEntryRequest,
    LedgerRecorder,
    ReconciliationMismatch,
)

logger = get_logger("services.billing_orchestrator")

# Actor recorded for scheduler- and webhook-driven changes.
SYSTEM_ACTOR_ID = UUID(int=0)

_REJECTED_ERRORS = (
    ValidationError,
    EntityNotFoundError,
    InvalidStateTransition,
    ImmutabilityError,
)

CHARGEABLE_STATUSES = (InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value)


@dataclass(frozen=True)
class PaymentEventOutcome:
    """Stored payment after an event, plus its invoice application if any."""
    payment: Payment
    application: PaymentApplication | None = None


@dataclass(frozen=True)
class _Components:
    """Module services bound to one unit-of-work session."""
    session: Session
    recorder: LedgerRecorder
    generator: InvoiceGenerator
    lifecycle: RentalLifecycle
    issuer: InvoiceIssuer
    reconciler: PaymentReconciler


class BillingOrchestrator:
    """Coordinates rentals, invoices, payments and the ledger for owners.

    Contract:
        Receives a session factory and optional clock, config and
        collaborators.  Every mutating method returns a BillingResult and
        owns its transaction; read methods return values directly and
        raise EntityNotFoundError for unknown ids.

    Non-goals:
        - Does NOT schedule itself; ``run_billing_cycle`` is invoked by an
          outside scheduler.
        - Does NOT authenticate owners; owner_id is trusted input.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        signature_provider: SignatureProvider | None = None,
        payment_gateway: PaymentGateway | None = None,
        lock_registry: RentalLockRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or get_billing_config()
        self._signature_provider = signature_provider
        self._payment_gateway = payment_gateway
        self._locks = lock_registry or RentalLockRegistry()
        self._uow = UnitOfWork(
            session_factory, self._locks, self._config.concurrency, sleep=sleep
        )
        self._collaborators = CollaboratorRunner(
            timeout_seconds=self._config.collaborators.timeout_seconds,
            max_workers=self._config.collaborators.max_workers,
        )
        register_all_listeners()

        logger.info(
            "billing_orchestrator_initialized",
            extra={
                "config_checksum": self._config.checksum,
                "retry_attempts": self._config.concurrency.retry_attempts,
                "collaborator_timeout_seconds": self._config.collaborators.timeout_seconds,
            },
        )

    @property
    def config(self) -> BillingConfig:
        return self._config

    def close(self) -> None:
        """Stop the collaborator worker pool."""
        self._collaborators.shutdown()

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _components(self, session: Session) -> _Components:
        invoicing = self._config.invoicing
        recorder = LedgerRecorder(session, self._clock)
        generator = InvoiceGenerator(
            session,
            self._clock,
            invoice_prefix=invoicing.number_prefix,
            money_places=invoicing.money_decimal_places,
        )
        return _Components(
            session=session,
            recorder=recorder,
            generator=generator,
            lifecycle=RentalLifecycle(session, self._clock, generator),
            issuer=InvoiceIssuer(session, self._clock, recorder),
            reconciler=PaymentReconciler(session, self._clock, recorder),
        )

    @contextmanager
    def _reports(self) -> Iterator[BillingReportSelector]:
        session = self._session_factory()
        try:
            yield BillingReportSelector(session)
        finally:
            session.close()

    def _in_unit(
        self,
        operation: str,
        lock_key: Any,
        work: Callable[[_Components], Any],
    ) -> Any:
        return self._uow.run(
            lock_key, lambda session: work(self._components(session)), operation
        )

    def _guarded(
        self,
        operation: str,
        fn: Callable[[], tuple[Any, tuple]],
        **context: Any,
    ) -> BillingResult:
        """Run ``fn`` and translate typed billing errors into a result."""
        with LogContext.bind(correlation_id=str(uuid4()), **context):
            try:
                value, warnings = fn()
            except DuplicatePaymentApplication as exc:
                logger.info(
                    "billing_operation_duplicate",
                    extra={"operation": operation, "error_code": exc.code},
                )
                return BillingResult(status=BillingStatus.DUPLICATE, error=exc)
            except _REJECTED_ERRORS as exc:
                logger.warning(
                    "billing_operation_rejected",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "detail": str(exc),
                    },
                )
                return BillingResult(status=BillingStatus.REJECTED, error=exc)
            except TransientError as exc:
                logger.warning(
                    "billing_operation_transient_failure",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "detail": str(exc),
                    },
                )
                return BillingResult(status=BillingStatus.TRANSIENT_FAILURE, error=exc)

            logger.info(
                "billing_operation_succeeded",
                extra={"operation": operation, "warning_count": len(warnings)},
            )
            return BillingResult.success(value, warnings)

    def _rental_of_invoice(self, owner_id: UUID, invoice_id: UUID) -> UUID:
        with self._reports() as reports:
            return reports.get_invoice(owner_id, invoice_id).rental_id

    def _send_drafts(
        self,
        c: _Components,
        rental_id: UUID,
        actor_id: UUID,
        due_by: date | None = None,
    ) -> list[Invoice]:
        stmt = select(InvoiceModel).where(
            InvoiceModel.rental_id == rental_id,
            InvoiceModel.status == InvoiceStatus.DRAFT.value,
        )
        if due_by is not None:
            stmt = stmt.where(InvoiceModel.due_date <= due_by)
        drafts = c.session.execute(stmt.order_by(InvoiceModel.period_start)).scalars().all()
        return [c.issuer.send(model, actor_id) for model in drafts]

    # =========================================================================
    # Rentals
    # =========================================================================

    def create_rental(self, owner_id: UUID, actor_id: UUID, **terms: Any) -> BillingResult:
        """
        Create a rental in draft.

        ``terms`` are Rental fields (start_date, customer_id, unit_id,
        facility_id, monthly_rate, end_date, security_deposit, ...).  A
        draft may omit everything except start_date.
        """
        rental_id = uuid4()

        def run():
            try:
                rental = Rental(id=rental_id, owner_id=owner_id, **terms)
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    str(exc), entity_type="Rental", entity_id=str(rental_id)
                ) from exc
            created = self._in_unit(
                "create_rental", rental_id, lambda c: c.lifecycle.create(rental, actor_id)
            )
            return created, ()

        return self._guarded(
            "create_rental", run, owner_id=owner_id, actor_id=actor_id, rental_id=rental_id
        )

    def submit_for_signature(self, owner_id: UUID, rental_id: UUID, actor_id: UUID) -> BillingResult:
        def run():
            rental = self._in_unit(
                "submit_for_signature",
                rental_id,
                lambda c: c.lifecycle.submit_for_signature(owner_id, rental_id, actor_id),
            )
            return rental, ()

        return self._guarded(
            "submit_for_signature", run, owner_id=owner_id, actor_id=actor_id, rental_id=rental_id
        )

    def activate_rental(self, owner_id: UUID, rental_id: UUID, actor_id: UUID) -> BillingResult:
        """
        Confirm the signature with the provider, then activate the rental and
        generate its first invoice (left in draft).

        The provider is called before the unit of work opens; the lifecycle
        re-checks the rental's state under the lock.
        """
        def run():
            with self._reports() as reports:
                rental = reports.get_rental(owner_id, rental_id)

            confirmed = False
            if rental.status == RentalStatus.PENDING_SIGNATURE:
                if self._signature_provider is None:
                    raise ValidationError(
                        "No signature provider is configured",
                        entity_type="Rental",
                        entity_id=str(rental_id),
                        fields=("signature",),
                    )
                confirmed = bool(
                    self._collaborators.call(
                        "signature_provider",
                        self._signature_provider.confirm,
                        rental,
                        entity_id=str(rental_id),
                    )
                )

            outcome = self._in_unit(
                "activate_rental",
                rental_id,
                lambda c: c.lifecycle.activate(
                    owner_id, rental_id, actor_id, signature_confirmed=confirmed
                ),
            )
            return outcome, ()

        return self._guarded(
            "activate_rental", run, owner_id=owner_id, actor_id=actor_id, rental_id=rental_id
        )

    def terminate_rental(
        self,
        owner_id: UUID,
        rental_id: UUID,
        effective_date: date,
        actor_id: UUID,
    ) -> BillingResult:
        """
        Terminate as of ``effective_date``; bill through it and send the
        final invoice together with any drafts still outstanding.
        """
        def work(c: _Components) -> LifecycleOutcome:
            outcome = c.lifecycle.terminate(
                owner_id,
                rental_id,
                effective_date,
                actor_id,
                issue=lambda model: c.issuer.send(model, actor_id),
            )
            sent = {inv.id: inv for inv in self._send_drafts(c, rental_id, actor_id)}
            invoices = tuple(
                replace(g, invoice=sent.get(g.invoice.id, g.invoice)) for g in outcome.invoices
            )
            return replace(outcome, invoices=invoices)

        return self._guarded(
            "terminate_rental",
            lambda: (self._in_unit("terminate_rental", rental_id, work), ()),
            owner_id=owner_id,
            actor_id=actor_id,
            rental_id=rental_id,
        )

    # =========================================================================
    # Invoices
    # =========================================================================

    def send_invoice(self, owner_id: UUID, invoice_id: UUID, actor_id: UUID) -> BillingResult:
        """draft -> sent; accrues the invoice to the ledger."""
        def run():
            rental_id = self._rental_of_invoice(owner_id, invoice_id)

            def work(c: _Components) -> Invoice:
                c.lifecycle.load(owner_id, rental_id, for_update=True)
                return c.issuer.send(c.issuer.load(owner_id, invoice_id, for_update=True), actor_id)

            return self._in_unit("send_invoice", rental_id, work), ()

        return self._guarded(
            "send_invoice", run, owner_id=owner_id, actor_id=actor_id, invoice_id=invoice_id
        )

    def cancel_invoice(self, owner_id: UUID, invoice_id: UUID, actor_id: UUID) -> BillingResult:
        """Cancel an unpaid invoice, reversing its accrual if it was sent."""
        def run():
            rental_id = self._rental_of_invoice(owner_id, invoice_id)

            def work(c: _Components) -> Invoice:
                c.lifecycle.load(owner_id, rental_id, for_update=True)
                return c.issuer.cancel(c.issuer.load(owner_id, invoice_id, for_update=True), actor_id)

            return self._in_unit("cancel_invoice", rental_id, work), ()

        return self._guarded(
            "cancel_invoice", run, owner_id=owner_id, actor_id=actor_id, invoice_id=invoice_id
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def _apply_event(
        self,
        c: _Components,
        owner_id: UUID,
        rental_id: UUID,
        event: Payment,
        actor_id: UUID,
    ) -> PaymentEventOutcome:
        c.lifecycle.load(owner_id, rental_id, for_update=True)
        invoice = c.issuer.load(owner_id, event.invoice_id, for_update=True)
        if invoice.customer_id != event.customer_id:
            raise ValidationError(
                f"Payment {event.id} customer does not match invoice {invoice.invoice_number}",
                entity_type="Payment",
                entity_id=str(event.id),
                fields=("customer_id",),
            )

        model = c.session.get(PaymentModel, event.id)
        if model is not None and model.owner_id != owner_id:
            raise EntityNotFoundError("Payment", str(event.id))

        now = self._clock.now()
        application: PaymentApplication | None = None

        if model is None:
            if event.status == PaymentStatus.REFUNDED:
                raise InvalidStateTransition(
                    entity_type="Payment",
                    entity_id=str(event.id),
                    current_state="unknown",
                    target_state=PaymentStatus.REFUNDED.value,
                    reason="payment was never applied",
                )
            model = PaymentModel.from_dto(event, created_by_id=actor_id)
            if event.status == PaymentStatus.COMPLETED and model.processed_at is None:
                model.processed_at = now
            c.session.add(model)
            c.session.flush()
            if event.status == PaymentStatus.COMPLETED:
                application = c.reconciler.apply(model, actor_id)
            return PaymentEventOutcome(payment=model.to_dto(), application=application)

        if model.invoice_id != event.invoice_id or model.amount != event.amount:
            raise ValidationError(
                f"Payment event {event.id} does not match the recorded payment",
                entity_type="Payment",
                entity_id=str(event.id),
                fields=("invoice_id", "amount"),
            )

        if model.status == event.status.value:
            # Replays: the reconciler detects an applied or reversed payment.
            if event.status == PaymentStatus.COMPLETED:
                application = c.reconciler.apply(model, actor_id)
                return PaymentEventOutcome(payment=model.to_dto(), application=application)
            if event.status == PaymentStatus.REFUNDED:
                application = c.reconciler.reverse(model, actor_id)
                return PaymentEventOutcome(payment=model.to_dto(), application=application)
            raise DuplicatePaymentApplication(
                payment_id=str(event.id),
                invoice_id=str(event.invoice_id),
                operation=event.status.value,
            )

        if PAYMENT_WORKFLOW.find_to(model.status, event.status.value) is None:
            raise InvalidStateTransition(
                entity_type="Payment",
                entity_id=str(event.id),
                current_state=model.status,
                target_state=event.status.value,
            )

        model.status = event.status.value
        model.updated_by_id = actor_id
        if event.status == PaymentStatus.COMPLETED:
            model.processed_at = event.processed_at or model.processed_at or now
            if event.transaction_id is not None:
                model.transaction_id = event.transaction_id
            c.session.flush()
            application = c.reconciler.apply(model, actor_id)
        elif event.status == PaymentStatus.REFUNDED:
            model.refunded_at = event.refunded_at or now
            c.session.flush()
            application = c.reconciler.reverse(model, actor_id)
        else:
            c.session.flush()

        return PaymentEventOutcome(payment=model.to_dto(), application=application)

    def on_payment_event(
        self,
        owner_id: UUID,
        event: Payment,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> BillingResult:
        """
        Record a payment-processor event and move money accordingly.

        completed -> applied to the invoice; refunded -> reversed.  A
        replayed event is a DUPLICATE no-op.  Overpayment is applied and
        reported in ``warnings``.
        """
        def run():
            if event.owner_id != owner_id:
                raise ValidationError(
                    f"Payment {event.id} belongs to another owner",
                    entity_type="Payment",
                    entity_id=str(event.id),
                    fields=("owner_id",),
                )
            rental_id = self._rental_of_invoice(owner_id, event.invoice_id)
            outcome = self._in_unit(
                "on_payment_event",
                rental_id,
                lambda c: self._apply_event(c, owner_id, rental_id, event, actor_id),
            )
            warnings = outcome.application.warnings if outcome.application else ()
            return outcome, tuple(warnings)

        return self._guarded(
            "on_payment_event",
            run,
            owner_id=owner_id,
            actor_id=actor_id,
            invoice_id=event.invoice_id,
            payment_id=event.id,
        )

    def _open_charge(
        self,
        c: _Components,
        owner_id: UUID,
        rental_id: UUID,
        invoice_id: UUID,
        payment: Payment,
        actor_id: UUID,
    ) -> Payment:
        c.lifecycle.load(owner_id, rental_id, for_update=True)
        invoice = c.issuer.load(owner_id, invoice_id, for_update=True)
        if invoice.status not in CHARGEABLE_STATUSES:
            raise InvalidStateTransition(
                entity_type="Invoice",
                entity_id=str(invoice_id),
                current_state=invoice.status,
                target_state=InvoiceStatus.PAID.value,
                reason="only sent or overdue invoices are charged",
            )
        model = PaymentModel.from_dto(payment, created_by_id=actor_id)
        c.session.add(model)
        c.session.flush()
        logger.info(
            "charge_pending",
            extra={
                "payment_id": str(model.id),
                "invoice_id": str(invoice_id),
                "amount": str(model.amount),
            },
        )
        return model.to_dto()

    def _settle_charge(
        self,
        c: _Components,
        owner_id: UUID,
        rental_id: UUID,
        payment_id: UUID,
        charge: ChargeResult,
        actor_id: UUID,
    ) -> PaymentEventOutcome:
        c.lifecycle.load(owner_id, rental_id, for_update=True)
        model = c.session.get(PaymentModel, payment_id)
        invoice = c.issuer.load(owner_id, model.invoice_id, for_update=True)

        model.transaction_id = charge.transaction_id
        model.processed_at = charge.processed_at or self._clock.now()
        model.updated_by_id = actor_id
        if not charge.succeeded:
            model.status = PaymentStatus.FAILED.value
            model.notes = charge.failure_reason
            c.session.flush()
            return PaymentEventOutcome(payment=model.to_dto())

        model.status = PaymentStatus.COMPLETED.value
        c.session.flush()
        if InvoiceStatus(invoice.status) not in PAYABLE_STATUSES:
            # Captured money is kept on record for a refund or manual application.
            logger.error(
                "charge_captured_unapplied",
                extra={
                    "payment_id": str(model.id),
                    "invoice_id": str(invoice.id),
                    "transaction_id": model.transaction_id,
                    "current_state": invoice.status,
                },
            )
            return PaymentEventOutcome(payment=model.to_dto())
        return PaymentEventOutcome(
            payment=model.to_dto(), application=c.reconciler.apply(model, actor_id)
        )

    def charge_invoice(
        self,
        owner_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        actor_id: UUID,
        payment_method_id: UUID | None = None,
    ) -> BillingResult:
        """
        Charge the customer through the payment gateway and record the
        resulting payment.

        A pending payment is committed before the gateway is called and
        settled (completed or failed) after it answers, so a captured charge
        is never lost:

        - gateway timeout or error: the payment stays pending; a later
          processor event for its id settles it.
        - invoice cancelled while the charge was in flight: the payment is
          recorded as completed but not applied, and the call is REJECTED.
        """
        def run():
            if self._payment_gateway is None:
                raise ValidationError(
                    "No payment gateway is configured",
                    entity_type="Invoice",
                    entity_id=str(invoice_id),
                )
            if amount <= 0:
                raise ValidationError(
                    "Charge amount must be positive",
                    entity_type="Invoice",
                    entity_id=str(invoice_id),
                    fields=("amount",),
                )
            with self._reports() as reports:
                invoice = reports.get_invoice(owner_id, invoice_id)
            rental_id = invoice.rental_id
            pending = Payment(
                id=uuid4(),
                owner_id=owner_id,
                invoice_id=invoice_id,
                customer_id=invoice.customer_id,
                amount=amount,
                status=PaymentStatus.PENDING,
                payment_method_id=payment_method_id,
            )
            opened = self._in_unit(
                "charge_invoice",
                rental_id,
                lambda c: self._open_charge(c, owner_id, rental_id, invoice_id, pending, actor_id),
            )

            request = ChargeRequest(
                owner_id=owner_id,
                invoice_id=invoice_id,
                customer_id=invoice.customer_id,
                amount=amount,
                payment_method_id=payment_method_id,
            )
            charge = self._collaborators.call(
                "payment_gateway", self._payment_gateway.charge, request, entity_id=str(invoice_id)
            )

            try:
                outcome = self._in_unit(
                    "charge_invoice",
                    rental_id,
                    lambda c: self._settle_charge(c, owner_id, rental_id, opened.id, charge, actor_id),
                )
            except TransientError:
                logger.error(
                    "charge_settlement_failed",
                    extra={
                        "payment_id": str(opened.id),
                        "invoice_id": str(invoice_id),
                        "transaction_id": charge.transaction_id,
                        "succeeded": charge.succeeded,
                    },
                )
                raise

            if outcome.payment.status == PaymentStatus.COMPLETED and outcome.application is None:
                current = self.get_invoice(owner_id, invoice_id)
                raise InvalidStateTransition(
                    entity_type="Invoice",
                    entity_id=str(invoice_id),
                    current_state=current.status.value,
                    target_state=InvoiceStatus.PAID.value,
                    reason=f"charge captured as payment {opened.id} but not applied",
                )
            warnings = outcome.application.warnings if outcome.application else ()
            return outcome, tuple(warnings)

        return self._guarded(
            "charge_invoice", run, owner_id=owner_id, actor_id=actor_id, invoice_id=invoice_id
        )

    # =========================================================================
    # Ledger
    # =========================================================================

    def record_ledger_entry(self, request: LedgerEntryRequest, actor_id: UUID) -> BillingResult:
        """Record a manual entry (an expense, a goodwill adjustment, ...)."""
        lock_key = (
            request.rental_id
            or request.facility_id
            or request.customer_id
            or request.owner_id
        )

        def work(c: _Components) -> LedgerEntry:
            if request.rental_id is not None:
                c.lifecycle.load(request.owner_id, request.rental_id, for_update=True)
            return c.recorder.record(request, actor_id)

        return self._guarded(
            "record_ledger_entry",
            lambda: (self._in_unit("record_ledger_entry", lock_key, work), ()),
            owner_id=request.owner_id,
            actor_id=actor_id,
            rental_id=request.rental_id,
        )

    # =========================================================================
    # Billing cycle
    # =========================================================================

    def _cycle_rental(
        self,
        c: _Components,
        owner_id: UUID,
        rental_id: UUID,
        as_of: date,
        actor_id: UUID,
    ) -> RentalCycleResult:
        rental = c.lifecycle.load(owner_id, rental_id, for_update=True).to_dto()
        if rental.status != RentalStatus.ACTIVE:
            return RentalCycleResult(rental_id=rental_id)

        auto_send = self._config.invoicing.auto_send_on_cycle
        sent: list[UUID] = []
        issue: Callable[[InvoiceModel], Any] | None = None
        if auto_send:
            sent.extend(inv.id for inv in self._send_drafts(c, rental_id, actor_id, due_by=as_of))

            def send(model: InvoiceModel) -> None:
                sent.append(c.issuer.send(model, actor_id).id)

            issue = send

        cutoff = rental.end_date if rental.has_fixed_term else None
        generated = [
            g.invoice.id
            for g in c.generator.generate_due(rental, as_of, actor_id, cutoff=cutoff, issue=issue)
        ]

        # Includes invoices sent just above.
        sent_invoices = c.session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.rental_id == rental_id,
                InvoiceModel.status == InvoiceStatus.SENT.value,
            )
            .order_by(InvoiceModel.period_start)
        ).scalars().all()
        overdue = [inv.id for inv in sent_invoices if c.issuer.mark_overdue(inv, as_of, actor_id)]

        expired = False
        if c.lifecycle.can_expire(rental, as_of):
            outcome = c.lifecycle.expire(owner_id, rental_id, as_of, actor_id, issue=issue)
            generated.extend(g.invoice.id for g in outcome.invoices)
            if auto_send:
                sent.extend(inv.id for inv in self._send_drafts(c, rental_id, actor_id))
            expired = True

        return RentalCycleResult(
            rental_id=rental_id,
            overdue_invoice_ids=tuple(overdue),
            generated_invoice_ids=tuple(generated),
            sent_invoice_ids=tuple(sent),
            expired=expired,
        )

    def run_billing_cycle(
        self,
        owner_id: UUID,
        as_of: date,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> BillingCycleReport:
        """
        For every active rental of the owner: generate missing periods up to
        ``as_of`` (with late fees), send due drafts, mark past-due invoices
        overdue and expire finished fixed terms.

        Each rental is its own unit of work; one rental's failure does not
        stop the others.  Re-running for the same ``as_of`` changes nothing.
        """
        with self._reports() as reports:
            rental_ids = reports.rental_ids(owner_id, RentalStatus.ACTIVE)

        report = BillingCycleReport(owner_id=owner_id, as_of=as_of)
        for rental_id in rental_ids:
            report.results[rental_id] = self._guarded(
                "billing_cycle",
                lambda rid=rental_id: (
                    self._in_unit(
                        "billing_cycle",
                        rid,
                        lambda c: self._cycle_rental(c, owner_id, rid, as_of, actor_id),
                    ),
                    (),
                ),
                owner_id=owner_id,
                actor_id=actor_id,
                rental_id=rental_id,
            )

        logger.info(
            "billing_cycle_completed",
            extra={
                "as_of": as_of,
                "rental_count": len(rental_ids),
                "failed_count": len(report.failed),
                "invoices_generated": report.invoices_generated,
            },
        )
        return report

    # =========================================================================
    # Queries
    # =========================================================================

    def get_rental(self, owner_id: UUID, rental_id: UUID) -> Rental:
        with self._reports() as reports:
            return reports.get_rental(owner_id, rental_id)

    def list_rentals(self, owner_id: UUID, status: RentalStatus | None = None) -> list[Rental]:
        with self._reports() as reports:
            return reports.list_rentals(owner_id, status)

    def get_invoice(self, owner_id: UUID, invoice_id: UUID) -> Invoice:
        with self._reports() as reports:
            return reports.get_invoice(owner_id, invoice_id)

    def list_invoices(
        self,
        owner_id: UUID,
        rental_id: UUID | None = None,
        statuses: tuple[InvoiceStatus, ...] = (),
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Invoice]:
        with self._reports() as reports:
            return reports.list_invoices(owner_id, rental_id, statuses, date_from, date_to)

    def invoice_status_counts(self, owner_id: UUID) -> dict[str, int]:
        """Invoice counts per status for the owner's dashboard."""
        with self._reports() as reports:
            return reports.invoice_status_counts(owner_id)

    def get_payment(self, owner_id: UUID, payment_id: UUID) -> Payment:
        with self._reports() as reports:
            return reports.get_payment(owner_id, payment_id)

    def list_payments(
        self,
        owner_id: UUID,
        invoice_id: UUID | None = None,
        statuses: tuple[PaymentStatus, ...] = (),
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Payment]:
        with self._reports() as reports:
            return reports.list_payments(owner_id, invoice_id, statuses, date_from, date_to)

    def list_ledger_entries(
        self,
        owner_id: UUID,
        filters: LedgerFilter | None = None,
    ) -> list[LedgerEntry]:
        with self._reports() as reports:
            return LedgerSelector(reports.session).entries(owner_id, filters)

    def ledger_balance(
        self,
        owner_id: UUID,
        scope_id: UUID,
        scope: LedgerScope | None = None,
        as_of: date | None = None,
    ) -> LedgerBalance:
        with self._reports() as reports:
            return LedgerSelector(reports.session).balance(owner_id, scope_id, scope, as_of)

    def verify_reconciliation(self, owner_id: UUID, rental_id: UUID) -> ReconciliationMismatch | None:
        """Compare the rental's ledger balance with its open receivable."""
        with self._reports() as reports:
            reports.get_rental(owner_id, rental_id)
            expected = reports.open_receivable(owner_id, rental_id)
            return LedgerRecorder(reports.session, self._clock).verify_rental(
                owner_id, rental_id, expected
            )

    def financial_summary(
        self,
        owner_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> FinancialSummary:
        with self._reports() as reports:
            return reports.financial_summary(
                owner_id, self._config.invoicing.currency, date_from, date_to
            )
