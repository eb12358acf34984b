"""
Payment Reconciler (``billing_modules.payments.reconciler``).

Responsibility
--------------
Applies completed payments to their invoice and reverses refunded ones,
updating amount_paid / status / paid_at and appending exactly one ledger
entry per application or reversal.

Architecture position
---------------------
**Modules layer** -- imperative shell.  Called by the Billing Orchestrator
inside the rental's unit of work, so the invoice update, payment update and
ledger append commit together or not at all.

Invariants enforced
-------------------
* PAYMENT_IDEMPOTENCY -- the payment id is the idempotency key.  A second
  application (or second reversal) raises ``DuplicatePaymentApplication``.
* amount_paid never goes below zero.
* paid_at is set when the invoice crosses into ``paid`` and cleared when a
  refund reopens it.
* Overpayment is recorded, never rejected; ``OverpaymentDetected`` is
  returned as a warning.

Ledger postings
---------------
    apply, invoice open   -> adjustment / decrease / "payment"
    apply, invoice paid   -> adjustment / decrease / "overpayment"
    reverse               -> adjustment / increase / "refund"
"""

from datetime import datetime
from uuid import UUID

from billing_modules.invoicing.models import PAYABLE_STATUSES, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.payments.models import PaymentApplication, PaymentStatus
from billing_modules.payments.orm import PaymentModel
from billing_modules.rentals.orm import RentalModel
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import (
    DuplicatePaymentApplication,
    EntityNotFoundError,
    InvalidStateTransition,
    OverpaymentDetected,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import (
    LedgerCategory,
    LedgerDirection,
    LedgerEntryType,
)
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.ledger_recorder import LedgerEntryRequest, LedgerRecorder
from ledger_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("modules.payments.reconciler")


def applied_key(payment_id: UUID) -> str:
    return generate_idempotency_key("payments", "payment.applied", payment_id)


def refunded_key(payment_id: UUID) -> str:
    return generate_idempotency_key("payments", "payment.refunded", payment_id)


class PaymentReconciler(BaseService):
    """
    Applies and reverses payments against invoices.

    Contract:
        The caller has locked the rental and passes the payment row already
        in its target status (completed for ``apply``, refunded for
        ``reverse``).  Nothing is committed here.
    """

    def __init__(self, session, clock: Clock | None = None, recorder: LedgerRecorder | None = None):
        super().__init__(session, clock)
        self._recorder = recorder or LedgerRecorder(session, self.clock)
        self._ledger = LedgerSelector(session)

    def _invoice(self, payment: PaymentModel) -> InvoiceModel:
        invoice = self.session.get(InvoiceModel, payment.invoice_id)
        if invoice is None or invoice.owner_id != payment.owner_id:
            raise EntityNotFoundError("Invoice", str(payment.invoice_id))
        return invoice

    def _entry_date(self, when: datetime | None):
        return when.date() if when is not None else self.clock.today()

    def _scope(self, invoice: InvoiceModel, payment: PaymentModel) -> dict:
        rental = self.session.get(RentalModel, invoice.rental_id)
        return {
            "owner_id": invoice.owner_id,
            "facility_id": rental.facility_id if rental is not None else None,
            "customer_id": invoice.customer_id,
            "rental_id": invoice.rental_id,
            "invoice_id": invoice.id,
            "payment_id": payment.id,
        }

    def apply(self, payment: PaymentModel, actor_id: UUID) -> PaymentApplication:
        """
        Apply a completed payment to its invoice.

        Raises:
            DuplicatePaymentApplication: payment id already applied.
            InvalidStateTransition: payment not completed, or invoice is a
                draft / cancelled.
        """
        if payment.applied_at is not None or self._ledger.get_by_idempotency_key(
            applied_key(payment.id)
        ) is not None:
            logger.warning(
                "payment_duplicate_application",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(payment.invoice_id),
                },
            )
            raise DuplicatePaymentApplication(
                payment_id=str(payment.id), invoice_id=str(payment.invoice_id)
            )

        if payment.status != PaymentStatus.COMPLETED.value:
            raise InvalidStateTransition(
                entity_type="Payment",
                entity_id=str(payment.id),
                current_state=payment.status,
                target_state=PaymentStatus.COMPLETED.value,
                reason="only completed payments are applied",
            )

        invoice = self._invoice(payment)
        if InvoiceStatus(invoice.status) not in PAYABLE_STATUSES:
            logger.warning(
                "payment_rejected_invoice_state",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(invoice.id),
                    "current_state": invoice.status,
                    "expected_states": sorted(s.value for s in PAYABLE_STATUSES),
                },
            )
            raise InvalidStateTransition(
                entity_type="Invoice",
                entity_id=str(invoice.id),
                current_state=invoice.status,
                target_state=InvoiceStatus.PAID.value,
                reason="invoice does not accept payments",
            )

        was_paid = invoice.status == InvoiceStatus.PAID.value
        amount = payment.amount
        invoice.amount_paid = invoice.amount_paid + amount
        invoice.updated_by_id = actor_id

        settled = False
        if not was_paid and invoice.amount_paid >= invoice.amount_due:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = payment.processed_at or self.clock.now()
            settled = True

        warnings = ()
        if was_paid or invoice.amount_paid > invoice.amount_due:
            excess = invoice.amount_paid - invoice.amount_due
            warning = OverpaymentDetected(
                payment_id=str(payment.id),
                invoice_id=str(invoice.id),
                amount_due=str(invoice.amount_due),
                amount_paid=str(invoice.amount_paid),
                excess=str(excess),
            )
            warnings = (warning,)
            logger.warning(
                "payment_overpayment_detected",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(invoice.id),
                    "amount_due": str(invoice.amount_due),
                    "amount_paid": str(invoice.amount_paid),
                    "excess": str(excess),
                },
            )

        payment.applied_at = self.clock.now()
        category = LedgerCategory.OVERPAYMENT if was_paid else LedgerCategory.PAYMENT

        entry = self._recorder.record(
            LedgerEntryRequest(
                entry_type=LedgerEntryType.ADJUSTMENT,
                direction=LedgerDirection.DECREASE,
                category=category,
                description=f"Payment against invoice {invoice.invoice_number}",
                amount=amount,
                entry_date=self._entry_date(payment.processed_at),
                idempotency_key=applied_key(payment.id),
                **self._scope(invoice, payment),
            ),
            actor_id=actor_id,
        )
        self.session.flush()

        logger.info(
            "payment_applied",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "amount": str(amount),
                "amount_paid": str(invoice.amount_paid),
                "invoice_status": invoice.status,
                "settled": settled,
                "category": category,
            },
        )
        return PaymentApplication(
            payment_id=payment.id,
            invoice_id=invoice.id,
            amount=amount,
            amount_paid=invoice.amount_paid,
            amount_due=invoice.amount_due,
            invoice_status=invoice.status,
            ledger_entry_id=entry.id,
            settled=settled,
            warnings=warnings,
        )

    def reverse(self, payment: PaymentModel, actor_id: UUID) -> PaymentApplication:
        """
        Reverse a refunded payment's effect on its invoice.

        Raises:
            DuplicatePaymentApplication: payment already reversed.
            InvalidStateTransition: payment was never applied.
        """
        if self._ledger.get_by_idempotency_key(refunded_key(payment.id)) is not None:
            logger.warning(
                "payment_duplicate_refund",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(payment.invoice_id),
                },
            )
            raise DuplicatePaymentApplication(
                payment_id=str(payment.id),
                invoice_id=str(payment.invoice_id),
                operation="refund",
            )

        if payment.applied_at is None:
            logger.warning(
                "payment_refund_rejected",
                extra={
                    "payment_id": str(payment.id),
                    "current_state": payment.status,
                    "reason": "never_applied",
                },
            )
            raise InvalidStateTransition(
                entity_type="Payment",
                entity_id=str(payment.id),
                current_state=payment.status,
                target_state=PaymentStatus.REFUNDED.value,
                reason="payment was never applied",
            )

        invoice = self._invoice(payment)
        before = invoice.amount_paid
        invoice.amount_paid = max(before - payment.amount, ZERO)
        reduction = before - invoice.amount_paid
        invoice.updated_by_id = actor_id

        reopened = False
        if (
            invoice.status == InvoiceStatus.PAID.value
            and invoice.amount_paid < invoice.amount_due
        ):
            invoice.status = InvoiceStatus.SENT.value
            invoice.paid_at = None
            reopened = True

        entry = self._recorder.record(
            LedgerEntryRequest(
                entry_type=LedgerEntryType.ADJUSTMENT,
                direction=LedgerDirection.INCREASE,
                category=LedgerCategory.REFUND,
                description=f"Refund against invoice {invoice.invoice_number}",
                amount=reduction,
                entry_date=self._entry_date(payment.refunded_at),
                idempotency_key=refunded_key(payment.id),
                **self._scope(invoice, payment),
            ),
            actor_id=actor_id,
        )
        self.session.flush()

        logger.info(
            "payment_reversed",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "amount": str(reduction),
                "amount_paid": str(invoice.amount_paid),
                "invoice_status": invoice.status,
                "reopened": reopened,
            },
        )
        return PaymentApplication(
            payment_id=payment.id,
            invoice_id=invoice.id,
            amount=reduction,
            amount_paid=invoice.amount_paid,
            amount_due=invoice.amount_due,
            invoice_status=invoice.status,
            ledger_entry_id=entry.id,
            reopened=reopened,
        )
