"""
Invoice issuance (``billing_modules.invoicing.issuance``).

Responsibility
--------------
The invoice status changes owned by the Billing Orchestrator: sending a
draft (which accrues it to the ledger), marking a past-due invoice overdue,
and cancelling an invoice (reversing the accrual when it had been issued).

Architecture position
---------------------
**Modules layer** -- imperative shell.  Appends ledger entries through
``LedgerRecorder``; never commits.

Invariants enforced
-------------------
* draft -> sent appends exactly one ``income`` entry (idempotency key
  ``invoices:invoice.sent:<id>``).
* Cancelling an issued invoice appends exactly one ``adjustment/decrease``
  entry for its amount_due; cancelling a draft appends nothing.
* Only invoices with nothing paid can be cancelled.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_modules.invoicing.models import ISSUED_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.invoicing.workflows import INVOICE_WORKFLOW
from billing_modules.rentals.orm import RentalModel
from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import EntityNotFoundError, InvalidStateTransition
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import (
    LedgerCategory,
    LedgerDirection,
    LedgerEntryType,
)
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.ledger_recorder import LedgerEntryRequest, LedgerRecorder
from ledger_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("modules.invoicing.issuance")


class InvoiceIssuer(BaseService):
    """Sends, marks overdue and cancels invoices."""

    def __init__(self, session, clock: Clock | None = None, recorder: LedgerRecorder | None = None):
        super().__init__(session, clock)
        self._recorder = recorder or LedgerRecorder(session, self.clock)

    def load(self, owner_id: UUID, invoice_id: UUID, for_update: bool = False) -> InvoiceModel:
        """Load an owner's invoice or raise EntityNotFoundError."""
        stmt = select(InvoiceModel).where(
            InvoiceModel.id == invoice_id,
            InvoiceModel.owner_id == owner_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundError("Invoice", str(invoice_id))
        return model

    def _require_transition(self, model: InvoiceModel, action: str, target: InvoiceStatus) -> None:
        if INVOICE_WORKFLOW.find(model.status, action) is None:
            logger.warning(
                "invoice_transition_rejected",
                extra={
                    "invoice_id": str(model.id),
                    "action": action,
                    "current_state": model.status,
                    "target_state": target.value,
                },
            )
            raise InvalidStateTransition(
                entity_type="Invoice",
                entity_id=str(model.id),
                current_state=model.status,
                target_state=target.value,
            )

    def _scope(self, model: InvoiceModel) -> dict:
        rental = self.session.get(RentalModel, model.rental_id)
        return {
            "owner_id": model.owner_id,
            "facility_id": rental.facility_id if rental is not None else None,
            "customer_id": model.customer_id,
            "rental_id": model.rental_id,
            "invoice_id": model.id,
        }

    def send(self, model: InvoiceModel, actor_id: UUID) -> Invoice:
        """draft -> sent, accruing amount_due as income."""
        self._require_transition(model, "send", InvoiceStatus.SENT)

        model.status = InvoiceStatus.SENT.value
        model.sent_at = self.clock.now()
        model.updated_by_id = actor_id

        self._recorder.record(
            LedgerEntryRequest(
                entry_type=LedgerEntryType.INCOME,
                category=LedgerCategory.RENT,
                description=(
                    f"Invoice {model.invoice_number} for "
                    f"{model.period_start.isoformat()}..{model.period_end.isoformat()}"
                ),
                amount=model.amount_due,
                entry_date=self.clock.today(),
                idempotency_key=generate_idempotency_key(
                    "invoices", "invoice.sent", model.id
                ),
                **self._scope(model),
            ),
            actor_id=actor_id,
        )
        self.session.flush()

        logger.info(
            "invoice_sent",
            extra={
                "invoice_id": str(model.id),
                "invoice_number": model.invoice_number,
                "amount_due": str(model.amount_due),
            },
        )
        return model.to_dto()

    def mark_overdue(self, model: InvoiceModel, as_of: date, actor_id: UUID) -> bool:
        """sent -> overdue when due_date < as_of and the invoice is not covered."""
        if model.status != InvoiceStatus.SENT.value:
            return False
        if model.due_date >= as_of or model.amount_paid >= model.amount_due:
            return False

        model.status = InvoiceStatus.OVERDUE.value
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "invoice_marked_overdue",
            extra={
                "invoice_id": str(model.id),
                "due_date": model.due_date,
                "as_of": as_of,
                "outstanding": str(model.amount_due - model.amount_paid),
            },
        )
        return True

    def cancel(self, model: InvoiceModel, actor_id: UUID) -> Invoice:
        """Cancel an unpaid invoice; reverse its accrual if it was issued."""
        self._require_transition(model, "cancel", InvoiceStatus.CANCELLED)
        if model.amount_paid > 0:
            logger.warning(
                "invoice_transition_rejected",
                extra={
                    "invoice_id": str(model.id),
                    "action": "cancel",
                    "current_state": model.status,
                    "target_state": InvoiceStatus.CANCELLED.value,
                    "amount_paid": str(model.amount_paid),
                },
            )
            raise InvalidStateTransition(
                entity_type="Invoice",
                entity_id=str(model.id),
                current_state=model.status,
                target_state=InvoiceStatus.CANCELLED.value,
                reason=f"{model.amount_paid} has been paid against it",
            )

        was_issued = InvoiceStatus(model.status) in ISSUED_STATUSES
        model.status = InvoiceStatus.CANCELLED.value
        model.cancelled_at = self.clock.now()
        model.updated_by_id = actor_id

        if was_issued:
            self._recorder.record(
                LedgerEntryRequest(
                    entry_type=LedgerEntryType.ADJUSTMENT,
                    direction=LedgerDirection.DECREASE,
                    category=LedgerCategory.INVOICE_CANCELLED,
                    description=f"Invoice {model.invoice_number} cancelled",
                    amount=model.amount_due,
                    entry_date=self.clock.today(),
                    idempotency_key=generate_idempotency_key(
                        "invoices", "invoice.cancelled", model.id
                    ),
                    **self._scope(model),
                ),
                actor_id=actor_id,
            )
        self.session.flush()

        logger.info(
            "invoice_cancelled",
            extra={
                "invoice_id": str(model.id),
                "invoice_number": model.invoice_number,
                "reversed": was_issued,
            },
        )
        return model.to_dto()
