"""
LedgerRecorder -- append-only recording of financial events.

Responsibility:
    Validates and appends ledger entries.  Exposes ``reconcile(scope_id)``
    which derives a scope's balance from its entries.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the Invoice Generator
    (never directly), the Payment Reconciler and the Billing Orchestrator.

Invariants enforced:
    POSITIVE_AMOUNT -- amount > 0, sign carried by type and direction.
    SCOPED_ENTRY -- at least one of facility/customer/rental id is set.
    APPEND_ONLY -- the recorder has no update or delete path.
    SEQUENCE_MONOTONICITY -- each entry takes the next per-owner sequence.
    Idempotency -- an idempotency_key that already produced an entry
        returns that entry instead of appending a second one.

Failure modes:
    - ValidationError on any malformed request (nothing is written).
    - ConcurrencyConflict from SequenceService on counter creation races.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import to_decimal
from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import (
    ALLOWED_DIRECTIONS,
    LedgerDirection,
    LedgerEntry,
    LedgerEntryModel,
    LedgerEntryType,
)
from ledger_kernel.selectors.ledger_selector import (
    LedgerBalance,
    LedgerScope,
    LedgerSelector,
)
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger_recorder")

_MAX_CATEGORY = 100
_MAX_DESCRIPTION = 500


@dataclass(frozen=True)
class LedgerEntryRequest:
    """An entry to be recorded.  ``direction`` may be omitted for income and
    expense, where it is implied."""

    owner_id: UUID
    entry_type: LedgerEntryType
    category: str
    description: str
    amount: Decimal
    entry_date: date
    direction: LedgerDirection | None = None
    facility_id: UUID | None = None
    customer_id: UUID | None = None
    rental_id: UUID | None = None
    invoice_id: UUID | None = None
    payment_id: UUID | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class ReconciliationMismatch:
    """Ledger balance of a scope disagrees with its independently computed
    receivable."""

    scope_id: UUID
    ledger_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.ledger_balance - self.expected_balance


class LedgerRecorder(BaseService):
    """
    Appends immutable ledger entries.

    Non-goals:
        - Does NOT commit; the caller's unit of work owns the transaction
          so that an invoice/payment mutation and its entry land together.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)
        self._selector = LedgerSelector(session)

    def _validate(self, request: LedgerEntryRequest) -> tuple[Decimal, LedgerDirection]:
        errors: list[str] = []

        try:
            amount = to_decimal(request.amount)
        except ValueError:
            raise ValidationError(
                f"Ledger amount is not a number: {request.amount!r}",
                entity_type="LedgerEntry",
                fields=("amount",),
            )
        if not amount.is_finite() or amount <= 0:
            errors.append("amount")

        if (
            request.facility_id is None
            and request.customer_id is None
            and request.rental_id is None
        ):
            errors.append("scope")

        if not request.category or len(request.category) > _MAX_CATEGORY:
            errors.append("category")
        if not request.description or len(request.description) > _MAX_DESCRIPTION:
            errors.append("description")

        try:
            entry_type = LedgerEntryType(request.entry_type)
        except ValueError:
            errors.append("entry_type")
            entry_type = None

        direction = request.direction
        if entry_type is not None:
            allowed = ALLOWED_DIRECTIONS[entry_type]
            if direction is None:
                if len(allowed) == 1:
                    direction = next(iter(allowed))
                else:
                    errors.append("direction")
            elif LedgerDirection(direction) not in allowed:
                errors.append("direction")

        if errors:
            logger.warning(
                "ledger_entry_rejected",
                extra={
                    "owner_id": str(request.owner_id),
                    "fields": errors,
                    "amount": str(request.amount),
                    "entry_type": str(request.entry_type),
                },
            )
            raise ValidationError(
                f"Invalid ledger entry: {', '.join(errors)}",
                entity_type="LedgerEntry",
                fields=tuple(errors),
            )
        return amount, LedgerDirection(direction)

    def record(self, request: LedgerEntryRequest, actor_id: UUID) -> LedgerEntry:
        """
        Validate and append one entry.

        Postconditions:
            - Exactly one new row, or the existing row for the same
              idempotency_key.

        Raises:
            ValidationError: amount <= 0, no scope, bad type/direction,
                empty or oversize category/description.
        """
        amount, direction = self._validate(request)

        if request.idempotency_key is not None:
            existing = self._selector.get_by_idempotency_key(request.idempotency_key)
            if existing is not None:
                logger.info(
                    "ledger_entry_idempotent_hit",
                    extra={
                        "idempotency_key": request.idempotency_key,
                        "entry_id": str(existing.id),
                    },
                )
                return existing

        sequence = self._sequences.next_value(
            SequenceService.ledger_sequence_name(request.owner_id)
        )
        model = LedgerEntryModel(
            owner_id=request.owner_id,
            sequence=sequence,
            facility_id=request.facility_id,
            customer_id=request.customer_id,
            rental_id=request.rental_id,
            invoice_id=request.invoice_id,
            payment_id=request.payment_id,
            entry_type=LedgerEntryType(request.entry_type).value,
            direction=direction.value,
            category=request.category,
            description=request.description,
            amount=amount,
            entry_date=request.entry_date,
            recorded_at=self.clock.now(),
            idempotency_key=request.idempotency_key,
            created_by_id=actor_id,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "ledger_entry_recorded",
            extra={
                "entry_id": str(model.id),
                "sequence": sequence,
                "entry_type": model.entry_type,
                "direction": model.direction,
                "category": model.category,
                "amount": str(amount),
                "rental_id": str(request.rental_id) if request.rental_id else None,
                "payment_id": str(request.payment_id) if request.payment_id else None,
            },
        )
        return model.to_dto()

    def reconcile(
        self,
        owner_id: UUID,
        scope_id: UUID,
        scope: LedgerScope | None = None,
        as_of: date | None = None,
    ) -> LedgerBalance:
        """Balance of a facility/customer/rental: income - expense +/- adjustments."""
        return self._selector.balance(owner_id, scope_id, scope, as_of)

    def verify_rental(
        self,
        owner_id: UUID,
        rental_id: UUID,
        expected_balance: Decimal,
    ) -> ReconciliationMismatch | None:
        """
        Cross-check a rental's ledger balance against its open receivable.

        ``expected_balance`` is computed by the caller from invoices and
        payments: the sum over issued, non-cancelled invoices of
        (amount_due - amount_paid).

        Returns:
            None when the two agree, otherwise a ReconciliationMismatch
            carrying both numbers.
        """
        balance = self.reconcile(owner_id, rental_id, LedgerScope.RENTAL).balance
        if balance == expected_balance:
            logger.debug(
                "ledger_reconciled",
                extra={"rental_id": str(rental_id), "balance": str(balance)},
            )
            return None

        mismatch = ReconciliationMismatch(
            scope_id=rental_id,
            ledger_balance=balance,
            expected_balance=expected_balance,
        )
        logger.error(
            "ledger_reconciliation_mismatch",
            extra={
                "rental_id": str(rental_id),
                "ledger_balance": str(balance),
                "expected_balance": str(expected_balance),
                "difference": str(mismatch.difference),
            },
        )
        return mismatch
