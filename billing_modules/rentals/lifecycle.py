"""
Rental Lifecycle State Machine (``billing_modules.rentals.lifecycle``).

Responsibility
--------------
Owns every rental status change and the invoice side effects each one
triggers:

    draft -> pending_signature   fields_complete guard
    pending_signature -> active  signature confirmed; first invoice generated
    active -> terminated         effective date >= last invoiced period_end;
                                 missing periods + prorated final invoice
    active -> expired            fixed term reached; final window generated

Architecture position
---------------------
**Modules layer** -- imperative shell.  Declarative transitions live in
``workflows.py``; invoice arithmetic lives in the invoicing module.

Invariants enforced
-------------------
* Any transition not declared in ``RENTAL_WORKFLOW`` raises
  ``InvalidStateTransition`` (terminal states have none).
* Every query is owner-scoped; another owner's rental is "not found".
* The rental row is read ``FOR UPDATE`` before any change.

Failure modes
-------------
* ValidationError -- guard failed (missing fields, signature refused,
  effective date before the last invoiced period end).
* EntityNotFoundError -- unknown rental id for this owner.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select

from billing_modules.invoicing.generator import GeneratedInvoice, InvoiceGenerator
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.rentals.models import Rental, RentalStatus
from billing_modules.rentals.orm import RentalModel
from billing_modules.rentals.workflows import RENTAL_WORKFLOW
from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import (
    EntityNotFoundError,
    InvalidStateTransition,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService

logger = get_logger("modules.rentals.lifecycle")


@dataclass(frozen=True)
class LifecycleOutcome:
    """Rental after a transition plus the invoices the transition created."""
    rental: Rental
    invoices: tuple[GeneratedInvoice, ...] = field(default_factory=tuple)


class RentalLifecycle(BaseService):
    """
    Drives rentals through ``RENTAL_WORKFLOW``.

    Usage:
        lifecycle = RentalLifecycle(session, clock)
        lifecycle.submit_for_signature(owner_id, rental_id, actor_id)
        outcome = lifecycle.activate(owner_id, rental_id, actor_id, signature_confirmed=True)
    """

    def __init__(self, session, clock: Clock | None = None, generator: InvoiceGenerator | None = None):
        super().__init__(session, clock)
        self._generator = generator or InvoiceGenerator(session, self.clock)

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self, owner_id: UUID, rental_id: UUID, for_update: bool = False) -> RentalModel:
        """Load an owner's rental, optionally locking the row."""
        stmt = select(RentalModel).where(
            RentalModel.id == rental_id,
            RentalModel.owner_id == owner_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundError("Rental", str(rental_id))
        return model

    def _transition(self, model: RentalModel, action: str, target: RentalStatus, actor_id: UUID) -> None:
        transition = RENTAL_WORKFLOW.find(model.status, action)
        if transition is None or transition.to_state != target.value:
            logger.warning(
                "rental_transition_rejected",
                extra={
                    "rental_id": str(model.id),
                    "action": action,
                    "current_state": model.status,
                    "target_state": target.value,
                },
            )
            raise InvalidStateTransition(
                entity_type="Rental",
                entity_id=str(model.id),
                current_state=model.status,
                target_state=target.value,
            )
        previous = model.status
        model.status = target.value
        model.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "rental_transitioned",
            extra={
                "rental_id": str(model.id),
                "action": action,
                "from_state": previous,
                "to_state": target.value,
                "guard": transition.guard.name if transition.guard else None,
            },
        )

    def _guard_failed(self, model: RentalModel, guard: str, message: str, fields: tuple[str, ...]):
        logger.warning(
            "rental_guard_failed",
            extra={
                "rental_id": str(model.id),
                "guard": guard,
                "current_state": model.status,
                "fields": list(fields),
            },
        )
        raise ValidationError(
            message,
            entity_type="Rental",
            entity_id=str(model.id),
            fields=fields,
        )

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, rental: Rental, actor_id: UUID) -> Rental:
        """Persist a new rental in ``draft``."""
        if rental.status != RentalStatus.DRAFT:
            raise ValidationError(
                f"Rentals are created in draft, not {rental.status.value}",
                entity_type="Rental",
                entity_id=str(rental.id),
                fields=("status",),
            )
        model = RentalModel.from_dto(rental, created_by_id=actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info(
            "rental_created",
            extra={
                "rental_id": str(model.id),
                "customer_id": str(rental.customer_id) if rental.customer_id else None,
                "unit_id": str(rental.unit_id) if rental.unit_id else None,
                "monthly_rate": str(rental.monthly_rate) if rental.monthly_rate else None,
                "start_date": rental.start_date,
                "end_date": rental.end_date,
            },
        )
        return model.to_dto()

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit_for_signature(self, owner_id: UUID, rental_id: UUID, actor_id: UUID) -> Rental:
        model = self.load(owner_id, rental_id, for_update=True)
        if model.status == RentalStatus.DRAFT.value:
            missing = model.to_dto().missing_fields()
            if missing:
                self._guard_failed(
                    model,
                    "fields_complete",
                    f"Rental {model.id} is missing required fields: {', '.join(missing)}",
                    missing,
                )
        self._transition(model, "submit_for_signature", RentalStatus.PENDING_SIGNATURE, actor_id)
        return model.to_dto()

    def activate(
        self,
        owner_id: UUID,
        rental_id: UUID,
        actor_id: UUID,
        signature_confirmed: bool,
    ) -> LifecycleOutcome:
        """pending_signature -> active, then generate the first invoice."""
        model = self.load(owner_id, rental_id, for_update=True)
        if model.status == RentalStatus.PENDING_SIGNATURE.value and not signature_confirmed:
            self._guard_failed(
                model,
                "signature_confirmed",
                f"Signature for rental {model.id} was not confirmed",
                ("signature",),
            )
        self._transition(model, "activate", RentalStatus.ACTIVE, actor_id)

        now = self.clock.now()
        model.signed_at = now
        model.activated_at = now
        self.session.flush()

        rental = model.to_dto()
        first = self._generator.generate_first(rental, actor_id)
        return LifecycleOutcome(rental=rental, invoices=(first,))

    def terminate(
        self,
        owner_id: UUID,
        rental_id: UUID,
        effective_date: date,
        actor_id: UUID,
        issue: Callable[[InvoiceModel], Any] | None = None,
    ) -> LifecycleOutcome:
        """
        active -> terminated as of ``effective_date``.

        Bills every whole period up to the effective date and a prorated
        final invoice when it falls mid-period.  ``issue`` is handed to
        ``InvoiceGenerator.generate_due``.
        """
        model = self.load(owner_id, rental_id, for_update=True)
        if model.status == RentalStatus.ACTIVE.value:
            last_end = self._generator.last_invoiced_period_end(model.id)
            if last_end is not None and effective_date < last_end:
                self._guard_failed(
                    model,
                    "effective_after_last_period",
                    f"Termination date {effective_date} precedes the last "
                    f"invoiced period end {last_end}",
                    ("effective_date",),
                )
            if effective_date < model.start_date:
                self._guard_failed(
                    model,
                    "effective_after_last_period",
                    f"Termination date {effective_date} precedes start date {model.start_date}",
                    ("effective_date",),
                )

        rental = model.to_dto()
        generated: tuple[GeneratedInvoice, ...] = ()
        if rental.status == RentalStatus.ACTIVE:
            generated = tuple(
                self._generator.generate_due(
                    rental,
                    as_of=effective_date,
                    actor_id=actor_id,
                    cutoff=effective_date,
                    issue=issue,
                )
            )

        self._transition(model, "terminate", RentalStatus.TERMINATED, actor_id)
        model.terminated_at = self.clock.now()
        model.termination_date = effective_date
        self.session.flush()

        logger.info(
            "rental_terminated",
            extra={
                "rental_id": str(model.id),
                "effective_date": effective_date,
                "final_invoices": len(generated),
            },
        )
        return LifecycleOutcome(rental=model.to_dto(), invoices=generated)

    def expire(
        self,
        owner_id: UUID,
        rental_id: UUID,
        as_of: date,
        actor_id: UUID,
        issue: Callable[[InvoiceModel], Any] | None = None,
    ) -> LifecycleOutcome:
        """active -> expired once a fixed-term rental reaches end_date."""
        model = self.load(owner_id, rental_id, for_update=True)
        rental = model.to_dto()
        generated: tuple[GeneratedInvoice, ...] = ()
        if rental.status == RentalStatus.ACTIVE:
            if not rental.has_fixed_term or as_of < rental.end_date:
                self._guard_failed(
                    model,
                    "end_date_reached",
                    f"Rental {model.id} has not reached a fixed end date as of {as_of}",
                    ("end_date",),
                )
            generated = tuple(
                self._generator.generate_due(
                    rental,
                    as_of=rental.end_date,
                    actor_id=actor_id,
                    cutoff=rental.end_date,
                    issue=issue,
                )
            )

        self._transition(model, "expire", RentalStatus.EXPIRED, actor_id)
        self.session.flush()

        logger.info(
            "rental_expired",
            extra={
                "rental_id": str(model.id),
                "end_date": rental.end_date,
                "final_invoices": len(generated),
            },
        )
        return LifecycleOutcome(rental=model.to_dto(), invoices=generated)

    def can_expire(self, rental: Rental, as_of: date) -> bool:
        return (
            rental.status == RentalStatus.ACTIVE
            and rental.has_fixed_term
            and as_of >= rental.end_date
        )
