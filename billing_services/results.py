"""
Billing Orchestrator results (``billing_services.results``).

Every mutating orchestrator call returns a ``BillingResult`` instead of
raising: components raise typed ``BillingError`` subclasses and the
orchestrator maps them onto a ``BillingStatus``.

    BillingError subclass              -> BillingStatus
    ---------------------------------     -----------------
    (none)                             -> SUCCESS
    DuplicatePaymentApplication        -> DUPLICATE
    ValidationError                    -> REJECTED
    InvalidStateTransition             -> REJECTED
    EntityNotFoundError                -> REJECTED
    ImmutabilityViolationError         -> REJECTED
    ConcurrencyConflict (exhausted)    -> TRANSIENT_FAILURE
    ExternalCollaboratorTimeout        -> TRANSIENT_FAILURE
    ExternalCollaboratorError          -> TRANSIENT_FAILURE
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.exceptions import BillingError


class BillingStatus(str, Enum):
    """Outcome of an orchestrator operation."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class BillingResult:
    """Typed result of one orchestrator operation."""

    status: BillingStatus
    value: Any = None
    error: BillingError | None = None
    warnings: tuple[BillingError, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status in (BillingStatus.SUCCESS, BillingStatus.DUPLICATE)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @classmethod
    def success(cls, value: Any = None, warnings: tuple[BillingError, ...] = ()) -> "BillingResult":
        return cls(status=BillingStatus.SUCCESS, value=value, warnings=tuple(warnings))


@dataclass(frozen=True)
class RentalCycleResult:
    """What one billing-cycle step did to one rental."""

    rental_id: UUID
    overdue_invoice_ids: tuple[UUID, ...] = ()
    generated_invoice_ids: tuple[UUID, ...] = ()
    sent_invoice_ids: tuple[UUID, ...] = ()
    expired: bool = False


@dataclass(frozen=True)
class BillingCycleReport:
    """Per-rental results of ``run_billing_cycle``."""

    owner_id: UUID
    as_of: date
    results: dict[UUID, BillingResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> tuple[UUID, ...]:
        return tuple(rid for rid, r in self.results.items() if r.is_success)

    @property
    def failed(self) -> tuple[UUID, ...]:
        return tuple(rid for rid, r in self.results.items() if not r.is_success)

    @property
    def invoices_generated(self) -> int:
        return sum(
            len(r.value.generated_invoice_ids)
            for r in self.results.values()
            if r.is_success and r.value is not None
        )
