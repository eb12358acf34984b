"""
Rental Domain Models (``billing_modules.rentals.models``).

Responsibility
--------------
Frozen dataclass value objects for a customer-unit rental agreement and
its lifecycle states.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``RentalLifecycle`` and the Billing Orchestrator.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* monthly_rate rounds to at least 0.01 when set, security_deposit >= 0, late_fee_rate >= 0.
* end_date, if present, is on or after start_date.

A draft may be incomplete (customer, unit or insurance details still
missing); completeness is checked by the ``fields_complete`` guard when the
rental is submitted for signature.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.db.types import round_money
from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.rentals.models")


class RentalStatus(Enum):
    """Rental lifecycle states."""
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    TERMINATED = "terminated"
    EXPIRED = "expired"


TERMINAL_RENTAL_STATES = frozenset({RentalStatus.TERMINATED, RentalStatus.EXPIRED})


@dataclass(frozen=True)
class Rental:
    """A customer-unit rental agreement."""
    id: UUID
    owner_id: UUID
    start_date: date
    customer_id: UUID | None = None
    unit_id: UUID | None = None
    facility_id: UUID | None = None
    monthly_rate: Decimal | None = None
    end_date: date | None = None  # None = month-to-month
    security_deposit: Decimal = Decimal("0")
    late_fee_rate: Decimal = Decimal("0")  # fraction of monthly_rate per overdue period
    auto_renew: bool = False
    insurance_required: bool = False
    insurance_provider: str | None = None
    insurance_policy_number: str | None = None
    special_terms: str | None = None
    status: RentalStatus = RentalStatus.DRAFT
    signed_at: datetime | None = None
    activated_at: datetime | None = None
    terminated_at: datetime | None = None
    termination_date: date | None = None
    version: int = 1

    def __post_init__(self):
        problems = []
        if self.monthly_rate is not None and round_money(self.monthly_rate) <= 0:
            problems.append("monthly_rate must be at least one cent")
        if self.security_deposit < 0:
            problems.append("security_deposit cannot be negative")
        if self.late_fee_rate < 0:
            problems.append("late_fee_rate cannot be negative")
        if self.end_date is not None and self.end_date < self.start_date:
            problems.append("end_date cannot precede start_date")

        if problems:
            logger.warning(
                "rental_invalid",
                extra={"rental_id": str(self.id), "problems": problems},
            )
            raise ValueError("; ".join(problems))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RENTAL_STATES

    @property
    def has_fixed_term(self) -> bool:
        """True when the rental stops billing at end_date."""
        return self.end_date is not None and not self.auto_renew

    def missing_fields(self) -> tuple[str, ...]:
        """Fields required before the rental can be sent for signature."""
        missing = []
        if self.customer_id is None:
            missing.append("customer_id")
        if self.unit_id is None:
            missing.append("unit_id")
        if self.monthly_rate is None:
            missing.append("monthly_rate")
        if self.insurance_required:
            if not self.insurance_provider:
                missing.append("insurance_provider")
            if not self.insurance_policy_number:
                missing.append("insurance_policy_number")
        return tuple(missing)
