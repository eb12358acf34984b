"""
Rental ORM Models (``billing_modules.rentals.orm``).

Responsibility
--------------
SQLAlchemy persistence model for rentals.  Maps the frozen ``Rental``
dataclass to the ``rentals`` table.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``ledger_kernel``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class RentalModel(TrackedBase):
    """
    ORM model for rentals.

    Guarantees:
        - ``version`` is the optimistic lock column; SQLAlchemy bumps it on
          every UPDATE and raises StaleDataError when another transaction
          moved it first.
        - status defaults to 'draft'.
    """

    __tablename__ = "rentals"

    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_rentals_end_after_start",
        ),
        CheckConstraint(
            "monthly_rate IS NULL OR monthly_rate > 0",
            name="ck_rentals_rate_positive",
        ),
        Index("idx_rentals_owner_status", "owner_id", "status"),
        Index("idx_rentals_customer_id", "customer_id"),
        Index("idx_rentals_unit_id", "unit_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    unit_id: Mapped[UUID | None] = mapped_column(nullable=True)
    facility_id: Mapped[UUID | None] = mapped_column(nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    monthly_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    security_deposit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    late_fee_rate: Mapped[Decimal] = mapped_column(
        Numeric(38, 18), default=Decimal("0")
    )
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False)
    insurance_required: Mapped[bool] = mapped_column(Boolean, default=False)
    insurance_provider: Mapped[str | None] = mapped_column(String(255), nullable=True)
    insurance_policy_number: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    special_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="draft")
    signed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    terminated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.rentals.models import Rental, RentalStatus

        return Rental(
            id=self.id,
            owner_id=self.owner_id,
            customer_id=self.customer_id,
            unit_id=self.unit_id,
            facility_id=self.facility_id,
            start_date=self.start_date,
            end_date=self.end_date,
            monthly_rate=self.monthly_rate,
            security_deposit=self.security_deposit,
            late_fee_rate=self.late_fee_rate,
            auto_renew=self.auto_renew,
            insurance_required=self.insurance_required,
            insurance_provider=self.insurance_provider,
            insurance_policy_number=self.insurance_policy_number,
            special_terms=self.special_terms,
            status=RentalStatus(self.status),
            signed_at=self.signed_at,
            activated_at=self.activated_at,
            terminated_at=self.terminated_at,
            termination_date=self.termination_date,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "RentalModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            owner_id=dto.owner_id,
            customer_id=dto.customer_id,
            unit_id=dto.unit_id,
            facility_id=dto.facility_id,
            start_date=dto.start_date,
            end_date=dto.end_date,
            monthly_rate=dto.monthly_rate,
            security_deposit=dto.security_deposit,
            late_fee_rate=dto.late_fee_rate,
            auto_renew=dto.auto_renew,
            insurance_required=dto.insurance_required,
            insurance_provider=dto.insurance_provider,
            insurance_policy_number=dto.insurance_policy_number,
            special_terms=dto.special_terms,
            status=dto.status.value,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<RentalModel {self.id} [{self.status}] v{self.version}>"
