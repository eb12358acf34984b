"""
Module: ledger_kernel.models.ledger_entry
Responsibility: ORM model and frozen DTO for the append-only ledger.  Every
    money-moving billing event (invoice issued, payment applied, refund,
    cancellation, manual expense) becomes exactly one row here.
Architecture position: Kernel > Models.  Imports only from db/.

Invariants enforced:
    - amount > 0 (check constraint); sign is carried by entry_type and
      direction, never by amount.
    - At least one of facility_id / customer_id / rental_id is set
      (check constraint).
    - idempotency_key is unique: one event produces at most one entry.
    - Rows are never updated or deleted (db/immutability.py).

Audit relevance:
    ``sequence`` is allocated from a locked counter row, so ordering within
    any scope is deterministic even for entries recorded in the same
    instant.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime, UUIDString


class LedgerEntryType(str, Enum):
    """Financial nature of a ledger entry."""

    INCOME = "income"
    EXPENSE = "expense"
    ADJUSTMENT = "adjustment"


class LedgerDirection(str, Enum):
    """Effect of an entry on its scope balance."""

    INCREASE = "increase"
    DECREASE = "decrease"


# income always increases and expense always decreases; adjustments may go
# either way (settlement vs refund).
ALLOWED_DIRECTIONS: dict[LedgerEntryType, frozenset[LedgerDirection]] = {
    LedgerEntryType.INCOME: frozenset({LedgerDirection.INCREASE}),
    LedgerEntryType.EXPENSE: frozenset({LedgerDirection.DECREASE}),
    LedgerEntryType.ADJUSTMENT: frozenset(
        {LedgerDirection.INCREASE, LedgerDirection.DECREASE}
    ),
}


class LedgerCategory:
    """Well-known categories written by the billing core."""

    RENT = "rent"
    PAYMENT = "payment"
    OVERPAYMENT = "overpayment"
    REFUND = "refund"
    INVOICE_CANCELLED = "invoice_cancelled"


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable view of a recorded ledger entry."""

    id: UUID
    owner_id: UUID
    sequence: int
    entry_type: LedgerEntryType
    direction: LedgerDirection
    category: str
    description: str
    amount: Decimal
    entry_date: date
    recorded_at: datetime
    facility_id: UUID | None = None
    customer_id: UUID | None = None
    rental_id: UUID | None = None
    invoice_id: UUID | None = None
    payment_id: UUID | None = None
    idempotency_key: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign implied by direction."""
        if self.direction == LedgerDirection.DECREASE:
            return -self.amount
        return self.amount


class LedgerEntryModel(Base):
    """
    ORM model for ledger entries.

    Not a TrackedBase: there is no updated_at because rows never change.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", name="uq_ledger_entries_idempotency_key"
        ),
        UniqueConstraint(
            "owner_id", "sequence", name="uq_ledger_entries_owner_sequence"
        ),
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        CheckConstraint(
            "facility_id IS NOT NULL OR customer_id IS NOT NULL "
            "OR rental_id IS NOT NULL",
            name="ck_ledger_entries_scope_present",
        ),
        Index("idx_ledger_entries_owner_date", "owner_id", "entry_date"),
        Index("idx_ledger_entries_rental_id", "rental_id"),
        Index("idx_ledger_entries_customer_id", "customer_id"),
        Index("idx_ledger_entries_facility_id", "facility_id"),
        Index("idx_ledger_entries_payment_id", "payment_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    facility_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    customer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rental_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    payment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def to_dto(self) -> LedgerEntry:
        """Convert ORM model to frozen dataclass."""
        return LedgerEntry(
            id=self.id,
            owner_id=self.owner_id,
            sequence=self.sequence,
            entry_type=LedgerEntryType(self.entry_type),
            direction=LedgerDirection(self.direction),
            category=self.category,
            description=self.description,
            amount=self.amount,
            entry_date=self.entry_date,
            recorded_at=self.recorded_at,
            facility_id=self.facility_id,
            customer_id=self.customer_id,
            rental_id=self.rental_id,
            invoice_id=self.invoice_id,
            payment_id=self.payment_id,
            idempotency_key=self.idempotency_key,
        )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntryModel #{self.sequence} {self.entry_type}/"
            f"{self.direction} {self.amount} {self.category}>"
        )
