"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only queries over the append-only ledger: filtered entry
    listings for the report surface and scope balances for reconciliation.
Architecture position: Kernel > Selectors.  Imports from db/ and models/.
    Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Owner scoping: every query filters by owner_id.
    - Deterministic ordering: entries are returned by (entry_date, sequence).
    - No stored balances: balances are always derived from entries.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import (
    LedgerDirection,
    LedgerEntry,
    LedgerEntryModel,
    LedgerEntryType,
)

logger = get_logger("selectors.ledger")


class LedgerScope(str, Enum):
    """Which denormalised reference a scope id is matched against."""

    FACILITY = "facility"
    CUSTOMER = "customer"
    RENTAL = "rental"


@dataclass(frozen=True)
class LedgerBalance:
    """
    Derived balance of one ledger scope.

    balance = income - expense + adjustments_increase - adjustments_decrease
    """

    scope_id: UUID
    income: Decimal
    expense: Decimal
    adjustments_increase: Decimal
    adjustments_decrease: Decimal
    entry_count: int

    @property
    def adjustment_net(self) -> Decimal:
        return self.adjustments_increase - self.adjustments_decrease

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense + self.adjustment_net


@dataclass(frozen=True)
class LedgerFilter:
    """Optional filters for ledger listings (all combined with AND)."""

    entry_types: tuple[LedgerEntryType, ...] = ()
    category: str | None = None
    facility_id: UUID | None = None
    customer_id: UUID | None = None
    rental_id: UUID | None = None
    payment_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None


class LedgerSelector:
    """
    Read-only access to ledger entries.

    Contract:
        Accepts a Session from the caller, performs read-only queries and
        returns frozen LedgerEntry / LedgerBalance DTOs.
    """

    def __init__(self, session: Session):
        self.session = session

    def _scope_clause(self, scope_id: UUID, scope: LedgerScope | None):
        if scope == LedgerScope.FACILITY:
            return LedgerEntryModel.facility_id == scope_id
        if scope == LedgerScope.CUSTOMER:
            return LedgerEntryModel.customer_id == scope_id
        if scope == LedgerScope.RENTAL:
            return LedgerEntryModel.rental_id == scope_id
        return or_(
            LedgerEntryModel.facility_id == scope_id,
            LedgerEntryModel.customer_id == scope_id,
            LedgerEntryModel.rental_id == scope_id,
        )

    def entries(
        self,
        owner_id: UUID,
        filters: LedgerFilter | None = None,
    ) -> list[LedgerEntry]:
        """List entries for an owner in deterministic order."""
        filters = filters or LedgerFilter()
        stmt = select(LedgerEntryModel).where(LedgerEntryModel.owner_id == owner_id)

        if filters.entry_types:
            stmt = stmt.where(
                LedgerEntryModel.entry_type.in_([t.value for t in filters.entry_types])
            )
        if filters.category is not None:
            stmt = stmt.where(LedgerEntryModel.category == filters.category)
        if filters.facility_id is not None:
            stmt = stmt.where(LedgerEntryModel.facility_id == filters.facility_id)
        if filters.customer_id is not None:
            stmt = stmt.where(LedgerEntryModel.customer_id == filters.customer_id)
        if filters.rental_id is not None:
            stmt = stmt.where(LedgerEntryModel.rental_id == filters.rental_id)
        if filters.payment_id is not None:
            stmt = stmt.where(LedgerEntryModel.payment_id == filters.payment_id)
        if filters.date_from is not None:
            stmt = stmt.where(LedgerEntryModel.entry_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(LedgerEntryModel.entry_date <= filters.date_to)

        stmt = stmt.order_by(LedgerEntryModel.entry_date, LedgerEntryModel.sequence)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def get_by_idempotency_key(self, key: str) -> LedgerEntry | None:
        row = self.session.execute(
            select(LedgerEntryModel).where(LedgerEntryModel.idempotency_key == key)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def scope_entries(
        self,
        owner_id: UUID,
        scope_id: UUID,
        scope: LedgerScope | None = None,
        as_of: date | None = None,
    ) -> list[LedgerEntry]:
        stmt = select(LedgerEntryModel).where(
            LedgerEntryModel.owner_id == owner_id,
            self._scope_clause(scope_id, scope),
        )
        if as_of is not None:
            stmt = stmt.where(LedgerEntryModel.entry_date <= as_of)
        stmt = stmt.order_by(LedgerEntryModel.entry_date, LedgerEntryModel.sequence)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def balance(
        self,
        owner_id: UUID,
        scope_id: UUID,
        scope: LedgerScope | None = None,
        as_of: date | None = None,
    ) -> LedgerBalance:
        """Sum income - expense +/- adjustments for one scope."""
        return summarize(scope_id, self.scope_entries(owner_id, scope_id, scope, as_of))


def summarize(scope_id: UUID, entries: Sequence[LedgerEntry]) -> LedgerBalance:
    """Fold a sequence of entries into a LedgerBalance."""
    income = expense = adj_up = adj_down = ZERO
    for entry in entries:
        if entry.entry_type == LedgerEntryType.INCOME:
            income += entry.amount
        elif entry.entry_type == LedgerEntryType.EXPENSE:
            expense += entry.amount
        elif entry.direction == LedgerDirection.INCREASE:
            adj_up += entry.amount
        else:
            adj_down += entry.amount

    return LedgerBalance(
        scope_id=scope_id,
        income=income,
        expense=expense,
        adjustments_increase=adj_up,
        adjustments_decrease=adj_down,
        entry_count=len(entries),
    )
