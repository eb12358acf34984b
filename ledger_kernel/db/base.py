"""
Declarative base shared by the ledger and every billing module table.

Column conventions come from ``Base.type_annotation_map`` so model files only
write ``Mapped[Decimal]`` or ``Mapped[datetime]``:

    Decimal  -> Numeric(38, 9)   money is never a float
    datetime -> UTCDateTime      always timezone-aware UTC on load
    UUID     -> UUIDString       36-char text, portable across SQLite/PostgreSQL
    int      -> BigInteger       ledger sequences and version counters

Nothing here imports from models/, services/ or the billing modules.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID bound as its canonical string, loaded back as ``uuid.UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(str(value))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UTCDateTime(TypeDecorator):
    """
    Timestamp that is always aware UTC in Python.

    SQLite drops the offset on the way out; naive values are stamped UTC so
    ``processed_at`` and ``Clock.now()`` comparisons never mix aware and
    naive datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


class Base(DeclarativeBase):
    """Every table gets a uuid4 primary key named ``id``."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Mutable billing records (rentals, invoices, payments).

    ``created_by_id`` is mandatory: every record names the actor that
    created it.  ``updated_by_id`` is stamped by the module that mutates it.
    The append-only ledger does not use this base.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID] = mapped_column()
    updated_by_id: Mapped[UUID | None] = mapped_column()
