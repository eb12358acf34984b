"""
Named counters for ledger sequence numbers and invoice numbers.

A counter is one row in ``sequence_counters`` locked with
``SELECT ... FOR UPDATE`` while it is incremented.  Reading ``max(seq) + 1``
from the numbered table is never used: two writers would see the same max.

Two families of names are in use:

    ledger:{owner_id}                     per-owner ledger entry sequence
    invoice:{owner_id}:{YYYYMM}           per-owner, per-month invoice number

The increment belongs to the caller's transaction; a rollback gives the
value back.  If two transactions race to create the same counter row the
loser gets ConcurrencyConflict and its unit of work is retried, at which
point the row exists and is simply locked.
"""

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.exceptions import ConcurrencyConflict
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), unique=True)
    current_value: Mapped[int] = mapped_column(default=0)


class SequenceService:
    """Allocates the next value of a named counter; never commits."""

    @staticmethod
    def ledger_sequence_name(owner_id) -> str:
        return f"ledger:{owner_id}"

    @staticmethod
    def invoice_sequence_name(owner_id, year: int, month: int) -> str:
        return f"invoice:{owner_id}:{year:04d}{month:02d}"

    def __init__(self, session: Session):
        self._session = session

    def _counter(self, sequence_name: str, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter, increment it and return the new value.

        The first value of a new counter is 1.

        Raises:
            ConcurrencyConflict: another transaction created the counter
                first; retry the unit of work.
        """
        counter = self._counter(sequence_name, lock=True)
        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=1)
            self._session.add(counter)
            try:
                self._session.flush()
            except IntegrityError as exc:
                logger.info("sequence_counter_create_race", extra={"sequence_name": sequence_name})
                raise ConcurrencyConflict("SequenceCounter", sequence_name) from exc
        else:
            counter.current_value += 1
            self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last allocated value, or None if the counter was never used."""
        counter = self._counter(sequence_name, lock=False)
        return counter.current_value if counter else None
