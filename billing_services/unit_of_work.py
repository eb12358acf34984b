"""
Per-rental unit of work with bounded retry.

Responsibility:
    Runs one orchestrator step inside a single database transaction while
    holding the rental's in-process lock.  Either every invoice, payment
    and ledger change of the step commits, or none does.

Retry policy:
    Conflicts (``ConcurrencyConflict``, and the SQLAlchemy errors that signal
    one) roll back and retry up to ``retry_attempts`` times with exponential
    backoff ``min(base * 2 ** attempt, max)``.  Once the attempts are spent
    the last ``ConcurrencyConflict`` propagates with ``attempts`` set.

    Every other exception rolls back and propagates unchanged on the first
    attempt.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from billing_config.schema import ConcurrencySettings
from billing_services.locking import RentalLockRegistry
from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import ConcurrencyConflict
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

# Database errors that mean "someone else changed this first".
CONFLICT_ERRORS = (StaleDataError, IntegrityError, OperationalError)


def backoff_delay(attempt: int, settings: ConcurrencySettings) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    return min(
        settings.backoff_base_seconds * (2 ** attempt),
        settings.backoff_max_seconds,
    )


class UnitOfWork:
    """
    Executes work functions transactionally under a rental lock.

    Usage:
        uow = UnitOfWork(session_factory, locks, config.concurrency)
        invoice = uow.run(rental_id, lambda session: issue(session), operation="send_invoice")
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        locks: RentalLockRegistry,
        settings: ConcurrencySettings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._settings = settings
        self._sleep = sleep

    def _attempt(self, lock_key: Hashable, work: Callable[[Session], T]) -> T:
        with self._locks.hold(lock_key, self._settings.lock_timeout_seconds):
            try:
                with session_scope(self._session_factory) as session:
                    return work(session)
            except CONFLICT_ERRORS as exc:
                raise ConcurrencyConflict("Rental", str(lock_key)) from exc

    def run(self, lock_key: Hashable, work: Callable[[Session], T], operation: str) -> T:
        """
        Run ``work(session)`` and commit its changes.

        Raises:
            ConcurrencyConflict: still conflicting after every retry.
        """
        attempts = self._settings.retry_attempts
        attempt = 0
        while True:
            try:
                return self._attempt(lock_key, work)
            except ConcurrencyConflict as exc:
                if attempt + 1 >= attempts:
                    logger.error(
                        "unit_of_work_retries_exhausted",
                        extra={
                            "operation": operation,
                            "lock_key": str(lock_key),
                            "attempts": attempts,
                        },
                    )
                    raise ConcurrencyConflict(
                        exc.entity_type, exc.entity_id, attempts=attempts
                    ) from exc
                delay = backoff_delay(attempt, self._settings)
                logger.warning(
                    "unit_of_work_conflict_retry",
                    extra={
                        "operation": operation,
                        "lock_key": str(lock_key),
                        "attempt": attempt + 1,
                        "delay_seconds": delay,
                    },
                )
                self._sleep(delay)
                attempt += 1
