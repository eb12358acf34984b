"""
BaseService -- abstract base for services that write inside a caller's
transaction.

Responsibility:
    Provides the common constructor and session-handling contract for
    kernel and module services.  Every concrete service receives a
    SQLAlchemy ``Session`` that it uses via ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The Billing Orchestrator's
    unit of work owns commit/rollback, which is what makes invoice update
    plus ledger append atomic.
"""

from abc import ABC

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for session-bound services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in selectors.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to the system clock.
        """
        self.session = session
        self.clock = clock or SystemClock()
