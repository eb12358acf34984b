"""
External collaborators and bounded calls to them.

Responsibility:
    Declares the two outbound ports the billing core depends on (signature
    confirmation and card charging) and runs calls to them on a worker
    pool with a hard timeout.

Invariants enforced:
    - No database session or rental lock is held while a collaborator runs;
      callers read what they need first and open the unit of work after.
    - A call that outlives its timeout raises ``ExternalCollaboratorTimeout``
      and its eventual result is discarded.
    - A call that raises surfaces as ``ExternalCollaboratorError``; provider
      exceptions never reach the orchestrator's callers untyped.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from billing_modules.rentals.models import Rental
from ledger_kernel.exceptions import ExternalCollaboratorError, ExternalCollaboratorTimeout
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")

T = TypeVar("T")


@dataclass(frozen=True)
class ChargeRequest:
    """An outbound card charge against one invoice."""
    owner_id: UUID
    invoice_id: UUID
    customer_id: UUID
    amount: Decimal
    payment_method_id: UUID | None = None


@dataclass(frozen=True)
class ChargeResult:
    """Gateway answer to a ChargeRequest."""
    succeeded: bool
    transaction_id: str | None = None
    processed_at: datetime | None = None
    failure_reason: str | None = None


@runtime_checkable
class SignatureProvider(Protocol):
    """Confirms that the customer signed the rental agreement."""

    def confirm(self, rental: Rental) -> bool: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Charges a customer's stored payment method."""

    def charge(self, request: ChargeRequest) -> ChargeResult: ...


class CollaboratorRunner:
    """
    Runs collaborator calls on a thread pool and waits a bounded time.

    Usage:
        runner = CollaboratorRunner(timeout_seconds=5.0)
        signed = runner.call("signature_provider", provider.confirm, rental)
    """

    def __init__(self, timeout_seconds: float, max_workers: int = 4):
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="billing-collaborator"
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def call(
        self,
        collaborator: str,
        fn: Callable[..., T],
        *args: Any,
        entity_id: str | None = None,
    ) -> T:
        """
        Call ``fn(*args)`` and return its result.

        Raises:
            ExternalCollaboratorTimeout: no answer within the timeout.
            ExternalCollaboratorError: ``fn`` raised.
        """
        future = self._executor.submit(fn, *args)
        try:
            result = future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning(
                "collaborator_timeout",
                extra={
                    "collaborator": collaborator,
                    "timeout_seconds": self._timeout,
                    "entity_id": entity_id,
                },
            )
            raise ExternalCollaboratorTimeout(collaborator, self._timeout, entity_id) from None
        except Exception as exc:
            logger.warning(
                "collaborator_failed",
                extra={
                    "collaborator": collaborator,
                    "entity_id": entity_id,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise ExternalCollaboratorError(collaborator, str(exc) or type(exc).__name__, entity_id) from exc
        logger.debug(
            "collaborator_responded",
            extra={"collaborator": collaborator, "entity_id": entity_id},
        )
        return result

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
