"""
Typed Exception Hierarchy for the rental billing core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing callers must react to errors precisely: a duplicate webhook is a
no-op, a concurrency conflict is retried, a validation failure goes back to
the owner who typed the data.  Parsing message strings for that is fragile,
so every error here:

  1. Has its own class (catch by type, not by message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (entity id, expected vs actual state)

Example - WRONG way to handle errors:
    try:
        orchestrator_step()
    except Exception as e:
        if "already applied" in str(e):
            ...

Example - RIGHT way:
    try:
        reconciler.apply(payment)
    except DuplicatePaymentApplication as e:
        log.info("duplicate webhook", extra={"payment_id": e.payment_id})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingError (base)
    |
    +-- ValidationError
    +-- EntityNotFoundError
    +-- InvalidStateTransition
    |
    +-- PaymentApplicationError
    |   +-- DuplicatePaymentApplication
    |   +-- OverpaymentDetected          (warning, never raised to callers)
    |
    +-- TransientError
    |   +-- ConcurrencyConflict
    |   +-- ExternalCollaboratorTimeout
    |   +-- ExternalCollaboratorError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                           | When Raised
-------------------------------|----------------------------------------------
VALIDATION_ERROR               | Malformed input (negative amount, missing field)
ENTITY_NOT_FOUND               | Unknown id, or id owned by another owner
INVALID_STATE_TRANSITION       | Transition not allowed from the current state
DUPLICATE_PAYMENT_APPLICATION  | Payment id already applied (idempotency key)
OVERPAYMENT_DETECTED           | amount_paid exceeds amount_due (warning)
CONCURRENCY_CONFLICT           | Another writer holds or changed the rental
EXTERNAL_COLLABORATOR_TIMEOUT  | Signature / charge call exceeded its timeout
EXTERNAL_COLLABORATOR_ERROR    | Signature / charge call raised
IMMUTABILITY_VIOLATION         | UPDATE or DELETE attempted on a ledger entry

===============================================================================
HANDLING PATTERNS
===============================================================================

1. TRANSIENT ERRORS ARE RETRYABLE:

    except TransientError:
        scheduler.retry_later()

2. DUPLICATES ARE SUCCESS-LIKE:

    except DuplicatePaymentApplication:
        return ack()

3. OVERPAYMENT IS A WARNING:
   The reconciler returns OverpaymentDetected instances in its result's
   ``warnings``; the payment is still recorded.
"""


class BillingError(Exception):
    """
    Base exception for all billing core errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "BILLING_ERROR"


class ValidationError(BillingError):
    """Input failed validation before any mutation took place."""

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        fields: tuple[str, ...] = (),
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.fields = tuple(fields)
        super().__init__(message)


class EntityNotFoundError(BillingError):
    """Entity does not exist or is not visible to the calling owner."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class InvalidStateTransition(BillingError):
    """
    Requested transition is not legal from the entity's current state.

    Reported to the caller, never silently ignored.  No retry makes sense
    without changed input.
    """

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.target_state = target_state
        self.reason = reason
        message = (
            f"{entity_type} {entity_id} cannot move from "
            f"'{current_state}' to '{target_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Payment application


class PaymentApplicationError(BillingError):
    """Base exception for payment application outcomes."""

    code: str = "PAYMENT_APPLICATION_ERROR"


class DuplicatePaymentApplication(PaymentApplicationError):
    """
    Payment id was already applied (or already reversed).

    The payment id is the idempotency key: a replayed webhook must not
    move money twice.  Callers treat this as an idempotent no-op.
    """

    code: str = "DUPLICATE_PAYMENT_APPLICATION"

    def __init__(self, payment_id: str, invoice_id: str, operation: str = "apply"):
        self.payment_id = payment_id
        self.invoice_id = invoice_id
        self.operation = operation
        super().__init__(
            f"Payment {payment_id} already processed ({operation}) "
            f"against invoice {invoice_id}"
        )


class OverpaymentDetected(PaymentApplicationError):
    """
    Payment pushed amount_paid above amount_due.

    Not raised: the reconciler records the payment as an adjustment and
    returns this object as a warning so funds received are never lost.
    """

    code: str = "OVERPAYMENT_DETECTED"

    def __init__(
        self,
        payment_id: str,
        invoice_id: str,
        amount_due: str,
        amount_paid: str,
        excess: str,
    ):
        self.payment_id = payment_id
        self.invoice_id = invoice_id
        self.amount_due = amount_due
        self.amount_paid = amount_paid
        self.excess = excess
        super().__init__(
            f"Overpayment on invoice {invoice_id} by payment {payment_id}: "
            f"paid {amount_paid} against {amount_due} (excess {excess})"
        )


# Transient failures


class TransientError(BillingError):
    """Base exception for failures a caller may retry later."""

    code: str = "TRANSIENT_ERROR"


class ConcurrencyConflict(TransientError):
    """Two writers raced on the same rental."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int = 1):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id} "
            f"after {attempts} attempt(s)"
        )


class ExternalCollaboratorTimeout(TransientError):
    """An external collaborator did not answer within its timeout."""

    code: str = "EXTERNAL_COLLABORATOR_TIMEOUT"

    def __init__(self, collaborator: str, timeout_seconds: float, entity_id: str | None = None):
        self.collaborator = collaborator
        self.timeout_seconds = timeout_seconds
        self.entity_id = entity_id
        super().__init__(
            f"{collaborator} did not respond within {timeout_seconds}s"
            + (f" for {entity_id}" if entity_id else "")
        )


class ExternalCollaboratorError(TransientError):
    """An external collaborator raised instead of answering."""

    code: str = "EXTERNAL_COLLABORATOR_ERROR"

    def __init__(self, collaborator: str, reason: str, entity_id: str | None = None):
        self.collaborator = collaborator
        self.reason = reason
        self.entity_id = entity_id
        super().__init__(
            f"{collaborator} failed"
            + (f" for {entity_id}" if entity_id else "")
            + f": {reason}"
        )


# Immutability


class ImmutabilityError(BillingError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
