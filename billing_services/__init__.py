"""
billing_services -- Package init and public API.

Responsibility:
    Stateful orchestration over billing_modules and ledger_kernel.  This is
    the only layer that opens sessions, commits, holds rental locks or
    calls external collaborators.

Architecture position:
    Services -- top of the stack.

    Dependency direction (enforced by tests/architecture/test_import_boundaries.py):
        billing_services/ -> billing_modules/ (allowed)
        billing_services/ -> ledger_kernel/   (allowed)
        ledger_kernel/    -> billing_services/ (FORBIDDEN)
        billing_modules/  -> billing_services/ (FORBIDDEN)
"""

from billing_services.billing_orchestrator import (
    SYSTEM_ACTOR_ID,
    BillingOrchestrator,
    PaymentEventOutcome,
)
from billing_services.collaborators import (
    ChargeRequest,
    ChargeResult,
    PaymentGateway,
    SignatureProvider,
)
from billing_services.reporting import FinancialSummary
from billing_services.results import (
    BillingCycleReport,
    BillingResult,
    BillingStatus,
    RentalCycleResult,
)

__all__ = [
    "BillingCycleReport",
    "BillingOrchestrator",
    "BillingResult",
    "BillingStatus",
    "ChargeRequest",
    "ChargeResult",
    "FinancialSummary",
    "PaymentEventOutcome",
    "PaymentGateway",
    "RentalCycleResult",
    "SYSTEM_ACTOR_ID",
    "SignatureProvider",
]
