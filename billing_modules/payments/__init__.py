"""
Payments Module.

Payments received against invoices, and their application and reversal.
"""

from billing_modules.payments.models import Payment, PaymentApplication, PaymentStatus
from billing_modules.payments.workflows import PAYMENT_WORKFLOW

__all__ = [
    "Payment",
    "PaymentApplication",
    "PaymentStatus",
    "PAYMENT_WORKFLOW",
]
