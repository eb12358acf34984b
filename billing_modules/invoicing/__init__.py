"""
Invoicing Module.

One invoice per rental billing period: generation (with proration and
flat late fees), sending, overdue marking and cancellation.
"""

from billing_modules.invoicing.calculations import BillingPeriod, billing_period
from billing_modules.invoicing.models import ISSUED_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.workflows import INVOICE_WORKFLOW

__all__ = [
    "BillingPeriod",
    "billing_period",
    "Invoice",
    "InvoiceStatus",
    "ISSUED_STATUSES",
    "INVOICE_WORKFLOW",
]
