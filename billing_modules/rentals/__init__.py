"""
Rentals Module.

Customer-unit rental agreements and the lifecycle
draft -> pending_signature -> active -> terminated | expired.
"""

from billing_modules.rentals.models import TERMINAL_RENTAL_STATES, Rental, RentalStatus
from billing_modules.rentals.workflows import RENTAL_WORKFLOW

__all__ = [
    "Rental",
    "RentalStatus",
    "TERMINAL_RENTAL_STATES",
    "RENTAL_WORKFLOW",
]
