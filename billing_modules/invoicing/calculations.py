"""
Invoice calculations (``billing_modules.invoicing.calculations``).

Responsibility
--------------
Pure date and money arithmetic for billing periods: anchored month
stepping, period windows, day-based proration and flat late fees.

Architecture position
---------------------
**Modules layer** -- pure functions with ZERO I/O.  Called by
``InvoiceGenerator``; safe to property-test in isolation.

Invariants enforced
-------------------
* Period N is always derived from the rental's start_date, never chained
  from period N-1, so a 31st anchor returns to the 31st after February.
* Periods are contiguous: period N ends the day before period N+1 starts.
* All money results go through ``round_money`` (cents, ROUND_HALF_UP).
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from ledger_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money


@dataclass(frozen=True)
class BillingPeriod:
    """One billing window of a rental.  ``end`` is inclusive."""
    index: int
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(
                f"Billing period ends before it starts: {self.start} > {self.end}"
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def add_months(anchor: date, months: int) -> date:
    """Advance ``anchor`` by whole months, clamping to the month's last day."""
    if months < 0:
        raise ValueError("months must be non-negative")
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor.day, last_day))


def billing_period(start_date: date, index: int) -> BillingPeriod:
    """Period ``index`` of a rental starting on ``start_date``."""
    start = add_months(start_date, index)
    end = add_months(start_date, index + 1) - timedelta(days=1)
    return BillingPeriod(index=index, start=start, end=end)


def prorate(
    monthly_rate: Decimal,
    period: BillingPeriod,
    window_end: date,
    places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """Charge for ``[period.start, window_end]`` as a share of the full period."""
    if window_end >= period.end:
        return round_money(monthly_rate, places)
    if window_end < period.start:
        raise ValueError(
            f"Proration window ends before the period starts: {window_end}"
        )
    days = (window_end - period.start).days + 1
    return round_money(monthly_rate * Decimal(days) / Decimal(period.days), places)


def late_fee(
    monthly_rate: Decimal,
    late_fee_rate: Decimal,
    overdue_periods: int,
    places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Flat late fee: ``late_fee_rate x monthly_rate`` per overdue invoice
    counted at the start of a billing period.

    Never compounds on previously accrued fees: the base is always the
    contractual monthly rate.
    """
    if overdue_periods <= 0 or late_fee_rate <= 0:
        return ZERO
    return round_money(late_fee_rate * monthly_rate * Decimal(overdue_periods), places)
