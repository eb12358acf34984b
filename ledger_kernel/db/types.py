"""
Money precision and rounding shared by models, the ledger and the modules.

Amounts are Decimal end to end.  The database stores Numeric(38, 9) (see
``Base.type_annotation_map``); billed amounts are rounded to cents with
ROUND_HALF_UP through ``round_money`` and nowhere else.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

MONEY_DECIMAL_PLACES = 2
ZERO = Decimal("0")


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a billed amount (rent, proration, late fee) half-up."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a driver or caller value to Decimal.

    Floats go through ``repr`` so 0.1 becomes Decimal("0.1"), not its binary
    expansion.  None is treated as zero.

    Raises:
        ValueError: If the value is not a number.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc
