"""Kernel ORM models."""

from ledger_kernel.models.ledger_entry import (
    ALLOWED_DIRECTIONS,
    LedgerCategory,
    LedgerDirection,
    LedgerEntry,
    LedgerEntryModel,
    LedgerEntryType,
)
from ledger_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "ALLOWED_DIRECTIONS",
    "LedgerCategory",
    "LedgerDirection",
    "LedgerEntry",
    "LedgerEntryModel",
    "LedgerEntryType",
    "SequenceCounter",
]
