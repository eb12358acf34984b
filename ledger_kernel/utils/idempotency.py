"""
Idempotency keys for ledger entries.

A key names the billing event that caused an entry, e.g.
``invoices:invoice.sent:<invoice id>`` or ``payments:payment.applied:<payment id>``.
``ledger_entries.idempotency_key`` is unique, so replaying a webhook or
retrying a unit of work can never post the same event twice.
"""

from uuid import UUID

KEY_SEPARATOR = ":"


def generate_idempotency_key(producer: str, event_type: str, event_id: UUID | str) -> str:
    """``producer:event_type:event_id``; producer and event_type must not contain ':'."""
    if KEY_SEPARATOR in producer or KEY_SEPARATOR in event_type:
        raise ValueError(f"Key parts may not contain {KEY_SEPARATOR!r}: {producer}, {event_type}")
    return KEY_SEPARATOR.join((producer, event_type, str(event_id)))


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """Split a key back into (producer, event_type, event_id)."""
    producer, sep, rest = key.partition(KEY_SEPARATOR)
    event_type, sep2, event_id = rest.partition(KEY_SEPARATOR)
    if not (sep and sep2 and producer and event_type and event_id):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return producer, event_type, event_id
