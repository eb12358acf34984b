"""
Unit tests for the deterministic clock and idempotency keys.
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from ledger_kernel.domain.clock import DeterministicClock, SystemClock
from ledger_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)


class TestDeterministicClock:

    def test_now_is_stable(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_tick_advances_one_second(self):
        clock = DeterministicClock()
        before = clock.now()
        assert clock.tick() == before + timedelta(seconds=1)

    def test_set_date_is_noon_utc(self):
        clock = DeterministicClock()
        clock.set_date(date(2024, 3, 1))
        assert clock.now() == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 3, 1)

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None


class TestIdempotencyKeys:

    def test_round_trip(self):
        payment_id = uuid4()
        key = generate_idempotency_key("payments", "payment.applied", payment_id)
        assert key == f"payments:payment.applied:{payment_id}"
        assert parse_idempotency_key(key) == ("payments", "payment.applied", str(payment_id))

    def test_malformed_key(self):
        with pytest.raises(ValueError):
            parse_idempotency_key("no-separators")

    def test_separator_in_prefix_rejected(self):
        with pytest.raises(ValueError):
            generate_idempotency_key("pay:ments", "payment.applied", uuid4())
