"""
RentalLockRegistry -- in-process mutual exclusion per rental.

Responsibility:
    Serializes every mutation of one rental inside this process.  Different
    rentals map to different locks and never contend.  Across processes the
    unit of work additionally reads the rental row ``SELECT ... FOR UPDATE``
    and relies on the rental's optimistic ``version`` column.

Invariants enforced:
    - No lock is held forever: acquisition waits at most ``timeout`` seconds
      and then raises ``ConcurrencyConflict``.
    - Locks are dropped from the registry once no thread holds or waits on
      them.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

from ledger_kernel.exceptions import ConcurrencyConflict
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.locking")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class RentalLockRegistry:
    """A lock per rental id, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable, timeout: float) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            ConcurrencyConflict: lock not acquired within ``timeout``.
        """
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning(
                    "rental_lock_timeout",
                    extra={"lock_key": str(key), "timeout_seconds": timeout},
                )
                raise ConcurrencyConflict("Rental", str(key))
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def active_keys(self) -> int:
        """Number of keys currently held or awaited."""
        with self._guard:
            return len(self._entries)
