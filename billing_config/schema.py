"""
Billing configuration schema (``billing_config.schema``).

Responsibility
--------------
Typed, validated runtime settings for the billing core.

Architecture position
---------------------
**Config layer** -- pure data.  No dependency on kernel, modules or
services.

Invariants enforced
-------------------
* All timeouts and backoff delays are positive.
* retry_attempts >= 1 (the first attempt counts).
* currency is a 3-letter ISO 4217 code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

_logger = logging.getLogger("ledger_kernel.config")


@dataclass(frozen=True)
class ConcurrencySettings:
    """Per-rental serialization and retry settings."""
    lock_timeout_seconds: float = 10.0
    retry_attempts: int = 3
    backoff_base_seconds: float = 0.05
    backoff_max_seconds: float = 1.0

    def __post_init__(self):
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds cannot be negative")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError(
                f"backoff_max_seconds ({self.backoff_max_seconds}) cannot be "
                f"below backoff_base_seconds ({self.backoff_base_seconds})"
            )


@dataclass(frozen=True)
class CollaboratorSettings:
    """Bounded waits for external collaborators."""
    timeout_seconds: float = 5.0
    max_workers: int = 4

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("collaborator timeout_seconds must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")


@dataclass(frozen=True)
class InvoicingSettings:
    """Invoice numbering and cycle behaviour."""
    number_prefix: str = "INV"
    currency: str = "USD"
    money_decimal_places: int = 2
    auto_send_on_cycle: bool = True

    def __post_init__(self):
        if not self.number_prefix or not self.number_prefix.strip():
            raise ValueError("number_prefix cannot be empty")
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code, got '{self.currency}'")
        if not 0 <= self.money_decimal_places <= 9:
            raise ValueError("money_decimal_places must be between 0 and 9")


@dataclass(frozen=True)
class BillingConfig:
    """Complete billing core configuration."""
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    collaborators: CollaboratorSettings = field(default_factory=CollaboratorSettings)
    invoicing: InvoicingSettings = field(default_factory=InvoicingSettings)
    checksum: str | None = None

    def __post_init__(self):
        _logger.debug(
            "billing_config_initialized",
            extra={
                "retry_attempts": self.concurrency.retry_attempts,
                "collaborator_timeout_seconds": self.collaborators.timeout_seconds,
                "auto_send_on_cycle": self.invoicing.auto_send_on_cycle,
            },
        )
