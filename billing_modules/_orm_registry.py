"""
Module ORM Registry (``billing_modules._orm_registry``).

Responsibility
--------------
Ensure the kernel and every module-level SQLAlchemy ORM model is imported
so that ``Base.metadata`` contains all table definitions before tables are
created, and register every immutability listener in one call.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``billing_modules``
packages and from ``ledger_kernel.db`` (allowed: modules -> kernel).
MUST NOT be imported by ``ledger_kernel``.

Usage
-----
The Billing Orchestrator, scripts and ``tests/conftest.py`` all call
``create_all_tables()`` and ``register_all_listeners()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``billing_modules.*.orm`` module.

    Rentals come first: invoices and payments carry foreign keys to them.
    Idempotent -- repeated calls are harmless.
    """
    import ledger_kernel.models  # noqa: F401
    # fmt: off
    import billing_modules.rentals.orm  # noqa: F401
    import billing_modules.invoicing.orm  # noqa: F401
    import billing_modules.payments.orm  # noqa: F401
    # fmt: on


def register_all_listeners() -> None:
    """Register ledger and payment immutability listeners (idempotent)."""
    from billing_modules.payments.orm import register_payment_listeners
    from ledger_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()
    register_payment_listeners()


def create_all_tables(engine=None) -> None:
    """Create kernel + module tables on ``engine`` (default: the global engine).

    Preconditions:
        Engine is passed or was initialized via ``init_engine_from_url()``.
    """
    from ledger_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables(engine)


def drop_all_tables(engine=None) -> None:
    """Drop every table. FOR TESTING ONLY."""
    from ledger_kernel.db.engine import drop_tables

    import_all_orm_models()
    drop_tables(engine)
