"""
Billing Modules.

Domain layers over the Ledger Kernel.  Each module contains:
- Domain models (frozen dataclasses)
- ORM persistence models
- Workflows (declarative state machines)
- Module services that drive those workflows

Modules:
- Rentals: Rental agreements and their lifecycle
- Invoicing: Billing periods, invoice generation and issuance
- Payments: Payment records and reconciliation against invoices

Modules never commit.  The Billing Orchestrator in ``billing_services``
owns every transaction.
"""
