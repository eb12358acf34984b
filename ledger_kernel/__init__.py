"""
Ledger Kernel

The append-only core of the rental billing system:
- Typed error taxonomy shared by every billing component
- Structured JSON logging
- Database base classes, engine and session scope
- Monotonic sequence allocation
- Immutable ledger entries with scope reconciliation
"""

__version__ = "0.1.0"
