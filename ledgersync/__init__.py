"""
LedgerSync - Optimistic Ledger Layer

Client-side optimistic mutation and reconciliation for orders,
material purchases and expenses kept in a hosted Postgres database.

DESIGN PRINCIPLES:
1. Show the change now, confirm it later
2. Every failure has an explicit rollback
3. Derived ledger fields are computed, never trusted
4. A stale response never overwrites a newer one
5. Backend is swappable
"""

__version__ = "1.0.0"
__author__ = "LedgerSync Team"
