"""
Data Models Package

This package contains all Pydantic models used in LedgerSync.
All data flowing through the optimistic layer must conform to these schemas.
"""

from ledgersync.models.ledger import (
    ClientType,
    Expense,
    InstallmentStatus,
    LedgerAggregate,
    LedgerTotals,
    LineItem,
    MaterialInstallment,
    MaterialPurchase,
    Note,
    NoteType,
    Order,
    OrderStatus,
    Payment,
    PaymentFrequency,
    PaymentMethod,
    PaymentStatus,
)
from ledgersync.models.drafts import (
    AggregateDraft,
    ExpenseDraft,
    ItemDraft,
    MaterialPurchaseDraft,
    NoteDraft,
    OrderDraft,
    PaymentDraft,
    ResolvableReference,
    ValidationIssue,
    ValidationResult,
)
from ledgersync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ClientType",
    "Expense",
    "InstallmentStatus",
    "LedgerAggregate",
    "LedgerTotals",
    "LineItem",
    "MaterialInstallment",
    "MaterialPurchase",
    "Note",
    "NoteType",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentFrequency",
    "PaymentMethod",
    "PaymentStatus",
    # Draft models
    "AggregateDraft",
    "ExpenseDraft",
    "ItemDraft",
    "MaterialPurchaseDraft",
    "NoteDraft",
    "OrderDraft",
    "PaymentDraft",
    "ResolvableReference",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
