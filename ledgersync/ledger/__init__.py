"""Ledger math package."""

from ledgersync.ledger.calculator import (
    apply_ledger,
    compute_ledger,
    derive_payment_status,
    is_consistent,
    ledger_of,
    line_total,
)
from ledgersync.ledger.installments import (
    build_installment_plan,
    installment_due_dates,
    next_payment_date,
)

__all__ = [
    "apply_ledger",
    "build_installment_plan",
    "compute_ledger",
    "derive_payment_status",
    "installment_due_dates",
    "is_consistent",
    "ledger_of",
    "line_total",
    "next_payment_date",
]
