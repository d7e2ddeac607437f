"""
Ledger Calculator

Pure functions that derive total_amount, amount_paid, balance and
payment_status from an aggregate's items and payments.

DESIGN DECISION: Totals are ALWAYS derived, never read back from the
caller or from the server. The optimistic path and the reconciliation
path both run through apply_ledger, so the two can never show a balance
computed from a different item set than the one rendered.
"""

from collections.abc import Iterable
from decimal import Decimal
from typing import TypeVar

from ledgersync.models.ledger import (
    ZERO,
    LedgerAggregate,
    LedgerTotals,
    LineItem,
    Payment,
    PaymentStatus,
)


A = TypeVar("A", bound=LedgerAggregate)


def line_total(item: LineItem) -> Decimal:
    """quantity * unit_price, ignoring whatever total the item carries."""
    return item.quantity * item.unit_price


def derive_payment_status(total_amount: Decimal, amount_paid: Decimal) -> PaymentStatus:
    """
    Status thresholds:
        unpaid          total == 0 or nothing paid
        paid            paid >= total (includes overpayment)
        partially_paid  otherwise
    """
    if total_amount == 0 or amount_paid == 0:
        return PaymentStatus.UNPAID
    if amount_paid >= total_amount:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIALLY_PAID


def compute_ledger(
    items: Iterable[LineItem],
    payments: Iterable[Payment],
) -> LedgerTotals:
    """Compute the derived ledger values for a set of items and payments."""
    total_amount = sum((line_total(item) for item in items), ZERO)
    amount_paid = sum((payment.amount for payment in payments), ZERO)

    return LedgerTotals(
        total_amount=total_amount,
        amount_paid=amount_paid,
        balance=total_amount - amount_paid,
        payment_status=derive_payment_status(total_amount, amount_paid),
    )


def apply_ledger(aggregate: A) -> A:
    """
    Return a copy of `aggregate` whose derived fields match its
    items and payments. Item totals are rewritten as well.
    """
    items = [
        item.model_copy(update={"total_amount": line_total(item)})
        for item in aggregate.items
    ]
    totals = compute_ledger(items, aggregate.payments)

    return aggregate.model_copy(
        update={
            "items": items,
            "total_amount": totals.total_amount,
            "amount_paid": totals.amount_paid,
            "balance": totals.balance,
            "payment_status": totals.payment_status,
        }
    )


def ledger_of(aggregate: LedgerAggregate) -> LedgerTotals:
    """Derived values for an aggregate, without copying it."""
    return compute_ledger(aggregate.items, aggregate.payments)


def is_consistent(aggregate: LedgerAggregate) -> bool:
    """True when the stored derived fields match a fresh computation."""
    totals = ledger_of(aggregate)
    return (
        aggregate.total_amount == totals.total_amount
        and aggregate.amount_paid == totals.amount_paid
        and aggregate.balance == totals.balance
        and aggregate.payment_status == totals.payment_status
    )
