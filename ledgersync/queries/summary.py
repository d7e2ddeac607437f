"""
Collection Summary

DESIGN DECISION: Summaries are DETERMINISTIC and recomputed from items
and payments. The stored derived fields of an aggregate are never
summed directly; each aggregate's ledger is recomputed first, so a
summary can never disagree with the rows it summarizes.
"""

import datetime as dt
from collections.abc import Iterable
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ledgersync.ledger.calculator import ledger_of
from ledgersync.models.ledger import ZERO, LedgerAggregate, PaymentStatus


class LedgerSummary(BaseModel):
    """Totals over a set of aggregates."""

    count: int = 0
    total_amount: Decimal = ZERO
    amount_paid: Decimal = ZERO
    outstanding: Decimal = Field(
        default=ZERO,
        description="Sum of positive balances"
    )
    overpaid_total: Decimal = Field(
        default=ZERO,
        description="Sum of overpayments (magnitude of negative balances)"
    )
    by_status: dict[PaymentStatus, int] = Field(
        default_factory=lambda: {status: 0 for status in PaymentStatus}
    )


def _in_range(
    aggregate: LedgerAggregate,
    start_date: Optional[dt.date],
    end_date: Optional[dt.date],
) -> bool:
    date = getattr(aggregate, "date", None)
    if date is None:
        return start_date is None and end_date is None
    if start_date and date < start_date:
        return False
    if end_date and date > end_date:
        return False
    return True


def summarize(
    aggregates: Iterable[LedgerAggregate],
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
) -> LedgerSummary:
    """
    Summarize aggregates, optionally restricted to an inclusive date range.

    Provisional entries are counted like confirmed ones. Filter out
    temporary ids first for server-confirmed figures only.
    """
    summary = LedgerSummary()

    for aggregate in aggregates:
        if not _in_range(aggregate, start_date, end_date):
            continue

        totals = ledger_of(aggregate)
        summary.count += 1
        summary.total_amount += totals.total_amount
        summary.amount_paid += totals.amount_paid
        if totals.balance > 0:
            summary.outstanding += totals.balance
        summary.overpaid_total += totals.overpayment
        summary.by_status[totals.payment_status] += 1

    return summary
