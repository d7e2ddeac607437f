"""
Tests for collection summaries.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledgersync.models.ledger import LineItem, Order, Payment, PaymentStatus
from ledgersync.queries import summarize


def order(order_id, unit_price, paid=(), on=date(2024, 3, 1)):
    return Order(
        id=order_id,
        client_name="Acme",
        date=on,
        items=[LineItem(item_name="Flyers", quantity=1, unit_price=Decimal(unit_price))],
        payments=[Payment(amount=Decimal(p)) for p in paid],
    )


class TestSummarize:
    """Tests for summarize()."""

    def test_empty(self):
        summary = summarize([])
        assert summary.count == 0
        assert summary.total_amount == Decimal("0")
        assert summary.by_status[PaymentStatus.UNPAID] == 0

    def test_outstanding_and_overpaid_are_separate(self):
        summary = summarize([
            order("a", "100"),
            order("b", "100", paid=["40"]),
            order("c", "100", paid=["150"]),
        ])

        assert summary.count == 3
        assert summary.total_amount == Decimal("300")
        assert summary.amount_paid == Decimal("190")
        assert summary.outstanding == Decimal("160")
        assert summary.overpaid_total == Decimal("50")
        assert summary.by_status == {
            PaymentStatus.UNPAID: 1,
            PaymentStatus.PARTIALLY_PAID: 1,
            PaymentStatus.PAID: 1,
        }

    def test_stored_fields_are_not_trusted(self):
        """Stale stored totals do not leak into the summary."""
        stale = order("a", "100").model_copy(update={"total_amount": Decimal("999")})
        assert summarize([stale]).total_amount == Decimal("100")

    def test_date_range_is_inclusive(self):
        orders = [
            order("a", "100", on=date(2024, 1, 31)),
            order("b", "200", on=date(2024, 2, 1)),
            order("c", "300", on=date(2024, 2, 29)),
            order("d", "400", on=date(2024, 3, 1)),
        ]
        summary = summarize(orders, start_date=date(2024, 2, 1), end_date=date(2024, 2, 29))

        assert summary.count == 2
        assert summary.total_amount == Decimal("500")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
