"""
Tests for ledger math and installment plans.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledgersync.ledger import (
    apply_ledger,
    build_installment_plan,
    compute_ledger,
    derive_payment_status,
    installment_due_dates,
    is_consistent,
    next_payment_date,
)
from ledgersync.models.ledger import (
    InstallmentStatus,
    LineItem,
    Order,
    Payment,
    PaymentFrequency,
    PaymentStatus,
)


def flyers():
    return LineItem(
        item_name="Flyers",
        category_name="Print",
        quantity=Decimal("10"),
        unit_price=Decimal("2000"),
    )


def payment(amount):
    return Payment(amount=Decimal(amount), date=date(2024, 3, 1))


class TestPaymentStatus:
    """Tests for payment status thresholds."""

    def test_zero_total_is_unpaid(self):
        """Test that an empty ledger is unpaid even with payments."""
        assert derive_payment_status(Decimal("0"), Decimal("0")) == PaymentStatus.UNPAID
        assert derive_payment_status(Decimal("0"), Decimal("50")) == PaymentStatus.UNPAID

    def test_nothing_paid_is_unpaid(self):
        assert derive_payment_status(Decimal("100"), Decimal("0")) == PaymentStatus.UNPAID

    def test_partial_payment(self):
        assert derive_payment_status(Decimal("100"), Decimal("99.99")) == PaymentStatus.PARTIALLY_PAID

    def test_exact_payment_is_paid(self):
        assert derive_payment_status(Decimal("100"), Decimal("100")) == PaymentStatus.PAID

    def test_overpayment_is_paid(self):
        assert derive_payment_status(Decimal("100"), Decimal("150")) == PaymentStatus.PAID


class TestComputeLedger:
    """Tests for ledger derivation on the reference order."""

    def test_order_without_payments(self):
        """Flyers x10 at 2000, no payments."""
        totals = compute_ledger([flyers()], [])

        assert totals.total_amount == Decimal("20000")
        assert totals.amount_paid == Decimal("0")
        assert totals.balance == Decimal("20000")
        assert totals.payment_status == PaymentStatus.UNPAID

    def test_first_partial_payment(self):
        """A 12000 payment leaves 8000 outstanding."""
        totals = compute_ledger([flyers()], [payment("12000")])

        assert totals.amount_paid == Decimal("12000")
        assert totals.balance == Decimal("8000")
        assert totals.payment_status == PaymentStatus.PARTIALLY_PAID

    def test_second_payment_settles(self):
        """12000 + 8000 settles the order."""
        totals = compute_ledger([flyers()], [payment("12000"), payment("8000")])

        assert totals.amount_paid == Decimal("20000")
        assert totals.balance == Decimal("0")
        assert totals.payment_status == PaymentStatus.PAID

    def test_overpayment(self):
        """Payments of 25000 against 20000 give a negative balance."""
        totals = compute_ledger([flyers()], [payment("20000"), payment("5000")])

        assert totals.balance == Decimal("-5000")
        assert totals.is_overpaid is True
        assert totals.overpayment == Decimal("5000")
        assert totals.payment_status == PaymentStatus.PAID

    def test_multiple_items_sum(self):
        """Test that item totals are summed exactly."""
        items = [
            flyers(),
            LineItem(item_name="Cards", quantity=Decimal("3"), unit_price=Decimal("0.10")),
        ]
        totals = compute_ledger(items, [])
        assert totals.total_amount == Decimal("20000.30")


class TestApplyLedger:
    """Tests for rewriting derived fields on aggregates."""

    def test_apply_ledger_overwrites_stale_fields(self):
        """Test that stored derived values are never trusted."""
        order = Order(
            id="o-1",
            client_name="Acme",
            items=[flyers()],
            payments=[payment("12000")],
            total_amount=Decimal("1"),
            amount_paid=Decimal("2"),
            balance=Decimal("3"),
            payment_status=PaymentStatus.PAID,
        )
        assert is_consistent(order) is False

        derived = apply_ledger(order)

        assert derived.total_amount == Decimal("20000")
        assert derived.amount_paid == Decimal("12000")
        assert derived.balance == Decimal("8000")
        assert derived.payment_status == PaymentStatus.PARTIALLY_PAID
        assert is_consistent(derived) is True

    def test_apply_ledger_is_idempotent(self):
        """Applying twice equals applying once."""
        order = Order(id="o-1", client_name="Acme", items=[flyers()], payments=[payment("500")])

        once = apply_ledger(order)
        twice = apply_ledger(once)

        assert twice == once

    def test_apply_ledger_returns_copy(self):
        """Test that the input aggregate is not modified."""
        order = Order(id="o-1", client_name="Acme", items=[flyers()])
        apply_ledger(order)
        assert order.total_amount == Decimal("0")


class TestInstallmentPlans:
    """Tests for material purchase installment plans."""

    def test_plan_sums_to_balance(self):
        """The last installment absorbs the rounding remainder."""
        plan = build_installment_plan(
            Decimal("100"), 3, PaymentFrequency.MONTHLY, date(2024, 1, 15)
        )

        assert [i.amount for i in plan] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(i.amount for i in plan) == Decimal("100")
        assert [i.installment_number for i in plan] == [1, 2, 3]
        assert all(i.status == InstallmentStatus.PENDING for i in plan)

    def test_monthly_dates_clamp_to_month_end(self):
        """Jan 31 monthly gives Feb 29 (leap year) then Mar 31."""
        dates = installment_due_dates(date(2024, 1, 31), 3, PaymentFrequency.MONTHLY)
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]

    def test_weekly_and_biweekly_dates(self):
        weekly = installment_due_dates(date(2024, 1, 1), 3, PaymentFrequency.WEEKLY)
        biweekly = installment_due_dates(date(2024, 1, 1), 2, PaymentFrequency.BIWEEKLY)

        assert weekly == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]
        assert biweekly == [date(2024, 1, 1), date(2024, 1, 15)]

    def test_quarterly_dates(self):
        dates = installment_due_dates(date(2024, 1, 10), 2, PaymentFrequency.QUARTERLY)
        assert dates == [date(2024, 1, 10), date(2024, 4, 10)]

    def test_rejects_empty_plan(self):
        with pytest.raises(ValueError):
            build_installment_plan(Decimal("100"), 0, PaymentFrequency.MONTHLY, date(2024, 1, 1))

    def test_rejects_settled_balance(self):
        with pytest.raises(ValueError):
            build_installment_plan(Decimal("0"), 2, PaymentFrequency.MONTHLY, date(2024, 1, 1))

    def test_next_payment_date_skips_paid(self):
        """Test that the earliest unpaid installment is next."""
        plan = build_installment_plan(
            Decimal("300"), 3, PaymentFrequency.MONTHLY, date(2024, 1, 1)
        )
        plan[0] = plan[0].model_copy(update={"status": InstallmentStatus.PAID})

        assert next_payment_date(plan) == date(2024, 2, 1)

    def test_next_payment_date_when_all_paid(self):
        plan = build_installment_plan(
            Decimal("100"), 1, PaymentFrequency.WEEKLY, date(2024, 1, 1)
        )
        plan = [i.model_copy(update={"status": InstallmentStatus.PAID}) for i in plan]

        assert next_payment_date(plan) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
