"""
Installment plans for material purchases.

The outstanding balance is split into equal installments rounded to
cents; the last installment absorbs the rounding remainder so that the
plan always sums to the balance exactly.
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from ledgersync.models.ledger import (
    InstallmentStatus,
    MaterialInstallment,
    PaymentFrequency,
)


CENT = Decimal("0.01")

_STEPS = {
    PaymentFrequency.WEEKLY: relativedelta(weeks=1),
    PaymentFrequency.BIWEEKLY: relativedelta(weeks=2),
    PaymentFrequency.MONTHLY: relativedelta(months=1),
    PaymentFrequency.QUARTERLY: relativedelta(months=3),
}


def installment_due_dates(
    first_payment_date: dt.date,
    total_installments: int,
    frequency: PaymentFrequency,
) -> list[dt.date]:
    # Offsets are taken from the first date so that e.g. Jan 31 monthly
    # gives Feb 28, Mar 31 rather than drifting to the 28th.
    step = _STEPS[frequency]
    return [first_payment_date + step * n for n in range(total_installments)]


def build_installment_plan(
    balance: Decimal,
    total_installments: int,
    frequency: PaymentFrequency,
    first_payment_date: dt.date,
) -> list[MaterialInstallment]:
    """
    Split `balance` into `total_installments` pending installments.

    Raises:
        ValueError: If balance is not positive or there are no installments
    """
    if total_installments < 1:
        raise ValueError("An installment plan needs at least one installment")
    if balance <= 0:
        raise ValueError("Nothing left to pay: balance must be positive")

    frequency = PaymentFrequency(frequency)
    regular = (balance / total_installments).quantize(CENT, rounding=ROUND_HALF_UP)
    last = balance - regular * (total_installments - 1)

    due_dates = installment_due_dates(first_payment_date, total_installments, frequency)

    return [
        MaterialInstallment(
            installment_number=number,
            amount=last if number == total_installments else regular,
            due_date=due_date,
            status=InstallmentStatus.PENDING,
        )
        for number, due_date in enumerate(due_dates, start=1)
    ]


def next_payment_date(installments: list[MaterialInstallment]) -> Optional[dt.date]:
    """Due date of the earliest installment that is not yet paid."""
    pending = [
        installment.due_date
        for installment in installments
        if installment.status != InstallmentStatus.PAID
    ]
    return min(pending) if pending else None
