"""
Ledger Data Models for LedgerSync

These models define the schemas for the financial aggregates the
optimistic layer keeps in its caches: orders, material purchases
and expenses, together with the line items, payments and notes
they own.

DESIGN DECISION: Derived ledger fields (total_amount, amount_paid,
balance, payment_status) live on the aggregate for display, but they
are NEVER trusted as input. Every code path that mutates or receives
an aggregate re-derives them through ledgersync.ledger.calculator.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


ZERO = Decimal("0")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class PaymentStatus(str, Enum):
    """Derived payment status of an aggregate."""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """How a payment was made."""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CHEQUE = "cheque"
    MOBILE_PAYMENT = "mobile_payment"


class OrderStatus(str, Enum):
    """Production status of an order."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ClientType(str, Enum):
    REGULAR = "regular"
    CONTRACT = "contract"


class NoteType(str, Enum):
    INFO = "info"
    CLIENT_FOLLOW_UP = "client_follow_up"
    URGENT = "urgent"
    INTERNAL = "internal"


class PaymentFrequency(str, Enum):
    """Installment cadence for material purchases."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


# =============================================================================
# OWNED RECORDS
# =============================================================================

class LineItem(BaseModel):
    """
    A single line on an aggregate.

    total_amount is always quantity * unit_price; a caller-supplied
    total is overwritten on construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: Optional[str] = None
    item_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name of the item"
    )
    category_name: str = Field(
        default="",
        max_length=200,
        description="Display name of the item's category"
    )
    item_id: Optional[str] = None
    category_id: Optional[str] = None
    size: Optional[str] = Field(default=None, max_length=50)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    total_amount: Decimal = Field(default=ZERO, ge=0)

    @model_validator(mode='after')
    def derive_total(self) -> 'LineItem':
        self.total_amount = self.quantity * self.unit_price
        return self


class Payment(BaseModel):
    """A payment made against an aggregate."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    date: dt.date = Field(default_factory=dt.date.today)
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(default=None, max_length=1000)


class Note(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: Optional[str] = None
    type: NoteType = NoteType.INFO
    text: str = Field(..., min_length=1, max_length=2000)


class MaterialInstallment(BaseModel):
    """One scheduled installment of a material purchase."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    installment_number: int = Field(..., ge=1)
    amount: Decimal
    due_date: dt.date
    status: InstallmentStatus = InstallmentStatus.PENDING
    payment_id: Optional[str] = None


# =============================================================================
# DERIVED LEDGER VALUES
# =============================================================================

class LedgerTotals(BaseModel):
    """
    Output of the ledger calculation.

    A negative balance is an overpayment. It is reported through
    is_overpaid / overpayment and is not an error.
    """
    model_config = ConfigDict(frozen=True)

    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    payment_status: PaymentStatus

    @property
    def is_overpaid(self) -> bool:
        return self.balance < 0

    @property
    def overpayment(self) -> Decimal:
        return -self.balance if self.balance < 0 else ZERO


# =============================================================================
# AGGREGATES
# =============================================================================

class LedgerAggregate(BaseModel):
    """
    Base class for every cached financial aggregate.

    Subclasses set `aggregate_type` to the backend table name the
    aggregate lives in.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    aggregate_type: ClassVar[str] = ""

    id: str = Field(..., min_length=1)
    items: list[LineItem] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)

    total_amount: Decimal = ZERO
    amount_paid: Decimal = ZERO
    balance: Decimal = ZERO
    payment_status: PaymentStatus = PaymentStatus.UNPAID

    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)

    @property
    def is_overpaid(self) -> bool:
        return self.balance < 0


class Order(LedgerAggregate):
    """A client order."""

    aggregate_type: ClassVar[str] = "orders"

    order_number: Optional[str] = None
    client_name: str = Field(..., min_length=1, max_length=200)
    client_id: Optional[str] = None
    client_type: ClientType = ClientType.REGULAR
    date: dt.date = Field(default_factory=dt.date.today)
    delivery_date: Optional[dt.date] = None
    status: OrderStatus = OrderStatus.PENDING


class MaterialPurchase(LedgerAggregate):
    """A purchase of materials from a supplier, optionally paid in installments."""

    aggregate_type: ClassVar[str] = "material_purchases"

    supplier_name: str = Field(..., min_length=1, max_length=200)
    supplier_id: Optional[str] = None
    material_name: str = Field(default="", max_length=200)
    unit: Optional[str] = Field(default=None, max_length=20)
    date: dt.date = Field(default_factory=dt.date.today)
    installment_plan: bool = False
    payment_frequency: Optional[PaymentFrequency] = None
    installments: list[MaterialInstallment] = Field(default_factory=list)


class Expense(LedgerAggregate):
    """A business expense."""

    aggregate_type: ClassVar[str] = "expenses"

    category: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    date: dt.date = Field(default_factory=dt.date.today)
