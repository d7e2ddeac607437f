"""
Draft Models for LedgerSync

A draft is what a creation form submits: free-text references that
still have to be resolved to durable identifiers, plus the raw item
and payment rows the user typed.

DESIGN DECISION: Drafts are deliberately permissive. A quantity of 0
or a blank category is representable here so that DraftValidator can
report every problem with its field path in one pass, instead of the
first pydantic error aborting construction.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ledgersync.models.ledger import (
    ClientType,
    NoteType,
    OrderStatus,
    PaymentFrequency,
    PaymentMethod,
)


class ResolvableReference(BaseModel):
    """
    A user-typed label that must map to a lookup-table identifier
    (client, category, item, supplier, size) before persistence.

    Accepts a bare string for convenience:
        ResolvableReference.model_validate("Print")
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: str = ""
    resolved_id: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def accept_plain_label(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"display_name": data}
        return data

    @property
    def normalized(self) -> str:
        """Trimmed, case-folded label used for matching."""
        return self.display_name.strip().casefold()

    @property
    def is_resolved(self) -> bool:
        return bool(self.resolved_id)

    @property
    def is_blank(self) -> bool:
        return not self.display_name.strip()


class ItemDraft(BaseModel):
    """One line typed into a creation form."""

    item: ResolvableReference = Field(default_factory=ResolvableReference)
    category: ResolvableReference = Field(default_factory=ResolvableReference)
    size: Optional[ResolvableReference] = None
    quantity: Decimal = Decimal("0")
    unit_price: Optional[Decimal] = None


class PaymentDraft(BaseModel):
    amount: Decimal = Decimal("0")
    payment_date: Optional[dt.date] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = None


class NoteDraft(BaseModel):
    type: NoteType = NoteType.INFO
    text: str = ""


class AggregateDraft(BaseModel):
    """
    Common shape of every creation draft.

    Subclasses declare which field holds the counterparty reference
    and which lookup table it resolves against.
    """

    aggregate_type: ClassVar[str] = ""
    counterparty_field: ClassVar[str] = ""
    counterparty_entity: ClassVar[str] = ""

    date: dt.date = Field(default_factory=dt.date.today)
    items: list[ItemDraft] = Field(default_factory=list)
    payments: list[PaymentDraft] = Field(default_factory=list)
    notes: list[NoteDraft] = Field(default_factory=list)

    @property
    def counterparty(self) -> ResolvableReference:
        return getattr(self, self.counterparty_field)

    def header_fields(self) -> dict[str, Any]:
        """Aggregate-specific top-level fields, JSON-ready."""
        return {"date": self.date.isoformat()}


class OrderDraft(AggregateDraft):
    aggregate_type: ClassVar[str] = "orders"
    counterparty_field: ClassVar[str] = "client"
    counterparty_entity: ClassVar[str] = "clients"

    client: ResolvableReference = Field(default_factory=ResolvableReference)
    client_type: ClientType = ClientType.REGULAR
    status: OrderStatus = OrderStatus.PENDING
    delivery_date: Optional[dt.date] = None

    def header_fields(self) -> dict[str, Any]:
        fields = super().header_fields()
        fields.update(
            client_id=self.client.resolved_id,
            client_name=self.client.display_name,
            client_type=self.client_type.value,
            status=self.status.value,
        )
        if self.delivery_date:
            fields["delivery_date"] = self.delivery_date.isoformat()
        return fields


class MaterialPurchaseDraft(AggregateDraft):
    aggregate_type: ClassVar[str] = "material_purchases"
    counterparty_field: ClassVar[str] = "supplier"
    counterparty_entity: ClassVar[str] = "suppliers"

    supplier: ResolvableReference = Field(default_factory=ResolvableReference)
    material_name: str = ""
    unit: Optional[str] = None
    installment_plan: bool = False
    payment_frequency: Optional[PaymentFrequency] = None
    total_installments: int = Field(default=1, ge=1, le=120)
    first_payment_date: Optional[dt.date] = None

    def header_fields(self) -> dict[str, Any]:
        fields = super().header_fields()
        fields.update(
            supplier_id=self.supplier.resolved_id,
            supplier_name=self.supplier.display_name,
            material_name=self.material_name,
            unit=self.unit,
            installment_plan=self.installment_plan,
            payment_frequency=(
                self.payment_frequency.value if self.payment_frequency else None
            ),
        )
        return fields


class ExpenseDraft(AggregateDraft):
    aggregate_type: ClassVar[str] = "expenses"
    counterparty_field: ClassVar[str] = "category"
    counterparty_entity: ClassVar[str] = "expense_categories"

    category: ResolvableReference = Field(default_factory=ResolvableReference)
    description: Optional[str] = None

    def header_fields(self) -> dict[str, Any]:
        fields = super().header_fields()
        fields.update(
            category_id=self.category.resolved_id,
            category=self.category.display_name,
            description=self.description,
        )
        return fields


# =============================================================================
# VALIDATION RESULT MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found in a draft."""

    field: str = Field(..., description="Dotted path of the offending field")
    issue_type: str = Field(
        ...,
        description="Type of issue: missing, invalid_value, overpayment, future_date"
    )
    message: str
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
    )


class ValidationResult(BaseModel):
    """Result of validating a draft before submission."""

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def first_error(self) -> Optional[ValidationIssue]:
        return next(
            (issue for issue in self.issues if issue.severity == "error"),
            None,
        )
