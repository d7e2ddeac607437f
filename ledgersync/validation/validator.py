"""
Two-Stage Draft Validation

DESIGN DECISION: Drafts are validated before any network call, in two
distinct stages:

STAGE 1 - REQUIRED FIELDS:
- Counterparty present
- At least one item
- Every item has a name and a category
- Quantity > 0, unit price present and >= 0
- Payment amounts > 0

STAGE 2 - SEMANTIC CHECKS (warnings only):
- Payments exceeding the order total (overpayment)
- Dates in the future
- Delivery before the order date

Stage 2 only runs when stage 1 passes; its checks need well-formed
items to compute a total.

IMPORTANT: Validation NEVER silently fixes issues.
Errors block submission; warnings are shown and the user may proceed.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional

from ledgersync.models.drafts import (
    AggregateDraft,
    MaterialPurchaseDraft,
    OrderDraft,
    ValidationIssue,
    ValidationResult,
)


class DraftValidator:
    """
    Validates creation drafts.

    Field names in issues are dotted paths (`items[0].quantity`) so the
    form can highlight the exact input.
    """

    def __init__(self, today: Optional[dt.date] = None):
        """
        Args:
            today: Reference date for future-date checks (defaults to the
                   current date at validation time)
        """
        self._today = today

    def _validate_required(self, draft: AggregateDraft) -> list[ValidationIssue]:
        issues = []

        if draft.counterparty.is_blank:
            issues.append(ValidationIssue(
                field=draft.counterparty_field,
                issue_type="missing",
                message=f"{draft.counterparty_field.replace('_', ' ').capitalize()} is required",
            ))

        if not draft.items:
            issues.append(ValidationIssue(
                field="items",
                issue_type="missing",
                message="At least one item is required",
            ))

        for index, item in enumerate(draft.items):
            path = f"items[{index}]"
            if item.item.is_blank:
                issues.append(ValidationIssue(
                    field=f"{path}.item",
                    issue_type="missing",
                    message=f"Item {index + 1}: item name is required",
                ))
            if item.category.is_blank:
                issues.append(ValidationIssue(
                    field=f"{path}.category",
                    issue_type="missing",
                    message=f"Item {index + 1}: category is required",
                ))
            if item.quantity <= 0:
                issues.append(ValidationIssue(
                    field=f"{path}.quantity",
                    issue_type="invalid_value",
                    message=f"Item {index + 1}: quantity must be greater than zero",
                ))
            if item.unit_price is None:
                issues.append(ValidationIssue(
                    field=f"{path}.unit_price",
                    issue_type="missing",
                    message=f"Item {index + 1}: unit price is required",
                ))
            elif item.unit_price < 0:
                issues.append(ValidationIssue(
                    field=f"{path}.unit_price",
                    issue_type="invalid_value",
                    message=f"Item {index + 1}: unit price cannot be negative",
                ))

        for index, payment in enumerate(draft.payments):
            if payment.amount <= 0:
                issues.append(ValidationIssue(
                    field=f"payments[{index}].amount",
                    issue_type="invalid_value",
                    message=f"Payment {index + 1}: amount must be greater than zero",
                ))

        if isinstance(draft, MaterialPurchaseDraft):
            if draft.installment_plan and draft.payment_frequency is None:
                issues.append(ValidationIssue(
                    field="payment_frequency",
                    issue_type="missing",
                    message="Installment plans need a payment frequency",
                ))

        return issues

    def _validate_semantic(self, draft: AggregateDraft) -> list[ValidationIssue]:
        issues = []
        today = self._today or dt.date.today()

        total = sum(
            (item.quantity * (item.unit_price or Decimal("0")) for item in draft.items),
            Decimal("0"),
        )
        paid = sum((payment.amount for payment in draft.payments), Decimal("0"))
        if paid > total:
            issues.append(ValidationIssue(
                field="payments",
                issue_type="overpayment",
                message=f"Payments ({paid}) exceed the total ({total}) by {paid - total}",
                severity="warning",
            ))

        if draft.date > today:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date {draft.date.isoformat()} is in the future",
                severity="warning",
            ))

        for index, payment in enumerate(draft.payments):
            if payment.payment_date and payment.payment_date > today:
                issues.append(ValidationIssue(
                    field=f"payments[{index}].payment_date",
                    issue_type="future_date",
                    message=f"Payment {index + 1} is dated in the future",
                    severity="warning",
                ))

        for index, note in enumerate(draft.notes):
            if not note.text.strip():
                issues.append(ValidationIssue(
                    field=f"notes[{index}].text",
                    issue_type="missing",
                    message=f"Note {index + 1} is empty and will be ignored",
                    severity="warning",
                ))

        if isinstance(draft, OrderDraft) and draft.delivery_date:
            if draft.delivery_date < draft.date:
                issues.append(ValidationIssue(
                    field="delivery_date",
                    issue_type="invalid_value",
                    message="Delivery date is before the order date",
                    severity="warning",
                ))

        return issues

    def validate(self, draft: AggregateDraft) -> ValidationResult:
        """
        Run both validation stages.

        Returns:
            ValidationResult; is_valid is False when any error was found
        """
        issues = self._validate_required(draft)

        # Only run stage 2 if stage 1 passes
        if not issues:
            issues.extend(self._validate_semantic(draft))

        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Plain-text summary for a toast or form banner."""
        if not result.issues:
            return "All checks passed."

        lines = []
        errors = [i for i in result.issues if i.severity == "error"]
        warnings = [i for i in result.issues if i.severity == "warning"]

        if errors:
            lines.append("Please fix the following before saving:")
            lines.extend(f"  - {issue.message}" for issue in errors)
        if warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            lines.extend(f"  - {issue.message}" for issue in warnings)

        return "\n".join(lines)
