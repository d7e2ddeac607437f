"""
Tests for two-stage draft validation.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledgersync.models.drafts import (
    ItemDraft,
    MaterialPurchaseDraft,
    NoteDraft,
    OrderDraft,
    PaymentDraft,
)
from ledgersync.models.ledger import PaymentFrequency
from ledgersync.validation import DraftValidator


TODAY = date(2024, 6, 1)


def valid_order(**overrides):
    fields = dict(
        client="Acme",
        date=TODAY,
        items=[ItemDraft(item="Flyers", category="Print", quantity=10, unit_price=2000)],
    )
    fields.update(overrides)
    return OrderDraft(**fields)


@pytest.fixture
def validator():
    return DraftValidator(today=TODAY)


def fields_of(result):
    return [issue.field for issue in result.issues]


class TestRequiredFields:
    """Stage 1: errors that block submission."""

    def test_valid_order_passes(self, validator):
        result = validator.validate(valid_order())
        assert result.is_valid is True
        assert result.issues == []

    def test_missing_client(self, validator):
        result = validator.validate(valid_order(client="  "))

        assert result.is_valid is False
        assert fields_of(result) == ["client"]
        assert result.first_error.issue_type == "missing"

    def test_no_items(self, validator):
        result = validator.validate(valid_order(items=[]))
        assert fields_of(result) == ["items"]

    def test_item_field_paths(self, validator):
        """Every broken item field is reported with its path."""
        items = [
            ItemDraft(item="Flyers", category="Print", quantity=1, unit_price=10),
            ItemDraft(item="", category="", quantity=0, unit_price=-1),
            ItemDraft(item="Cards", category="Print", quantity=2),
        ]
        result = validator.validate(valid_order(items=items))

        assert fields_of(result) == [
            "items[1].item",
            "items[1].category",
            "items[1].quantity",
            "items[1].unit_price",
            "items[2].unit_price",
        ]
        assert result.error_count == 5

    def test_zero_unit_price_is_allowed(self, validator):
        items = [ItemDraft(item="Sample", category="Print", quantity=1, unit_price=0)]
        assert validator.validate(valid_order(items=items)).is_valid is True

    def test_non_positive_payment(self, validator):
        result = validator.validate(valid_order(payments=[PaymentDraft(amount=Decimal("0"))]))
        assert fields_of(result) == ["payments[0].amount"]

    def test_installment_plan_needs_frequency(self, validator):
        draft = MaterialPurchaseDraft(
            supplier="Paper Co",
            date=TODAY,
            items=[ItemDraft(item="A4", category="Paper", quantity=5, unit_price=100)],
            installment_plan=True,
        )
        result = validator.validate(draft)
        assert fields_of(result) == ["payment_frequency"]

    def test_installment_plan_with_frequency(self, validator):
        draft = MaterialPurchaseDraft(
            supplier="Paper Co",
            date=TODAY,
            items=[ItemDraft(item="A4", category="Paper", quantity=5, unit_price=100)],
            installment_plan=True,
            payment_frequency=PaymentFrequency.MONTHLY,
            total_installments=3,
        )
        assert validator.validate(draft).is_valid is True


class TestSemanticWarnings:
    """Stage 2: warnings the user may proceed past."""

    def test_overpayment_warning(self, validator):
        result = validator.validate(valid_order(payments=[PaymentDraft(amount=Decimal("25000"))]))

        assert result.is_valid is True
        [issue] = result.issues
        assert issue.issue_type == "overpayment"
        assert issue.severity == "warning"
        assert "5000" in issue.message

    def test_future_dates(self, validator):
        draft = valid_order(
            date=date(2024, 7, 1),
            payments=[PaymentDraft(amount=Decimal("100"), payment_date=date(2024, 7, 2))],
        )
        result = validator.validate(draft)

        assert result.is_valid is True
        assert fields_of(result) == ["date", "payments[0].payment_date"]

    def test_empty_note_warning(self, validator):
        result = validator.validate(valid_order(notes=[NoteDraft(text=" ")]))
        assert fields_of(result) == ["notes[0].text"]
        assert result.is_valid is True

    def test_delivery_before_order_date(self, validator):
        result = validator.validate(valid_order(delivery_date=date(2024, 5, 1)))
        assert fields_of(result) == ["delivery_date"]

    def test_semantic_stage_skipped_on_errors(self, validator):
        """Overpayment is not checked while required fields are missing."""
        draft = valid_order(client="", payments=[PaymentDraft(amount=Decimal("99999"))])
        result = validator.validate(draft)
        assert fields_of(result) == ["client"]


class TestSummary:
    def test_summary_lists_errors_and_warnings(self, validator):
        result = validator.validate(valid_order(client=""))
        summary = validator.get_user_friendly_summary(result)

        assert "Please fix" in summary
        assert "Client is required" in summary

    def test_summary_when_clean(self, validator):
        result = validator.validate(valid_order())
        assert validator.get_user_friendly_summary(result) == "All checks passed."


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
