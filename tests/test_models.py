"""
Tests for LedgerSync

Test strategy:
1. Unit tests for individual components (models, ledger math, validators)
2. Integration tests for stores and flows (with the in-memory backend)
3. No real API calls in tests (fault injection instead of mocks)
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from ledgersync.models.ledger import (
    LedgerTotals,
    LineItem,
    MaterialPurchase,
    Note,
    Order,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from ledgersync.models.drafts import (
    ItemDraft,
    OrderDraft,
    ResolvableReference,
    ValidationIssue,
    ValidationResult,
)
from ledgersync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_line_item_total_is_derived(self):
        """Test that a caller-supplied total is overwritten."""
        item = LineItem(
            item_name="Flyers",
            category_name="Print",
            quantity=Decimal("10"),
            unit_price=Decimal("2000"),
            total_amount=Decimal("1"),
        )
        assert item.total_amount == Decimal("20000")

    def test_line_item_strips_whitespace(self):
        """Test that whitespace is stripped from item names."""
        item = LineItem(item_name="  Flyers  ", quantity=1, unit_price=0)
        assert item.item_name == "Flyers"

    def test_line_item_rejects_zero_quantity(self):
        """Test that quantity must be positive."""
        with pytest.raises(ValueError):
            LineItem(item_name="Flyers", quantity=0, unit_price=10)

    def test_line_item_rejects_negative_price(self):
        """Test that negative unit prices are rejected."""
        with pytest.raises(ValueError):
            LineItem(item_name="Flyers", quantity=1, unit_price=-1)

    def test_payment_rejects_zero_amount(self):
        """Test that payments must be positive."""
        with pytest.raises(ValueError):
            Payment(amount=Decimal("0"))

    def test_payment_defaults(self):
        """Test payment method and date defaults."""
        payment = Payment(amount=Decimal("100"))
        assert payment.payment_method == PaymentMethod.CASH
        assert payment.date == date.today()

    def test_note_requires_text(self):
        """Test that empty notes are rejected."""
        with pytest.raises(ValueError):
            Note(text="   ")

    def test_order_requires_client_name(self):
        """Test that orders need a client."""
        with pytest.raises(ValueError):
            Order(id="o-1", client_name="")

    def test_order_ignores_unknown_fields(self):
        """Test that backend-only columns are ignored."""
        order = Order(id="o-1", client_name="Acme", created_by="someone")
        assert not hasattr(order, "created_by")

    def test_timestamps_are_timezone_aware(self):
        """Test that default timestamps carry UTC."""
        order = Order(id="o-1", client_name="Acme")
        assert order.created_at.utcoffset() == timedelta(0)
        assert order.updated_at.tzinfo is not None

    def test_aggregate_types(self):
        """Test collection names of aggregates."""
        assert Order.aggregate_type == "orders"
        assert MaterialPurchase.aggregate_type == "material_purchases"

    def test_ledger_totals_overpayment(self):
        """Test overpayment reporting on totals."""
        totals = LedgerTotals(
            total_amount=Decimal("20000"),
            amount_paid=Decimal("25000"),
            balance=Decimal("-5000"),
            payment_status=PaymentStatus.PAID,
        )
        assert totals.is_overpaid is True
        assert totals.overpayment == Decimal("5000")


class TestDraftModels:
    """Tests for creation draft models."""

    def test_reference_accepts_plain_string(self):
        """Test that a bare label becomes a ResolvableReference."""
        draft = ItemDraft(item="Flyers", category=" Print ")
        assert draft.item.display_name == "Flyers"
        assert draft.category.normalized == "print"
        assert draft.category.is_resolved is False

    def test_reference_blank(self):
        """Test blank detection."""
        assert ResolvableReference(display_name="   ").is_blank is True
        assert ResolvableReference(display_name="Acme").is_blank is False

    def test_order_draft_counterparty(self):
        """Test that the order's counterparty is its client."""
        draft = OrderDraft(client="Acme")
        assert draft.counterparty.display_name == "Acme"
        assert draft.counterparty_entity == "clients"

    def test_order_draft_header_fields(self):
        """Test JSON-ready header fields."""
        draft = OrderDraft(
            client=ResolvableReference(display_name="Acme", resolved_id="c-1"),
            date=date(2024, 3, 1),
        )
        header = draft.header_fields()
        assert header["client_id"] == "c-1"
        assert header["client_name"] == "Acme"
        assert header["date"] == "2024-03-01"
        assert header["status"] == "pending"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.CREATE_APPLIED,
            description="Provisional entry inserted",
        )
        assert event.event_type == AuditEventType.CREATE_APPLIED
        assert event.severity == AuditSeverity.INFO

    def test_audit_timestamp_is_timezone_aware(self):
        """Test that audit events are stamped in UTC."""
        event = AuditEventBuilder.delete_confirmed("orders", "o-1")
        assert event.timestamp.utcoffset() == timedelta(0)
        assert event.to_log_dict()["timestamp"].endswith("+00:00")

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.DELETE_RESTORED,
            description="Entry restored",
            details={"already_present": False},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "delete_restored"
        assert log_dict["details"]["already_present"] is False

    def test_audit_event_builder_create_confirmed(self):
        """Test AuditEventBuilder.create_confirmed."""
        correlation_id = uuid4()

        event = AuditEventBuilder.create_confirmed(
            "orders", "temp-1", "server-1", correlation_id=correlation_id
        )

        assert event.event_type == AuditEventType.CREATE_CONFIRMED
        assert event.entity_id == "server-1"
        assert event.details["temp_id"] == "temp-1"
        assert event.correlation_id == correlation_id

    def test_audit_event_builder_reference_created(self):
        """Test that created references get their own event type."""
        created = AuditEventBuilder.reference_resolved("clients", "c-1", "Acme", created=True)
        found = AuditEventBuilder.reference_resolved("clients", "c-1", "Acme", created=False)

        assert created.event_type == AuditEventType.REFERENCE_CREATED
        assert found.event_type == AuditEventType.REFERENCE_RESOLVED

    def test_audit_event_builder_rollback_is_warning(self):
        """Test rollback severity."""
        event = AuditEventBuilder.create_rolled_back(
            "orders", "temp-1", "NETWORK_ERROR", "timeout"
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.error_code == "NETWORK_ERROR"


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="items[0].quantity",
                    issue_type="invalid_value",
                    message="Quantity must be greater than zero",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.first_error.field == "items[0].quantity"

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message="Date in future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.first_error is None

    def test_validation_issue_rejects_unknown_severity(self):
        """Test severity pattern."""
        with pytest.raises(ValueError):
            ValidationIssue(field="date", issue_type="x", message="x", severity="fatal")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
