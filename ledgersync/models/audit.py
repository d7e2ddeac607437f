"""
Audit Models for LedgerSync

Every optimistic mutation goes through several observable states:
applied locally, confirmed by the server, or rolled back. Each of
those transitions is recorded as an audit event so that a divergence
between what the user saw and what the backend holds can be traced.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Optimistic create
    CREATE_APPLIED = "create_applied"
    CREATE_CONFIRMED = "create_confirmed"
    CREATE_ROLLED_BACK = "create_rolled_back"

    # Optimistic update
    UPDATE_APPLIED = "update_applied"
    UPDATE_CONFIRMED = "update_confirmed"
    CACHE_INVALIDATED = "cache_invalidated"

    # Optimistic delete
    DELETE_APPLIED = "delete_applied"
    DELETE_CONFIRMED = "delete_confirmed"
    DELETE_RESTORED = "delete_restored"

    MUTATION_REJECTED_BUSY = "mutation_rejected_busy"

    # Reference resolution
    REFERENCE_RESOLVED = "reference_resolved"
    REFERENCE_CREATED = "reference_created"
    REFERENCE_CREATE_FAILED = "reference_create_failed"
    LOOKUP_FAILED = "lookup_failed"
    STALE_RESPONSE_DISCARDED = "stale_response_discarded"

    # Composite creation
    VALIDATION_FAILED = "validation_failed"
    AGGREGATE_CREATED = "aggregate_created"
    AGGREGATE_CREATE_FAILED = "aggregate_create_failed"
    SIDE_EFFECT_FAILED = "side_effect_failed"
    REFRESH_FAILED = "refresh_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection or lookup table (e.g., 'orders', 'clients')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Identifier of the record, temporary or server-assigned"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one composite creation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_record(self) -> dict:
        """
        Convert to a row for the `audit_events` table.

        Same keys as to_log_dict; the backend stores `details` as JSON.
        """
        return self.to_log_dict()


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.create_applied("orders", temp_id)
        event = AuditEventBuilder.delete_restored("orders", order_id, "NETWORK_ERROR", msg)
    """

    @staticmethod
    def create_applied(
        collection: str,
        temp_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_APPLIED,
            entity_type=collection,
            entity_id=temp_id,
            correlation_id=correlation_id,
            description=f"Provisional {collection} entry inserted",
            is_user_action=True,
        )

    @staticmethod
    def create_confirmed(
        collection: str,
        temp_id: str,
        server_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_CONFIRMED,
            entity_type=collection,
            entity_id=server_id,
            correlation_id=correlation_id,
            description=f"Provisional {collection} entry confirmed by server",
            details={"temp_id": temp_id},
        )

    @staticmethod
    def create_rolled_back(
        collection: str,
        temp_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=temp_id,
            correlation_id=correlation_id,
            description=f"Provisional {collection} entry removed after failed create",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def update_applied(collection: str, entity_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPDATE_APPLIED,
            entity_type=collection,
            entity_id=entity_id,
            description=f"Optimistic update applied to {collection} entry",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def update_confirmed(collection: str, entity_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPDATE_CONFIRMED,
            entity_type=collection,
            entity_id=entity_id,
            description=f"Update of {collection} entry confirmed by server",
        )

    @staticmethod
    def cache_invalidated(
        collection: str,
        entity_id: Optional[str],
        error_code: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_INVALIDATED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=entity_id,
            description=f"{collection} cache invalidated; full re-fetch required",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def delete_applied(collection: str, entity_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_APPLIED,
            entity_type=collection,
            entity_id=entity_id,
            description=f"{collection} entry removed locally",
            is_user_action=True,
        )

    @staticmethod
    def delete_confirmed(collection: str, entity_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_CONFIRMED,
            entity_type=collection,
            entity_id=entity_id,
            description=f"Deletion of {collection} entry confirmed by server",
        )

    @staticmethod
    def delete_restored(
        collection: str,
        entity_id: str,
        error_code: str,
        error_message: str,
        already_present: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_RESTORED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=entity_id,
            description=f"{collection} entry restored after failed delete",
            details={"already_present": already_present},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def mutation_rejected_busy(collection: str, operation: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED_BUSY,
            severity=AuditSeverity.DEBUG,
            entity_type=collection,
            description=f"{operation} on {collection} ignored: another mutation is in flight",
            details={"operation": operation},
        )

    @staticmethod
    def reference_resolved(
        entity_type: str,
        entity_id: str,
        label: str,
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.REFERENCE_CREATED if created
                else AuditEventType.REFERENCE_RESOLVED
            ),
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=(
                f"Created {entity_type} record '{label}'" if created
                else f"Resolved '{label}' to existing {entity_type} record"
            ),
            details={"label": label},
        )

    @staticmethod
    def reference_create_failed(
        entity_type: str,
        label: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFERENCE_CREATE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"Could not create {entity_type} record '{label}'",
            details={"label": label},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def lookup_failed(entity_type: str, query: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOOKUP_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            description=f"Search of {entity_type} failed; using default options",
            details={"query": query},
            error_message=error_message,
        )

    @staticmethod
    def stale_response_discarded(
        entity_type: str,
        token: int,
        latest_token: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_RESPONSE_DISCARDED,
            severity=AuditSeverity.DEBUG,
            entity_type=entity_type,
            description=f"Discarded superseded {entity_type} search response",
            details={"token": token, "latest_token": latest_token},
        )

    @staticmethod
    def validation_failed(
        aggregate_type: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=aggregate_type,
            correlation_id=correlation_id,
            description=f"Draft validation failed with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def aggregate_created(
        aggregate_type: str,
        aggregate_id: str,
        item_count: int,
        payment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATE_CREATED,
            entity_type=aggregate_type,
            entity_id=aggregate_id,
            correlation_id=correlation_id,
            description=f"Created {aggregate_type} record with {item_count} item(s)",
            details={"item_count": item_count, "payment_count": payment_count},
        )

    @staticmethod
    def aggregate_create_failed(
        aggregate_type: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATE_CREATE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=aggregate_type,
            correlation_id=correlation_id,
            description=f"Creation of {aggregate_type} record failed",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def side_effect_failed(
        side_effect: str,
        aggregate_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SIDE_EFFECT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_id=aggregate_id,
            correlation_id=correlation_id,
            description=f"Side effect '{side_effect}' failed (ignored)",
            details={"side_effect": side_effect},
            error_message=error_message,
        )

    @staticmethod
    def refresh_failed(
        collection: str,
        attempts: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFRESH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            correlation_id=correlation_id,
            description=f"Background refresh of {collection} gave up after {attempts} attempt(s)",
            details={"attempts": attempts},
            error_message=error_message,
        )
