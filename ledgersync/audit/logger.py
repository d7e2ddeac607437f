"""
Audit Logger

DESIGN DECISION: Every optimistic transition is logged.
Applied, confirmed, rolled back, invalidated: when the list a user
saw diverges from what the backend holds, the audit trail shows
which mutation did it and why.

The audit logger:
- Is async so it can persist through the same backend as the data
- Gracefully handles failures (a failed audit write never fails a mutation)
- Supports correlation IDs to trace the stages of one composite creation
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgersync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledgersync.services.backend.interface import BackendInterface


AUDIT_TABLE = "audit_events"

# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The backend's audit_events table (when a backend is given)
    """

    def __init__(
        self,
        backend: Optional[BackendInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            backend: Backend used to persist events.
                    If None, only logs locally.
        """
        self._backend = backend
        self._logger = structlog.get_logger("ledgersync.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the backend if available.

        Returns True if the backend write succeeded (or no backend configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Debug events are local only
        if self._backend is None or event.severity == AuditSeverity.DEBUG:
            return True

        try:
            await self._backend.create(AUDIT_TABLE, event.to_record())
            return True
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def log_side_effect_failed(
        self,
        side_effect: str,
        aggregate_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed best-effort side effect."""
        event = AuditEventBuilder.side_effect_failed(
            side_effect=side_effect,
            aggregate_id=aggregate_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_refresh_failed(
        self,
        collection: str,
        attempts: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.refresh_failed(
            collection=collection,
            attempts=attempts,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., submitting an order).
    Pass it through all subsequent operations.
    """
    return uuid4()
