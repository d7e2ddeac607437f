"""
Notification records for newly created aggregates.

Notifications are a side effect of composite creation: the caller
treats any failure here as non-fatal.
"""

import json
from typing import Any

from ledgersync.services.backend.interface import BackendInterface


NOTIFICATIONS_TABLE = "notifications"

_TITLES = {
    "orders": ("new_order", "New Order Created", "order"),
    "material_purchases": ("new_material_purchase", "New Material Purchase", "material purchase"),
    "expenses": ("new_expense", "New Expense Recorded", "expense"),
}


class NotificationService:
    """Writes unread notification records through the backend."""

    def __init__(self, backend: BackendInterface):
        self._backend = backend

    async def notify_created(
        self,
        aggregate_type: str,
        aggregate_id: str,
        counterparty_name: str,
        item_count: int,
    ) -> dict[str, Any]:
        """
        Create a notification announcing a new aggregate.

        Raises:
            BackendError: If the notification could not be stored
        """
        notification_type, title, noun = _TITLES.get(
            aggregate_type, (f"new_{aggregate_type}", "New Record Created", "record")
        )
        return await self._backend.create(
            NOTIFICATIONS_TABLE,
            {
                "type": notification_type,
                "title": title,
                "message": (
                    f"New {noun} created for {counterparty_name} "
                    f"with {item_count} item(s)"
                ),
                "data": json.dumps({
                    "aggregate_id": aggregate_id,
                    "counterparty_name": counterparty_name,
                }),
                "status": "unread",
            },
        )
