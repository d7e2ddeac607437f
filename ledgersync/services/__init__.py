"""Services package."""

from ledgersync.services.backend import (
    BackendError,
    BackendInterface,
    ErrorCode,
    InMemoryBackend,
    SupabaseBackend,
)
from ledgersync.services.notifications import NotificationService

__all__ = [
    # Backend
    "BackendError",
    "BackendInterface",
    "ErrorCode",
    "InMemoryBackend",
    "SupabaseBackend",
    # Side effects
    "NotificationService",
]
