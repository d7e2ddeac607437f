"""
Backend Services Package

Provides the abstract persistence interface and its implementations.
Supabase is the production backend; the in-memory backend serves tests
and offline development.
"""

from ledgersync.services.backend.interface import (
    CHILD_FIELDS,
    CHILD_TABLES,
    LIMIT,
    NAME_ICONTAINS,
    NAME_IEQ,
    BackendError,
    BackendInterface,
    ChildTables,
    DuplicateError,
    ErrorCode,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ServerError,
    ValidationError,
    error_for,
)
from ledgersync.services.backend.memory import InMemoryBackend
from ledgersync.services.backend.supabase_backend import (
    SupabaseBackend,
    translate_api_error,
)

__all__ = [
    # Interface
    "BackendInterface",
    "CHILD_FIELDS",
    "CHILD_TABLES",
    "ChildTables",
    "ErrorCode",
    "LIMIT",
    "NAME_ICONTAINS",
    "NAME_IEQ",
    # Exceptions
    "BackendError",
    "DuplicateError",
    "NetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "ServerError",
    "ValidationError",
    "error_for",
    # Implementations
    "InMemoryBackend",
    "SupabaseBackend",
    "translate_api_error",
]
