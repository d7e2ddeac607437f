"""
Abstract Backend Interface

DESIGN DECISION: The persistence backend is an external collaborator.
The optimistic layer only needs five request/response calls, each of
which either returns record(s) or raises exactly one typed BackendError.
This allows us to:
1. Run against hosted Postgres (Supabase) in production
2. Use in-memory storage with fault injection for testing
3. Keep transport details (HTTP, status codes) out of business logic

Timeouts and transport retries belong to the implementation; callers
treat any raised error, timeout included, as the failure branch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Error kinds surfaced upward from the backend."""
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE = "DUPLICATE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


# Filter keys with special meaning in lookup()
NAME_IEQ = "name__ieq"
NAME_ICONTAINS = "name__icontains"
LIMIT = "limit"

# Aggregate fields stored as rows of their own table
CHILD_FIELDS = ("items", "payments", "notes")


@dataclass(frozen=True)
class ChildTables:
    """Where an aggregate's items, payments and notes live, and the column linking them."""
    parent_key: str
    items: str
    payments: str
    notes: str

    def table_for(self, field: str) -> str:
        return getattr(self, field)


CHILD_TABLES: dict[str, ChildTables] = {
    "orders": ChildTables("order_id", "order_items", "order_payments", "order_notes"),
    "material_purchases": ChildTables(
        "purchase_id", "material_purchase_items", "material_payments", "material_purchase_notes"
    ),
    "expenses": ChildTables("expense_id", "expense_items", "expense_payments", "expense_notes"),
}


class BackendInterface(ABC):
    """
    Abstract interface for the persistence collaborator.

    Any backend implementation (Supabase, in-memory, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def lookup(
        self,
        entity_type: str,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """
        Query records of an entity type.

        Args:
            entity_type: Table name (e.g. 'clients', 'orders')
            filter: Equality filters by field name, plus the special keys
                    `name__ieq` (case-insensitive exact name match),
                    `name__icontains` (case-insensitive substring match)
                    and `limit` (maximum number of records)

        Returns:
            Matching records ordered by name (lookup tables) or newest
            first (aggregates)

        Raises:
            BackendError: If the call fails
        """
        pass

    @abstractmethod
    async def create(
        self,
        entity_type: str,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Insert a record.

        Returns:
            The stored record, including its generated `id`

        Raises:
            DuplicateError: If a unique constraint is violated
            ValidationError: If a required field is missing or invalid
            BackendError: For any other failure
        """
        pass

    @abstractmethod
    async def update(
        self,
        entity_type: str,
        id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Apply a partial update to a record.

        Returns:
            The full record after the update

        Raises:
            NotFoundError: If no record has this id
            BackendError: For any other failure
        """
        pass

    @abstractmethod
    async def delete(self, entity_type: str, id: str) -> None:
        """
        Delete a record and everything it owns.

        Raises:
            NotFoundError: If no record has this id
            BackendError: For any other failure
        """
        pass

    @abstractmethod
    async def create_aggregate_atomic(
        self,
        aggregate_type: str,
        header: dict[str, Any],
        items: list[dict[str, Any]],
        payments: list[dict[str, Any]],
        notes: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Create an aggregate with its items, payments and notes in ONE call.

        Either everything is created or nothing is.

        Returns:
            A dict containing at least the new aggregate's `id`

        Raises:
            BackendError: If the call fails (nothing was created)
        """
        pass


class BackendError(Exception):
    """Base exception for backend operations."""

    code: ErrorCode = ErrorCode.SERVER_ERROR

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class NotFoundError(BackendError):
    """Entity not found in the backend."""
    code = ErrorCode.NOT_FOUND


class ValidationError(BackendError):
    """Missing or invalid field; `field` names the offending field when known."""
    code = ErrorCode.VALIDATION_ERROR


class DuplicateError(BackendError):
    """Attempted to insert a duplicate entity."""
    code = ErrorCode.DUPLICATE


class PermissionDeniedError(BackendError):
    """The caller is not allowed to perform this operation."""
    code = ErrorCode.PERMISSION_DENIED


class ServerError(BackendError):
    code = ErrorCode.SERVER_ERROR


class NetworkError(BackendError):
    """Could not reach the backend, or the request timed out."""
    code = ErrorCode.NETWORK_ERROR


ERRORS_BY_CODE: dict[ErrorCode, type[BackendError]] = {
    ErrorCode.NOT_FOUND: NotFoundError,
    ErrorCode.VALIDATION_ERROR: ValidationError,
    ErrorCode.DUPLICATE: DuplicateError,
    ErrorCode.PERMISSION_DENIED: PermissionDeniedError,
    ErrorCode.SERVER_ERROR: ServerError,
    ErrorCode.NETWORK_ERROR: NetworkError,
}


def error_for(code: ErrorCode, message: str, field: Optional[str] = None) -> BackendError:
    """Build the BackendError subclass matching `code`."""
    return ERRORS_BY_CODE[ErrorCode(code)](message, field=field)
