"""
Entity Resolver

Turns user-typed labels into durable lookup-table identifiers with
find-or-create semantics, and serves typeahead searches.

DESIGN DECISION: Matching is case-insensitive on the trimmed label,
and the first exact match wins. "Print", " print " and "PRINT" are the
same category; creating a second record for any of them would split
the reports that group by category.

Typeahead searches are not serialized. Each one takes the next value of
a per-resolver token, and its response is applied only if no newer
search has been issued since. A slow response to an old query can
therefore never overwrite the options of the query the user is
actually looking at.
"""

import asyncio
from enum import Enum
from typing import Any, Optional
from uuid import UUID

import structlog

from ledgersync.audit.logger import AuditLogger
from ledgersync.models.audit import AuditEventBuilder
from ledgersync.resolver.recent import RecentReferenceStore, ReferenceOption
from ledgersync.services.backend.interface import (
    LIMIT,
    NAME_ICONTAINS,
    NAME_IEQ,
    BackendError,
    BackendInterface,
    ErrorCode,
)


logger = structlog.get_logger(__name__)

# Lookup tables scoped under a parent, and the column holding the parent id
PARENT_FIELDS = {
    "items": "category_id",
}


class ResolveErrorKind(str, Enum):
    DUPLICATE = "DUPLICATE"
    INVALID_REFERENCE = "INVALID_REFERENCE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN = "UNKNOWN"


_KIND_BY_CODE = {
    ErrorCode.DUPLICATE: ResolveErrorKind.DUPLICATE,
    ErrorCode.VALIDATION_ERROR: ResolveErrorKind.INVALID_REFERENCE,
    ErrorCode.NOT_FOUND: ResolveErrorKind.INVALID_REFERENCE,
    ErrorCode.PERMISSION_DENIED: ResolveErrorKind.PERMISSION_DENIED,
}


class ResolveError(Exception):
    """A label could not be resolved to an identifier."""

    def __init__(
        self,
        code: ResolveErrorKind,
        message: str,
        entity_type: str,
        label: str = "",
        backend_code: Optional[ErrorCode] = None,
    ):
        self.code = code
        self.message = message
        self.entity_type = entity_type
        self.label = label
        self.backend_code = backend_code
        super().__init__(message)

    @classmethod
    def from_backend(cls, error: BackendError, entity_type: str, label: str) -> "ResolveError":
        return cls(
            code=_KIND_BY_CODE.get(error.code, ResolveErrorKind.UNKNOWN),
            message=error.message,
            entity_type=entity_type,
            label=label,
            backend_code=error.code,
        )


def normalize_label(label: str) -> str:
    return (label or "").strip().casefold()


class EntityResolver:
    """
    Find-or-create resolution plus stale-safe typeahead search.

    One resolver per form (or per session); it owns its session cache,
    its search token and its visible `options`.
    """

    def __init__(
        self,
        backend: BackendInterface,
        audit_logger: Optional[AuditLogger] = None,
        recent_store: Optional[RecentReferenceStore] = None,
        default_options: Optional[dict[str, list[ReferenceOption]]] = None,
        search_limit: int = 20,
    ):
        self._backend = backend
        self._audit = audit_logger or AuditLogger()
        self._recent = recent_store
        self._default_options = default_options or {}
        self._search_limit = search_limit

        self._session_cache: dict[tuple[str, Optional[str], str], str] = {}
        self._latest_token = 0

        self.options: list[ReferenceOption] = []
        self.options_entity_type: Optional[str] = None

    @property
    def latest_token(self) -> int:
        return self._latest_token

    # ------------------------------------------------------------------
    # Find-or-create
    # ------------------------------------------------------------------

    async def resolve(
        self,
        entity_type: str,
        label: str,
        parent_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Return the id of the `entity_type` record named `label`,
        creating it if none exists.

        Args:
            entity_type: Lookup table ('clients', 'categories', 'items', ...)
            label: User-typed name; trimmed and compared case-insensitively
            parent_id: Scope for child tables (category id for items)

        Raises:
            ResolveError: If the label is empty, or the lookup or the
                create call fails. Nothing is cached in that case.
        """
        display_name = (label or "").strip()
        normalized = normalize_label(display_name)
        if not normalized:
            raise ResolveError(
                ResolveErrorKind.INVALID_REFERENCE,
                f"A {entity_type} name is required",
                entity_type=entity_type,
                label=display_name,
            )

        key = (entity_type, parent_id, normalized)
        cached = self._session_cache.get(key)
        if cached is not None:
            return cached

        parent_field = PARENT_FIELDS.get(entity_type)
        scope: dict[str, Any] = {parent_field: parent_id} if parent_field else {}

        try:
            matches = await self._backend.lookup(
                entity_type, {NAME_IEQ: display_name, **scope}
            )
        except BackendError as e:
            await self._audit.log(
                AuditEventBuilder.lookup_failed(entity_type, display_name, e.message)
            )
            raise ResolveError.from_backend(e, entity_type, display_name) from e

        match = next(
            (m for m in matches if normalize_label(m.get("name", "")) == normalized),
            None,
        )

        created = match is None
        if created:
            try:
                match = await self._backend.create(
                    entity_type, {"name": display_name, "status": "active", **scope}
                )
            except BackendError as e:
                await self._audit.log(
                    AuditEventBuilder.reference_create_failed(
                        entity_type,
                        display_name,
                        e.code.value,
                        e.message,
                        correlation_id=correlation_id,
                    )
                )
                raise ResolveError.from_backend(e, entity_type, display_name) from e

        entity_id = str(match["id"])
        self._session_cache[key] = entity_id

        if created and self._recent is not None:
            self._recent.push(entity_type, ReferenceOption(id=entity_id, label=display_name))

        await self._audit.log(
            AuditEventBuilder.reference_resolved(
                entity_type,
                entity_id,
                display_name,
                created=created,
                correlation_id=correlation_id,
            )
        )
        return entity_id

    def clear_session_cache(self) -> None:
        self._session_cache.clear()

    # ------------------------------------------------------------------
    # Typeahead
    # ------------------------------------------------------------------

    async def search(
        self,
        entity_type: str,
        query: str = "",
        parent_id: Optional[str] = None,
    ) -> Optional[list[ReferenceOption]]:
        """
        Search `entity_type` by name substring and publish the result
        to `self.options`.

        Returns the applied options, or None when a newer search was
        issued while this one was in flight (the response is dropped).
        A failed lookup falls back to the default options for the type.
        """
        self._latest_token += 1
        token = self._latest_token

        filter: dict[str, Any] = {LIMIT: self._search_limit}
        if query.strip():
            filter[NAME_ICONTAINS] = query.strip()
        parent_field = PARENT_FIELDS.get(entity_type)
        if parent_field and parent_id is not None:
            filter[parent_field] = parent_id

        try:
            records = await self._backend.lookup(entity_type, filter)
            options = [
                ReferenceOption(id=str(r["id"]), label=str(r.get("name", "")))
                for r in records
            ]
        except (BackendError, asyncio.TimeoutError) as e:
            await self._audit.log(
                AuditEventBuilder.lookup_failed(entity_type, query, str(e))
            )
            options = list(self._default_options.get(entity_type, []))

        if token != self._latest_token:
            await self._audit.log(
                AuditEventBuilder.stale_response_discarded(
                    entity_type, token, self._latest_token
                )
            )
            return None

        self.options = options
        self.options_entity_type = entity_type
        return options

    # ------------------------------------------------------------------
    # Recent selections
    # ------------------------------------------------------------------

    def record_selection(self, entity_type: str, option: ReferenceOption) -> None:
        """Remember a user's pick so it is offered first next time."""
        if self._recent is None:
            return
        self._recent.push(entity_type, option)
        logger.debug("reference_selected", entity_type=entity_type, id=option.id)

    def recent_options(self, entity_type: str) -> list[ReferenceOption]:
        if self._recent is None:
            return []
        return self._recent.visible(entity_type)
