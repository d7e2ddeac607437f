"""
Supabase Backend Implementation

Talks to the hosted Postgres database through PostgREST using the
async supabase-py client.

DESIGN DECISION: PostgREST errors are translated to typed BackendErrors
at this boundary and nowhere else. Postgres error codes never leak into
the store or the resolver; they only see ErrorCode values.

Aggregates are created through the `create_complete_<aggregate>`
database functions, which insert the header, items, payments and notes
in one transaction.
"""

import re
from typing import Any, Optional

import httpx
import structlog
from postgrest import APIError
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgersync.config import SupabaseSettings, get_settings
from ledgersync.services.backend.interface import (
    CHILD_TABLES,
    LIMIT,
    NAME_ICONTAINS,
    NAME_IEQ,
    BackendError,
    BackendInterface,
    DuplicateError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ServerError,
    ValidationError,
)


logger = structlog.get_logger(__name__)

AGGREGATE_TABLES = frozenset({"orders", "material_purchases", "expenses"})

# RPC name suffix per aggregate table
AGGREGATE_FUNCTIONS = {
    "orders": "order",
    "material_purchases": "material_purchase",
    "expenses": "expense",
}

# Postgres / PostgREST error codes
_NOT_FOUND_CODES = {"PGRST116"}
_PERMISSION_CODES = {"42501"}
_DUPLICATE_CODES = {"23505"}
_VALIDATION_CODES = {"23502", "23503", "23514", "22P02"}

_COLUMN_PATTERN = re.compile(r'column "(\w+)"')


def translate_api_error(error: APIError) -> BackendError:
    """Map a PostgREST APIError to the matching BackendError."""
    code = str(error.code or "")
    message = error.message or str(error)

    if code in _NOT_FOUND_CODES:
        return NotFoundError(message)
    if code in _PERMISSION_CODES:
        return PermissionDeniedError(message)
    if code in _DUPLICATE_CODES:
        return DuplicateError(message)
    if code in _VALIDATION_CODES:
        match = _COLUMN_PATTERN.search(f"{message} {error.details or ''}")
        return ValidationError(message, field=match.group(1) if match else None)
    return ServerError(message)


def _select_columns(entity_type: str) -> str:
    """Aggregates embed their child rows under items, payments and notes."""
    tables = CHILD_TABLES.get(entity_type)
    if tables is None:
        return "*"
    return (
        f"*, items:{tables.items}(*), payments:{tables.payments}(*), "
        f"notes:{tables.notes}(*)"
    )


def _escape_like(value: str) -> str:
    return re.sub(r"([%_\\])", r"\\\1", value.strip())


class SupabaseBackend(BackendInterface):
    """
    BackendInterface over Supabase.

    The client is created on first use so the backend can be built
    before an event loop is running.
    """

    def __init__(self, settings: Optional[SupabaseSettings] = None):
        self._settings = settings or get_settings().supabase
        self._client: Optional[AsyncClient] = None

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            try:
                self._client = await acreate_client(
                    self._settings.url,
                    self._settings.key,
                    options=AsyncClientOptions(schema=self._settings.schema_name),
                )
            except httpx.HTTPError as e:
                raise NetworkError(f"Failed to connect to Supabase: {e}") from e
        return self._client

    async def _execute(self, request) -> Any:
        try:
            response = await request.execute()
        except APIError as e:
            raise translate_api_error(e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Supabase request failed: {e}") from e
        except httpx.HTTPError as e:
            raise ServerError(f"Supabase request failed: {e}") from e
        return response.data

    @retry(
        retry=retry_if_exception_type(NetworkError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def lookup(
        self,
        entity_type: str,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        filter = dict(filter or {})
        client = await self._get_client()
        query = client.table(entity_type).select(_select_columns(entity_type))

        name_ieq = filter.pop(NAME_IEQ, None)
        name_icontains = filter.pop(NAME_ICONTAINS, None)
        limit = filter.pop(LIMIT, None)

        if name_ieq is not None:
            query = query.ilike("name", _escape_like(name_ieq))
        if name_icontains:
            query = query.ilike("name", f"%{_escape_like(name_icontains)}%")
        for key, value in filter.items():
            query = query.is_(key, "null") if value is None else query.eq(key, value)

        if entity_type in AGGREGATE_TABLES:
            query = query.order("created_at", desc=True)
        else:
            query = query.order("name")
        if limit is not None:
            query = query.limit(int(limit))

        return await self._execute(query) or []

    async def create(self, entity_type: str, fields: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        rows = await self._execute(client.table(entity_type).insert(fields))
        if not rows:
            raise ServerError(f"Insert into {entity_type} returned no record")
        return rows[0]

    async def update(
        self,
        entity_type: str,
        id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        client = await self._get_client()
        rows = await self._execute(
            client.table(entity_type).update(patch).eq("id", id)
        )
        if not rows:
            raise NotFoundError(f"{entity_type} record not found: {id}")
        return rows[0]

    async def delete(self, entity_type: str, id: str) -> None:
        client = await self._get_client()
        rows = await self._execute(client.table(entity_type).delete().eq("id", id))
        if not rows:
            raise NotFoundError(f"{entity_type} record not found: {id}")

    async def create_aggregate_atomic(
        self,
        aggregate_type: str,
        header: dict[str, Any],
        items: list[dict[str, Any]],
        payments: list[dict[str, Any]],
        notes: list[dict[str, Any]],
    ) -> dict[str, Any]:
        suffix = AGGREGATE_FUNCTIONS.get(aggregate_type)
        if suffix is None:
            raise ValidationError(
                f"No atomic create function for {aggregate_type}",
                field="aggregate_type",
            )

        params = {f"p_{key}": value for key, value in header.items()}
        params.update(p_items=items, p_payments=payments, p_notes=notes)

        client = await self._get_client()
        data = await self._execute(client.rpc(f"create_complete_{suffix}", params))

        # The functions report their own failures as {success: false, error}
        if isinstance(data, dict) and data.get("success") is False:
            raise ServerError(data.get("error") or f"create_complete_{suffix} failed")

        result = dict(data) if isinstance(data, dict) else {}
        aggregate_id = result.get("id") or result.get(f"{suffix}_id")
        if not aggregate_id:
            raise ServerError(f"create_complete_{suffix} returned no id")

        result["id"] = str(aggregate_id)
        logger.debug(
            "aggregate_rpc_completed",
            aggregate_type=aggregate_type,
            aggregate_id=result["id"],
        )
        return result
