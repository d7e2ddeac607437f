"""
Optimistic Store

Holds one cached collection of aggregates (orders, material purchases
or expenses) and applies mutations to it before the backend confirms
them.

DESIGN DECISION: Every mutation has an explicit rollback rule.
- create: a provisional entry with a temporary id goes to the head of
  the list; success swaps it in place for the server record, failure
  removes it.
- update: the merged entry is shown immediately; success swaps in the
  server record, failure invalidates the whole collection so the next
  read re-fetches it. Restoring the pre-update copy could hide a write
  that the server did apply before the connection dropped.
- delete: the entry disappears immediately; failure puts the retained
  copy back at its old position unless it is already there.

Local edits only touch a loaded collection. When the collection is not
cached (never fetched, expired or invalidated) the backend call still
happens, and the next read fetches the full collection.

Aggregates are created with items, payments and notes in one atomic
backend call. Later item, payment and note edits are written to their
own tables (CHILD_TABLES); only header and ledger fields go to the
aggregate row.

Only one mutation is in flight per store. A mutation requested while
another is pending is rejected as a no-op, never queued.

Every entry that enters the cache, provisional or confirmed, passes
through apply_ledger, so totals, balance and payment status always
agree with the items and payments shown.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError as ModelValidationError

from ledgersync.audit.logger import AuditLogger
from ledgersync.config import AppSettings, get_settings
from ledgersync.ledger.calculator import apply_ledger
from ledgersync.models.audit import AuditEventBuilder
from ledgersync.models.ledger import (
    Expense,
    LedgerAggregate,
    LineItem,
    MaterialPurchase,
    Note,
    Order,
    Payment,
)
from ledgersync.services.backend.interface import (
    CHILD_FIELDS,
    CHILD_TABLES,
    BackendError,
    BackendInterface,
    ErrorCode,
)
from ledgersync.store.cache import TTLCache


logger = structlog.get_logger(__name__)

A = TypeVar("A", bound=LedgerAggregate)

# Fields the server never accepts from the client
_SERVER_FIELDS = {"id", "created_at", "updated_at"}
_LEDGER_FIELDS = {"total_amount", "amount_paid", "balance", "payment_status"}


class StoreError(Exception):
    """A store mutation or fetch failed; the cache has been rolled back."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        field: Optional[str] = None,
        operation: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.field = field
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(message)

    @classmethod
    def from_exception(
        cls,
        error: Exception,
        operation: str,
        entity_id: Optional[str] = None,
    ) -> "StoreError":
        if isinstance(error, BackendError):
            return cls(error.code, error.message, error.field, operation, entity_id)
        if isinstance(error, asyncio.TimeoutError):
            return cls(ErrorCode.NETWORK_ERROR, "Request timed out", None, operation, entity_id)
        return cls(ErrorCode.SERVER_ERROR, str(error) or type(error).__name__, None, operation, entity_id)

    def __repr__(self) -> str:
        return f"StoreError(code={self.code.value}, operation={self.operation}, message={self.message!r})"


def _validation_error(error: ModelValidationError, operation: str, entity_id: Optional[str]) -> StoreError:
    first = error.errors()[0] if error.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return StoreError(
        ErrorCode.VALIDATION_ERROR,
        first.get("msg", str(error)),
        field=field,
        operation=operation,
        entity_id=entity_id,
    )


Child = Union[LineItem, Payment, Note]


@dataclass
class _ChildChanges:
    added: list[Child] = field(default_factory=list)
    changed: list[Child] = field(default_factory=list)
    removed: list[Child] = field(default_factory=list)
    # Removed rows that were never saved with an id; nothing to delete by
    unsaved_removals: list[Child] = field(default_factory=list)


def _child_row(child: Child) -> dict[str, Any]:
    return child.model_dump(mode="json", exclude={"id"})


def _diff_children(previous: list[Child], current: list[Child]) -> _ChildChanges:
    """
    Compare a child list before and after an edit.

    Children with an id are matched by id. Children without one (created
    in the same call as their aggregate, before a refresh) are matched
    by value.
    """
    changes = _ChildChanges()
    by_id = {child.id: child for child in previous if child.id}
    unsaved = [child for child in previous if not child.id]

    for child in current:
        if child.id and child.id in by_id:
            if _child_row(by_id.pop(child.id)) != _child_row(child):
                changes.changed.append(child)
            continue
        match = next(
            (old for old in unsaved if not child.id and _child_row(old) == _child_row(child)),
            None,
        )
        if match is not None:
            unsaved.remove(match)
            continue
        changes.added.append(child)

    changes.removed = list(by_id.values())
    changes.unsaved_removals = unsaved
    return changes


class OptimisticStore(Generic[A]):
    """
    Optimistic cache for one collection.

    Mutations return the resulting entry (or True for delete) on success
    and None (or False) when they fail or are rejected because another
    mutation is in flight. Failures are recorded in `last_error` and
    passed to `on_error` when one is given.

    Usage:
        store = OptimisticStore(Order, backend)
        await store.refresh()
        order = await store.create({"client_name": "Acme", "items": [...]})
    """

    def __init__(
        self,
        model: type[A],
        backend: BackendInterface,
        audit_logger: Optional[AuditLogger] = None,
        cache_ttl_seconds: float = 1800.0,
        temp_id_prefix: str = "temp-",
        on_error: Optional[Callable[[StoreError], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._model = model
        self._backend = backend
        self._audit = audit_logger or AuditLogger()
        self._temp_id_prefix = temp_id_prefix
        self._on_error = on_error
        self._cache: TTLCache[list[A]] = (
            TTLCache(cache_ttl_seconds, clock) if clock else TTLCache(cache_ttl_seconds)
        )
        self._busy = False
        self.last_error: Optional[StoreError] = None

    @classmethod
    def from_settings(
        cls,
        model: type[A],
        backend: BackendInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        on_error: Optional[Callable[[StoreError], None]] = None,
    ) -> "OptimisticStore[A]":
        settings = settings or get_settings().app
        return cls(
            model,
            backend,
            audit_logger=audit_logger,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            temp_id_prefix=settings.temp_id_prefix,
            on_error=on_error,
        )

    @property
    def collection(self) -> str:
        return self._model.aggregate_type

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_loaded(self) -> bool:
        return self.collection in self._cache

    def is_temporary(self, entity_id: str) -> bool:
        return entity_id.startswith(self._temp_id_prefix)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> list[A]:
        """The collection as currently cached (empty if not loaded or expired)."""
        return list(self._cache.get(self.collection) or [])

    def get(self, entity_id: str) -> Optional[A]:
        return next((e for e in self.snapshot() if e.id == entity_id), None)

    async def items(self) -> list[A]:
        """The cached collection, re-fetched first if expired or invalidated."""
        cached = self._cache.get(self.collection)
        if cached is not None:
            return list(cached)
        return await self.refresh()

    async def refresh(self) -> list[A]:
        """
        Replace the cached collection with a fresh fetch.

        Raises:
            StoreError: If the fetch fails; the cache is left as it was
        """
        try:
            records = await self._backend.lookup(self.collection)
        except Exception as e:
            raise StoreError.from_exception(e, "refresh") from e

        entries = [self._from_record(record) for record in records]
        self._cache.set(self.collection, entries)
        logger.debug("collection_refreshed", collection=self.collection, count=len(entries))
        return list(entries)

    def invalidate(self) -> None:
        self._cache.invalidate(self.collection)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, draft: Union[dict[str, Any], A]) -> Optional[A]:
        """
        Insert a provisional entry at the head of the list, then persist it.

        Args:
            draft: Aggregate fields without an id (a dict, or a model
                   whose id will be replaced by a temporary one)
        """
        if not self._acquire("create"):
            return None
        try:
            return await self._create(draft)
        finally:
            self._busy = False

    async def _create(self, draft: Union[dict[str, Any], A]) -> Optional[A]:
        fields = draft.model_dump() if isinstance(draft, LedgerAggregate) else dict(draft)

        try:
            provisional = self.insert_provisional(fields)
        except ModelValidationError as e:
            return self._fail(_validation_error(e, "create", None))

        temp_id = provisional.id
        await self._audit.log(AuditEventBuilder.create_applied(self.collection, temp_id))

        try:
            response = await self._backend.create_aggregate_atomic(
                self.collection, *self._atomic_payload(provisional)
            )
            confirmed = self.confirm(provisional, response)
        except Exception as e:
            self.discard(temp_id)
            error = StoreError.from_exception(e, "create", temp_id)
            await self._audit.log(
                AuditEventBuilder.create_rolled_back(
                    self.collection, temp_id, error.code.value, error.message
                )
            )
            return self._fail(error)

        await self._audit.log(
            AuditEventBuilder.create_confirmed(self.collection, temp_id, confirmed.id)
        )
        return confirmed

    # ------------------------------------------------------------------
    # Provisional entries
    # ------------------------------------------------------------------

    def insert_provisional(self, fields: dict[str, Any]) -> A:
        """
        Show a not yet persisted aggregate at the head of the list.

        The entry gets a temporary id. While the collection is not loaded
        nothing is shown; the next read fetches the collection instead.
        Does not take the busy flag: callers persisting the aggregate
        themselves pair this with confirm() or discard().

        Raises:
            pydantic.ValidationError: If the fields do not form a valid aggregate
        """
        temp_id = f"{self._temp_id_prefix}{uuid4()}"
        provisional = apply_ledger(self._model.model_validate({**fields, "id": temp_id}))
        self._write([provisional, *self.snapshot()])
        return provisional

    def confirm(self, provisional: A, record: dict[str, Any]) -> A:
        """Swap a provisional entry, in place, for the server's version of it."""
        confirmed = self._from_record(record, base=provisional)
        temp_id = provisional.id

        entries = self.snapshot()
        position = next((i for i, e in enumerate(entries) if e.id == temp_id), None)
        if position is None:
            # A refresh dropped the provisional entry while the call was in flight
            position = next((i for i, e in enumerate(entries) if e.id == confirmed.id), 0)
        remaining = [
            e for i, e in enumerate(entries)
            if i != position and e.id not in (temp_id, confirmed.id)
        ]
        remaining.insert(min(position, len(remaining)), confirmed)
        self._write(remaining)
        return confirmed

    def discard(self, temp_id: str) -> None:
        """Drop a provisional entry whose creation failed."""
        self._write([entry for entry in self.snapshot() if entry.id != temp_id])

    async def update(self, entity_id: str, patch: dict[str, Any]) -> Optional[A]:
        """
        Merge `patch` into an entry locally, then persist it.

        Derived ledger fields in the patch are ignored; they are
        recomputed from the merged items and payments.
        """
        if not self._acquire("update"):
            return None
        try:
            return await self._update(entity_id, patch)
        finally:
            self._busy = False

    async def _update(self, entity_id: str, patch: dict[str, Any]) -> Optional[A]:
        entries = self.snapshot()
        position = next((i for i, e in enumerate(entries) if e.id == entity_id), None)
        if position is None:
            return self._fail(StoreError(
                ErrorCode.NOT_FOUND,
                f"{self.collection} entry not found: {entity_id}",
                operation="update",
                entity_id=entity_id,
            ))

        patch = {k: v for k, v in patch.items() if k not in _SERVER_FIELDS}
        previous = entries[position]
        try:
            merged = apply_ledger(
                self._model.model_validate({**previous.model_dump(), **patch})
            )
        except ModelValidationError as e:
            return self._fail(_validation_error(e, "update", entity_id))

        changes = {}
        for child_field in CHILD_FIELDS:
            if child_field not in patch:
                continue
            changes[child_field] = _diff_children(
                getattr(previous, child_field), getattr(merged, child_field)
            )
            if changes[child_field].unsaved_removals:
                return self._fail(StoreError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Unsaved {child_field} on {entity_id} cannot be removed until the collection is refreshed",
                    field=child_field,
                    operation="update",
                    entity_id=entity_id,
                ))

        entries[position] = merged
        self._write(entries)
        await self._audit.log(
            AuditEventBuilder.update_applied(self.collection, entity_id, sorted(patch))
        )

        header = set(patch) - set(CHILD_FIELDS)
        try:
            merged = await self._persist_children(entity_id, merged, changes)
            outgoing = merged.model_dump(mode="json", include=header | _LEDGER_FIELDS)
            record = await self._backend.update(self.collection, entity_id, outgoing)
            confirmed = self._from_record(record, base=merged)
        except Exception as e:
            self.invalidate()
            error = StoreError.from_exception(e, "update", entity_id)
            await self._audit.log(
                AuditEventBuilder.cache_invalidated(
                    self.collection, entity_id, error.code.value, error.message
                )
            )
            return self._fail(error)

        entries = self.snapshot()
        for i, entry in enumerate(entries):
            if entry.id == entity_id:
                entries[i] = confirmed
                self._write(entries)
                break

        await self._audit.log(AuditEventBuilder.update_confirmed(self.collection, entity_id))
        return confirmed

    async def delete(self, entity_id: str) -> bool:
        """Remove an entry locally, then delete it on the server."""
        if not self._acquire("delete"):
            return False
        try:
            return await self._delete(entity_id)
        finally:
            self._busy = False

    async def _delete(self, entity_id: str) -> bool:
        entries = self.snapshot()
        position = next((i for i, e in enumerate(entries) if e.id == entity_id), None)
        if position is None:
            self._fail(StoreError(
                ErrorCode.NOT_FOUND,
                f"{self.collection} entry not found: {entity_id}",
                operation="delete",
                entity_id=entity_id,
            ))
            return False

        retained = entries.pop(position)
        self._write(entries)
        await self._audit.log(AuditEventBuilder.delete_applied(self.collection, entity_id))

        try:
            await self._backend.delete(self.collection, entity_id)
        except Exception as e:
            entries = self.snapshot()
            already_present = any(entry.id == entity_id for entry in entries)
            if not already_present:
                entries.insert(min(position, len(entries)), retained)
                self._write(entries)
            error = StoreError.from_exception(e, "delete", entity_id)
            await self._audit.log(
                AuditEventBuilder.delete_restored(
                    self.collection,
                    entity_id,
                    error.code.value,
                    error.message,
                    already_present=already_present,
                )
            )
            self._fail(error)
            return False

        # A refresh during the call may have brought the entry back
        entries = self.snapshot()
        if any(entry.id == entity_id for entry in entries):
            self._write([entry for entry in entries if entry.id != entity_id])

        await self._audit.log(AuditEventBuilder.delete_confirmed(self.collection, entity_id))
        return True

    # ------------------------------------------------------------------
    # Item and payment edits
    # ------------------------------------------------------------------

    async def add_item(self, entity_id: str, item: Union[LineItem, dict[str, Any]]) -> Optional[A]:
        entry = self._require(entity_id, "add_item")
        if entry is None:
            return None
        return await self.update(entity_id, {"items": [*entry.items, item]})

    async def remove_item(self, entity_id: str, item_id: str) -> Optional[A]:
        entry = self._require(entity_id, "remove_item")
        if entry is None:
            return None
        items = [item for item in entry.items if item.id != item_id]
        if len(items) == len(entry.items):
            return self._fail(StoreError(
                ErrorCode.NOT_FOUND,
                f"Item {item_id} not found on {entity_id}",
                field="items",
                operation="remove_item",
                entity_id=entity_id,
            ))
        return await self.update(entity_id, {"items": items})

    async def add_payment(self, entity_id: str, payment: Union[Payment, dict[str, Any]]) -> Optional[A]:
        entry = self._require(entity_id, "add_payment")
        if entry is None:
            return None
        return await self.update(entity_id, {"payments": [*entry.payments, payment]})

    async def remove_payment(self, entity_id: str, payment_id: str) -> Optional[A]:
        entry = self._require(entity_id, "remove_payment")
        if entry is None:
            return None
        payments = [p for p in entry.payments if p.id != payment_id]
        if len(payments) == len(entry.payments):
            return self._fail(StoreError(
                ErrorCode.NOT_FOUND,
                f"Payment {payment_id} not found on {entity_id}",
                field="payments",
                operation="remove_payment",
                entity_id=entity_id,
            ))
        return await self.update(entity_id, {"payments": payments})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acquire(self, operation: str) -> bool:
        if self._busy:
            logger.debug(
                "audit_event",
                **AuditEventBuilder.mutation_rejected_busy(self.collection, operation).to_log_dict(),
            )
            return False
        self._busy = True
        return True

    def _require(self, entity_id: str, operation: str) -> Optional[A]:
        entry = self.get(entity_id)
        if entry is None:
            self._fail(StoreError(
                ErrorCode.NOT_FOUND,
                f"{self.collection} entry not found: {entity_id}",
                operation=operation,
                entity_id=entity_id,
            ))
        return entry

    def _fail(self, error: StoreError) -> None:
        self.last_error = error
        logger.warning(
            "store_mutation_failed",
            collection=self.collection,
            operation=error.operation,
            entity_id=error.entity_id,
            code=error.code.value,
            message=error.message,
        )
        if self._on_error is not None:
            self._on_error(error)
        return None

    def _write(self, entries: list[A]) -> None:
        # Local edits keep the current lifetime; only fetches extend it
        self._cache.replace(self.collection, entries)

    def _atomic_payload(self, entry: A) -> tuple[dict[str, Any], list, list, list]:
        """Header, items, payments and notes in the shape create_aggregate_atomic takes."""
        header = entry.model_dump(mode="json", exclude=_SERVER_FIELDS | set(CHILD_FIELDS))
        # Numbering is the server's; an unset number must not be sent as null
        header = {k: v for k, v in header.items() if not (k == "order_number" and v is None)}
        payments = [
            {
                "amount": row["amount"],
                "payment_date": row["date"],
                "payment_method": row["payment_method"],
                "notes": row["notes"],
            }
            for row in (_child_row(p) for p in entry.payments)
        ]
        return (
            header,
            [_child_row(item) for item in entry.items],
            payments,
            [_child_row(note) for note in entry.notes],
        )

    async def _persist_children(
        self,
        entity_id: str,
        merged: A,
        changes: dict[str, "_ChildChanges"],
    ) -> A:
        """Write item, payment and note edits to their own tables; returns `merged` with server ids."""
        tables = CHILD_TABLES[self.collection]
        saved_fields = {}
        for child_field, diff in changes.items():
            table = tables.table_for(child_field)
            for child in diff.removed:
                await self._backend.delete(table, child.id)
            for child in diff.changed:
                await self._backend.update(table, child.id, _child_row(child))

            saved = []
            for child in getattr(merged, child_field):
                if any(child is added for added in diff.added):
                    record = await self._backend.create(
                        table, {tables.parent_key: entity_id, **_child_row(child)}
                    )
                    child = type(child).model_validate({**child.model_dump(), **record})
                saved.append(child)
            saved_fields[child_field] = saved

        if not saved_fields:
            return merged
        return merged.model_copy(update=saved_fields)

    def _from_record(self, record: dict[str, Any], base: Optional[A] = None) -> A:
        # Server fields win; fields the server omits keep their local values
        fields = {**base.model_dump(), **record} if base is not None else record
        return apply_ledger(self._model.model_validate(fields))


def order_store(
    backend: BackendInterface,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[AppSettings] = None,
) -> OptimisticStore[Order]:
    return OptimisticStore.from_settings(Order, backend, audit_logger, settings)


def material_purchase_store(
    backend: BackendInterface,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[AppSettings] = None,
) -> OptimisticStore[MaterialPurchase]:
    return OptimisticStore.from_settings(MaterialPurchase, backend, audit_logger, settings)


def expense_store(
    backend: BackendInterface,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[AppSettings] = None,
) -> OptimisticStore[Expense]:
    return OptimisticStore.from_settings(Expense, backend, audit_logger, settings)
