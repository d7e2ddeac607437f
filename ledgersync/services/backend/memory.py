"""
In-Memory Backend Implementation

Keeps every table as a dict of records in process memory. Used for
tests and offline development.

Besides the BackendInterface calls it offers two hooks for exercising
the optimistic layer's failure and ordering paths:

- fail_next(): make the next matching call raise a BackendError
- hold_next(): make the next matching call wait on an asyncio.Event,
  so tests can decide in which order concurrent responses "arrive"
"""

import asyncio
import copy
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from ledgersync.services.backend.interface import (
    CHILD_FIELDS,
    CHILD_TABLES,
    LIMIT,
    NAME_ICONTAINS,
    NAME_IEQ,
    BackendError,
    BackendInterface,
    DuplicateError,
    NotFoundError,
    ValidationError,
)


AGGREGATE_TABLES = frozenset({"orders", "material_purchases", "expenses"})

# Lookup tables whose names are unique, and the parent column that scopes them
UNIQUE_NAME_SCOPES: dict[str, Optional[str]] = {
    "clients": None,
    "categories": None,
    "items": "category_id",
    "sizes": None,
    "suppliers": None,
    "expense_categories": None,
}

ORDER_NUMBER_PREFIXES = {
    "orders": "ORD",
    "material_purchases": "MAT",
    "expenses": "EXP",
}

# child table -> (aggregate table, aggregate field, parent key column)
_CHILD_INDEX: dict[str, tuple[str, str, str]] = {
    tables.table_for(child_field): (aggregate, child_field, tables.parent_key)
    for aggregate, tables in CHILD_TABLES.items()
    for child_field in CHILD_FIELDS
}


@dataclass
class _Interception:
    operation: str
    entity_type: Optional[str]
    error: Optional[BackendError] = None
    gate: Optional[asyncio.Event] = None
    remaining: int = 1

    def matches(self, operation: str, entity_type: str) -> bool:
        return self.operation == operation and (
            self.entity_type is None or self.entity_type == entity_type
        )


@dataclass
class CallRecord:
    operation: str
    entity_type: str
    args: dict[str, Any] = field(default_factory=dict)


def _casefold(value: Any) -> str:
    return str(value or "").strip().casefold()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryBackend(BackendInterface):
    """
    BackendInterface over plain dicts.

    Records are deep-copied on the way in and out so callers can never
    mutate stored state by accident.

    Rows of child tables (order_items, order_payments, ...) are kept
    embedded in their parent aggregate, the way an aggregate lookup
    returns them.
    """

    def __init__(self, seed: Optional[dict[str, list[dict[str, Any]]]] = None):
        self._tables: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._interceptions: list[_Interception] = []
        self._sequences: dict[str, int] = defaultdict(int)
        self.calls: list[CallRecord] = []

        for entity_type, records in (seed or {}).items():
            self.seed(entity_type, records)

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def seed(self, entity_type: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert records directly, bypassing call recording and interceptions."""
        stored = []
        for record in records:
            row = copy.deepcopy(record)
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", _now())
            row.setdefault("updated_at", row["created_at"])
            self._tables[entity_type][str(row["id"])] = row
            stored.append(copy.deepcopy(row))
        return stored

    def fail_next(
        self,
        operation: str,
        error: BackendError,
        entity_type: Optional[str] = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` matching calls raise `error`."""
        self._interceptions.append(
            _Interception(operation, entity_type, error=error, remaining=times)
        )

    def hold_next(
        self,
        operation: str,
        entity_type: Optional[str] = None,
        error: Optional[BackendError] = None,
    ) -> asyncio.Event:
        """
        Make the next matching call block until the returned event is set.

        The response is computed after the event is set; with `error`
        the call raises it once released instead.
        """
        gate = asyncio.Event()
        self._interceptions.append(
            _Interception(operation, entity_type, error=error, gate=gate)
        )
        return gate

    def table(self, entity_type: str) -> list[dict[str, Any]]:
        """Snapshot of a table's records in insertion order."""
        return [copy.deepcopy(row) for row in self._tables[entity_type].values()]

    def calls_to(self, operation: str, entity_type: Optional[str] = None) -> int:
        return sum(
            1 for call in self.calls
            if call.operation == operation
            and (entity_type is None or call.entity_type == entity_type)
        )

    async def _enter(self, operation: str, entity_type: str, **args: Any) -> None:
        self.calls.append(CallRecord(operation, entity_type, args))

        interception = next(
            (i for i in self._interceptions if i.matches(operation, entity_type)),
            None,
        )
        if interception is not None:
            interception.remaining -= 1
            if interception.remaining <= 0:
                self._interceptions.remove(interception)
            if interception.gate is not None:
                await interception.gate.wait()
            if interception.error is not None:
                raise interception.error

        # Every backend call is a suspension point
        await asyncio.sleep(0)

    # ------------------------------------------------------------------
    # BackendInterface
    # ------------------------------------------------------------------

    async def lookup(
        self,
        entity_type: str,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        filter = dict(filter or {})
        await self._enter("lookup", entity_type, filter=filter)

        name_ieq = filter.pop(NAME_IEQ, None)
        name_icontains = filter.pop(NAME_ICONTAINS, None)
        limit = filter.pop(LIMIT, None)

        rows = list(self._tables[entity_type].values())
        if name_ieq is not None:
            rows = [r for r in rows if _casefold(r.get("name")) == _casefold(name_ieq)]
        if name_icontains:
            needle = _casefold(name_icontains)
            rows = [r for r in rows if needle in _casefold(r.get("name"))]
        for key, value in filter.items():
            rows = [r for r in rows if r.get(key) == value]

        if entity_type in AGGREGATE_TABLES:
            rows = list(reversed(rows))
        else:
            rows.sort(key=lambda r: _casefold(r.get("name")))

        if limit is not None:
            rows = rows[:int(limit)]
        return [copy.deepcopy(r) for r in rows]

    async def create(self, entity_type: str, fields: dict[str, Any]) -> dict[str, Any]:
        await self._enter("create", entity_type, fields=fields)

        if entity_type in _CHILD_INDEX:
            return self._create_child(entity_type, fields)

        if entity_type in UNIQUE_NAME_SCOPES:
            name = fields.get("name")
            if not _casefold(name):
                raise ValidationError(f"{entity_type}.name is required", field="name")
            scope = UNIQUE_NAME_SCOPES[entity_type]
            for row in self._tables[entity_type].values():
                same_scope = scope is None or row.get(scope) == fields.get(scope)
                if same_scope and _casefold(row.get("name")) == _casefold(name):
                    raise DuplicateError(
                        f'duplicate key value violates unique constraint "{entity_type}_name_key"'
                    )

        row = copy.deepcopy(fields)
        row["id"] = str(uuid4())
        row["created_at"] = row["updated_at"] = _now()
        if entity_type in ORDER_NUMBER_PREFIXES and row.get("order_number") is None:
            row["order_number"] = self._next_number(entity_type)
        self._tables[entity_type][row["id"]] = row
        return copy.deepcopy(row)

    async def update(
        self,
        entity_type: str,
        id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        await self._enter("update", entity_type, id=id, patch=patch)

        if entity_type in _CHILD_INDEX:
            siblings, index = self._find_child(entity_type, id)
            siblings[index].update(copy.deepcopy(patch))
            siblings[index]["id"] = id
            return copy.deepcopy(siblings[index])

        row = self._tables[entity_type].get(id)
        if row is None:
            raise NotFoundError(f"{entity_type} record not found: {id}")
        row.update(copy.deepcopy(patch))
        row["id"] = id
        row["updated_at"] = _now()
        return copy.deepcopy(row)

    async def delete(self, entity_type: str, id: str) -> None:
        await self._enter("delete", entity_type, id=id)

        if entity_type in _CHILD_INDEX:
            siblings, index = self._find_child(entity_type, id)
            del siblings[index]
            return

        if self._tables[entity_type].pop(id, None) is None:
            raise NotFoundError(f"{entity_type} record not found: {id}")

    async def create_aggregate_atomic(
        self,
        aggregate_type: str,
        header: dict[str, Any],
        items: list[dict[str, Any]],
        payments: list[dict[str, Any]],
        notes: list[dict[str, Any]],
    ) -> dict[str, Any]:
        await self._enter(
            "create_aggregate_atomic",
            aggregate_type,
            header=header,
            items=items,
            payments=payments,
            notes=notes,
        )

        aggregate_id = str(uuid4())
        row = copy.deepcopy(header)
        row.update(
            id=aggregate_id,
            order_number=self._next_number(aggregate_type),
            items=[{**copy.deepcopy(i), "id": str(uuid4())} for i in items],
            payments=[
                {
                    "id": str(uuid4()),
                    "amount": p["amount"],
                    "date": p.get("payment_date"),
                    "payment_method": p.get("payment_method"),
                    "notes": p.get("notes"),
                }
                for p in payments
            ],
            notes=[{**copy.deepcopy(n), "id": str(uuid4())} for n in notes],
            created_at=_now(),
            updated_at=_now(),
        )
        self._tables[aggregate_type][aggregate_id] = row
        return {"id": aggregate_id, "order_number": row["order_number"]}

    def _create_child(self, entity_type: str, fields: dict[str, Any]) -> dict[str, Any]:
        aggregate, child_field, parent_key = _CHILD_INDEX[entity_type]
        parent = self._tables[aggregate].get(str(fields.get(parent_key)))
        if parent is None:
            raise ValidationError(
                f'insert or update on table "{entity_type}" violates foreign key constraint',
                field=parent_key,
            )
        row = copy.deepcopy(fields)
        row["id"] = str(uuid4())
        parent.setdefault(child_field, []).append(row)
        parent["updated_at"] = _now()
        return copy.deepcopy(row)

    def _find_child(self, entity_type: str, id: str) -> tuple[list[dict[str, Any]], int]:
        aggregate, child_field, _ = _CHILD_INDEX[entity_type]
        for parent in self._tables[aggregate].values():
            siblings = parent.get(child_field) or []
            for index, child in enumerate(siblings):
                if child.get("id") == id:
                    return siblings, index
        raise NotFoundError(f"{entity_type} record not found: {id}")

    def _next_number(self, entity_type: str) -> str:
        self._sequences[entity_type] += 1
        prefix = ORDER_NUMBER_PREFIXES.get(entity_type, entity_type[:3].upper())
        return f"{prefix}-{self._sequences[entity_type]:04d}"
