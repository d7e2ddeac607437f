"""
Composite Creation Orchestrator

This module ties together validation, reference resolution and the
backend, and defines the end-to-end creation flows for:
1. Orders (client, categories, items, sizes, payments, notes)
2. Material purchases (supplier, optional installment plan)
3. Expenses (expense category)

Flow:
1. Validate → errors stop here, before any network call
2. Resolve → counterparty first, then category → item → size per line,
   one reference at a time
3. Persist → header, items, payments and notes in ONE atomic call; an
   attached store shows a provisional entry until the call answers
4. Notify → best-effort; failures are logged, never raised
5. Refresh → background re-fetch of the collection, retried once

DESIGN DECISION: Every stage either returns its output or raises a
CreationError carrying the originating error. No stage runs after a
failure, so a failed resolution can never leave a half-created order.
"""

import asyncio
import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ledgersync.audit import AuditLogger, create_correlation_id
from ledgersync.config import AppSettings, get_settings
from ledgersync.ledger import build_installment_plan, compute_ledger
from ledgersync.models.audit import AuditEventBuilder
from ledgersync.models.drafts import (
    AggregateDraft,
    ExpenseDraft,
    MaterialPurchaseDraft,
    OrderDraft,
    ResolvableReference,
    ValidationIssue,
)
from ledgersync.models.ledger import (
    Expense,
    LedgerAggregate,
    LineItem,
    MaterialPurchase,
    Order,
    Payment,
)
from ledgersync.resolver import EntityResolver, RecentReferenceStore, ResolveError
from ledgersync.services.backend import (
    BackendError,
    BackendInterface,
    InMemoryBackend,
    SupabaseBackend,
)
from ledgersync.services.notifications import NotificationService
from ledgersync.store import OptimisticStore, StoreError
from ledgersync.validation import DraftValidator


logger = structlog.get_logger(__name__)

D = TypeVar("D", bound=AggregateDraft)


class CreationStage(str, Enum):
    VALIDATE = "validate"
    RESOLVE = "resolve"
    PERSIST = "persist"


class CreationError(Exception):
    """A composite creation was aborted; nothing was persisted."""

    def __init__(
        self,
        code: str,
        message: str,
        stage: CreationStage,
        field: Optional[str] = None,
        issues: Optional[list[ValidationIssue]] = None,
    ):
        self.code = code
        self.message = message
        self.stage = stage
        self.field = field
        self.issues = issues or []
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"CreationError(code={self.code}, stage={self.stage.value}, "
            f"field={self.field}, message={self.message!r})"
        )


class CreationResult(BaseModel):
    """Outcome of a successful composite creation."""

    aggregate_type: str
    aggregate_id: str
    order_number: Optional[str] = None
    correlation_id: UUID
    counterparty_id: str
    item_count: int
    payment_count: int
    warnings: list[ValidationIssue] = Field(default_factory=list)
    notification_sent: bool = False


class CompositeCreationFlow(Generic[D]):
    """
    Sequential creation pipeline shared by every aggregate type.

    Subclasses choose whether line items carry sizes and may add
    aggregate-specific header fields.
    """

    resolves_sizes: bool = False

    def __init__(
        self,
        backend: BackendInterface,
        resolver: Optional[EntityResolver] = None,
        validator: Optional[DraftValidator] = None,
        notifications: Optional[NotificationService] = None,
        store: Optional[OptimisticStore] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._backend = backend
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app
        self._resolver = resolver or EntityResolver(
            backend,
            audit_logger=self._audit_logger,
            search_limit=self._settings.search_limit,
        )
        self._validator = validator or DraftValidator()
        self._notifications = notifications or NotificationService(backend)
        self._store = store
        self._refresh_tasks: set[asyncio.Task] = set()

    async def create(
        self,
        draft: D,
        correlation_id: Optional[UUID] = None,
    ) -> CreationResult:
        """
        Run the full pipeline for one draft.

        Raises:
            CreationError: If validation, resolution or persistence fails
        """
        correlation_id = correlation_id or create_correlation_id()

        # Stage 1: validate
        validation = self._validator.validate(draft)
        if not validation.is_valid:
            first = validation.first_error
            await self._audit_logger.log(
                AuditEventBuilder.validation_failed(
                    draft.aggregate_type,
                    [issue.model_dump() for issue in validation.issues],
                    correlation_id=correlation_id,
                )
            )
            raise CreationError(
                "VALIDATION_ERROR",
                first.message,
                CreationStage.VALIDATE,
                field=first.field,
                issues=validation.issues,
            )

        # Stage 2: resolve references, one at a time
        draft = draft.model_copy(deep=True)
        counterparty_id = await self._resolve(
            draft.counterparty_entity,
            draft.counterparty,
            draft.counterparty_field,
            correlation_id,
        )
        draft.counterparty.resolved_id = counterparty_id
        items = await self._resolve_items(draft, correlation_id)

        # Stage 3: persist atomically
        payments = self._normalize_payments(draft)
        notes = [
            {"type": note.type.value, "text": note.text.strip()}
            for note in draft.notes
            if note.text.strip()
        ]
        header = self._build_header(draft, items, payments)
        provisional = self._show_provisional(header, items, payments, notes)

        try:
            response = await self._backend.create_aggregate_atomic(
                draft.aggregate_type, header, items, payments, notes
            )
        except BackendError as e:
            if provisional is not None:
                self._store.discard(provisional.id)
            await self._audit_logger.log(
                AuditEventBuilder.aggregate_create_failed(
                    draft.aggregate_type,
                    e.code.value,
                    e.message,
                    correlation_id=correlation_id,
                )
            )
            raise CreationError(
                e.code.value, e.message, CreationStage.PERSIST, field=e.field
            ) from e
        except Exception:
            if provisional is not None:
                self._store.discard(provisional.id)
            raise

        aggregate_id = str(response["id"])
        if provisional is not None:
            self._store.confirm(provisional, {**response, "id": aggregate_id})
        await self._audit_logger.log(
            AuditEventBuilder.aggregate_created(
                draft.aggregate_type,
                aggregate_id,
                item_count=len(items),
                payment_count=len(payments),
                correlation_id=correlation_id,
            )
        )

        # Stage 4: side effects
        notification_sent = await self._notify(draft, aggregate_id, len(items), correlation_id)

        # Stage 5: background refresh
        self.schedule_refresh(correlation_id)

        return CreationResult(
            aggregate_type=draft.aggregate_type,
            aggregate_id=aggregate_id,
            order_number=response.get("order_number"),
            correlation_id=correlation_id,
            counterparty_id=counterparty_id,
            item_count=len(items),
            payment_count=len(payments),
            warnings=[i for i in validation.issues if i.severity == "warning"],
            notification_sent=notification_sent,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        entity_type: str,
        reference: ResolvableReference,
        field: str,
        correlation_id: UUID,
        parent_id: Optional[str] = None,
    ) -> str:
        # A reference picked from search or recent options already has its id
        if reference.is_resolved:
            return reference.resolved_id
        try:
            return await self._resolver.resolve(
                entity_type,
                reference.display_name,
                parent_id=parent_id,
                correlation_id=correlation_id,
            )
        except ResolveError as e:
            raise CreationError(
                e.code.value, e.message, CreationStage.RESOLVE, field=field
            ) from e

    async def _resolve_items(
        self,
        draft: D,
        correlation_id: UUID,
    ) -> list[dict[str, Any]]:
        items = []
        for index, item in enumerate(draft.items):
            path = f"items[{index}]"

            category_id = await self._resolve(
                "categories", item.category, f"{path}.category", correlation_id
            )
            item_id = await self._resolve(
                "items",
                item.item,
                f"{path}.item",
                correlation_id,
                parent_id=category_id,
            )
            item.category.resolved_id = category_id
            item.item.resolved_id = item_id

            row = {
                "item_id": item_id,
                "item_name": item.item.display_name.strip(),
                "category_id": category_id,
                "category_name": item.category.display_name.strip(),
                "quantity": str(item.quantity),
                "unit_price": str(item.unit_price),
                "total_amount": str(item.quantity * item.unit_price),
            }

            if self.resolves_sizes:
                size = (
                    item.size
                    if item.size and not item.size.is_blank
                    else ResolvableReference(display_name=self._settings.default_item_size)
                )
                row["size_id"] = await self._resolve(
                    "sizes", size, f"{path}.size", correlation_id
                )
                row["size"] = size.display_name.strip()

            items.append(row)
        return items

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _normalize_payments(self, draft: D) -> list[dict[str, Any]]:
        today = dt.date.today()
        return [
            {
                "amount": str(payment.amount),
                "payment_date": (payment.payment_date or today).isoformat(),
                "payment_method": payment.payment_method.value,
                "notes": payment.notes,
            }
            for payment in draft.payments
        ]

    def _build_header(
        self,
        draft: D,
        items: list[dict[str, Any]],
        payments: list[dict[str, Any]],
    ) -> dict[str, Any]:
        totals = compute_ledger(
            [LineItem.model_validate(item) for item in items],
            [
                Payment(amount=Decimal(p["amount"]), date=dt.date.fromisoformat(p["payment_date"]))
                for p in payments
            ],
        )
        header = draft.header_fields()
        header.update(
            total_amount=str(totals.total_amount),
            amount_paid=str(totals.amount_paid),
            balance=str(totals.balance),
            payment_status=totals.payment_status.value,
        )
        return header

    def _show_provisional(
        self,
        header: dict[str, Any],
        items: list[dict[str, Any]],
        payments: list[dict[str, Any]],
        notes: list[dict[str, Any]],
    ) -> Optional[LedgerAggregate]:
        """Put the aggregate at the head of the attached store until the server answers."""
        if self._store is None:
            return None
        fields = {
            **header,
            "items": items,
            "payments": [
                {
                    "amount": p["amount"],
                    "date": p["payment_date"],
                    "payment_method": p["payment_method"],
                    "notes": p["notes"],
                }
                for p in payments
            ],
            "notes": notes,
        }
        try:
            return self._store.insert_provisional(fields)
        except ModelValidationError as e:
            # Display only; the atomic call below still decides the outcome
            logger.warning(
                "provisional_entry_skipped",
                collection=self._store.collection,
                error=str(e),
            )
            return None

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _notify(
        self,
        draft: D,
        aggregate_id: str,
        item_count: int,
        correlation_id: UUID,
    ) -> bool:
        try:
            await self._notifications.notify_created(
                draft.aggregate_type,
                aggregate_id,
                draft.counterparty.display_name,
                item_count,
            )
            return True
        except Exception as e:
            await self._audit_logger.log_side_effect_failed(
                side_effect="notification",
                aggregate_id=aggregate_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return False

    def schedule_refresh(self, correlation_id: Optional[UUID] = None) -> Optional[asyncio.Task]:
        """Start a background refresh of the collection, if a store is attached."""
        if self._store is None:
            return None
        task = asyncio.create_task(self.refresh_with_retry(correlation_id))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    async def refresh_with_retry(self, correlation_id: Optional[UUID] = None) -> bool:
        """
        Re-fetch the collection, retrying per the configured policy.

        Returns False (after logging) when every attempt failed.
        """
        if self._store is None:
            return False

        attempts = self._settings.refresh_retry_attempts
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(StoreError),
                stop=stop_after_attempt(attempts),
                wait=wait_fixed(self._settings.refresh_retry_delay_seconds),
                reraise=True,
            ):
                with attempt:
                    await self._store.refresh()
        except StoreError as e:
            await self._audit_logger.log_refresh_failed(
                collection=self._store.collection,
                attempts=attempts,
                error_message=e.message,
                correlation_id=correlation_id,
            )
            return False
        return True

    async def wait_for_refresh(self) -> None:
        """Wait for pending background refreshes to finish."""
        if self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks))


class OrderCreationFlow(CompositeCreationFlow[OrderDraft]):
    """Creates orders; every line item carries a size (default 'Standard')."""

    resolves_sizes = True

    async def create_order(
        self,
        draft: OrderDraft,
        correlation_id: Optional[UUID] = None,
    ) -> CreationResult:
        return await self.create(draft, correlation_id)


class MaterialPurchaseCreationFlow(CompositeCreationFlow[MaterialPurchaseDraft]):
    """Creates material purchases, with an installment plan when requested."""

    async def create_material_purchase(
        self,
        draft: MaterialPurchaseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> CreationResult:
        return await self.create(draft, correlation_id)

    def _build_header(
        self,
        draft: MaterialPurchaseDraft,
        items: list[dict[str, Any]],
        payments: list[dict[str, Any]],
    ) -> dict[str, Any]:
        header = super()._build_header(draft, items, payments)
        balance = Decimal(header["balance"])

        if draft.installment_plan and balance > 0:
            plan = build_installment_plan(
                balance,
                draft.total_installments,
                draft.payment_frequency,
                draft.first_payment_date or draft.date,
            )
            header["installments"] = [
                installment.model_dump(mode="json", exclude={"id", "payment_id"})
                for installment in plan
            ]
        return header


class ExpenseCreationFlow(CompositeCreationFlow[ExpenseDraft]):
    async def create_expense(
        self,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> CreationResult:
        return await self.create(draft, correlation_id)


@dataclass
class AppComponents:
    backend: BackendInterface
    audit_logger: AuditLogger
    resolver: EntityResolver
    stores: dict[str, OptimisticStore]
    order_flow: OrderCreationFlow
    material_purchase_flow: MaterialPurchaseCreationFlow
    expense_flow: ExpenseCreationFlow


def create_app_components(
    use_backend: bool = True,
    backend: Optional[BackendInterface] = None,
    settings: Optional[AppSettings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_backend: Whether to connect to Supabase.
                    Set to False for an in-memory backend (tests, offline).
        backend: Explicit backend; overrides use_backend.

    Returns:
        AppComponents with one store and one creation flow per collection
    """
    settings = settings or get_settings().app

    if backend is None:
        if use_backend:
            try:
                backend = SupabaseBackend()
            except Exception as e:
                # Backend not configured - continue in memory
                logger.warning("backend_not_configured", error=str(e))
                backend = InMemoryBackend()
        else:
            backend = InMemoryBackend()

    audit_logger = AuditLogger(backend)
    resolver = EntityResolver(
        backend,
        audit_logger=audit_logger,
        recent_store=RecentReferenceStore(
            settings.recent_options_path,
            limit=settings.recent_options_limit,
            visible=settings.recent_options_visible,
        ),
        search_limit=settings.search_limit,
    )

    stores: dict[str, OptimisticStore] = {
        model.aggregate_type: OptimisticStore.from_settings(
            model, backend, audit_logger, settings
        )
        for model in (Order, MaterialPurchase, Expense)
    }

    def flow_kwargs(model: type[LedgerAggregate]) -> dict[str, Any]:
        return dict(
            resolver=resolver,
            store=stores[model.aggregate_type],
            audit_logger=audit_logger,
            settings=settings,
        )

    return AppComponents(
        backend=backend,
        audit_logger=audit_logger,
        resolver=resolver,
        stores=stores,
        order_flow=OrderCreationFlow(backend, **flow_kwargs(Order)),
        material_purchase_flow=MaterialPurchaseCreationFlow(
            backend, **flow_kwargs(MaterialPurchase)
        ),
        expense_flow=ExpenseCreationFlow(backend, **flow_kwargs(Expense)),
    )
