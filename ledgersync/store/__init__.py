"""Optimistic collection store package."""

from ledgersync.store.cache import CacheEntry, TTLCache
from ledgersync.store.optimistic_store import (
    OptimisticStore,
    StoreError,
    expense_store,
    material_purchase_store,
    order_store,
)

__all__ = [
    "CacheEntry",
    "OptimisticStore",
    "StoreError",
    "TTLCache",
    "expense_store",
    "material_purchase_store",
    "order_store",
]
