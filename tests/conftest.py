"""Shared fixtures: in-memory backend, settings and stores."""

import pytest
from decimal import Decimal

from ledgersync.audit import AuditLogger
from ledgersync.config import AppSettings
from ledgersync.models.ledger import Order
from ledgersync.resolver import EntityResolver, RecentReferenceStore
from ledgersync.services.backend import InMemoryBackend
from ledgersync.store import OptimisticStore


@pytest.fixture
def app_settings(tmp_path):
    return AppSettings(
        recent_options_path=tmp_path / "recent.json",
        refresh_retry_delay_seconds=0.0,
    )


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def recent_store(app_settings):
    return RecentReferenceStore(
        app_settings.recent_options_path,
        limit=app_settings.recent_options_limit,
        visible=app_settings.recent_options_visible,
    )


@pytest.fixture
def resolver(backend, audit_logger, recent_store):
    return EntityResolver(backend, audit_logger=audit_logger, recent_store=recent_store)


@pytest.fixture
def order_store(backend, audit_logger, app_settings):
    return OptimisticStore.from_settings(Order, backend, audit_logger, app_settings)


@pytest.fixture
def order_fields():
    """Factory for OptimisticStore.create fields."""
    def build(client_name="Acme", items=None, payments=None):
        return {
            "client_name": client_name,
            "items": items if items is not None else [
                {
                    "item_name": "Flyers",
                    "category_name": "Print",
                    "quantity": Decimal("10"),
                    "unit_price": Decimal("2000"),
                }
            ],
            "payments": payments or [],
        }
    return build
