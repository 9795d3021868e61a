"""
Pytest fixtures for the ERP core test suite.

Provides:
- A file-backed SQLite database per test (tables created fresh)
- Request contexts, a product catalog and module services
- Structured log capture

Environment Variables:
- DATABASE_URL: run against PostgreSQL instead (tests marked ``postgres``
  are skipped unless this is set).
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from erp_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from erp_kernel.domain.catalog import ProductInfo, StaticProductCatalog
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.context import RequestContext
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from erp_modules.inventory import InventoryConfig, InventoryService
from erp_modules.procurement import ProcurementConfig, ProcurementService
from erp_modules.sales import SalesConfig, SalesService
from erp_modules.tolerance import ToleranceModuleService
from erp_services.contracts import AdjustmentLineCommand, OrderLineCommand, ToleranceCommand


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture erp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, procurement):
            ...
            assert any(r["message"] == "transition_committed" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("erp_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line("markers", "slow_locks: mark test as potentially waiting for DB locks")


def pytest_collection_modifyitems(config, items):
    if os.environ.get("DATABASE_URL", "").startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="DATABASE_URL does not point at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'erp_test.db'}"
    eng = init_engine_from_url(url, pool_size=8, max_overflow=8, lock_timeout_seconds=10)
    if is_postgres():
        drop_tables()
    create_tables()
    yield eng
    if is_postgres():
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(engine):
    s = get_session()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def ctx():
    return RequestContext(tenant_id=uuid4(), company_id=uuid4(), actor_id=uuid4())


@pytest.fixture
def other_company_ctx(ctx):
    return RequestContext(tenant_id=ctx.tenant_id, company_id=uuid4(), actor_id=ctx.actor_id)


@pytest.fixture
def warehouse_id():
    return uuid4()


@pytest.fixture
def second_warehouse_id():
    return uuid4()


@pytest.fixture
def products():
    """Three products: plain, batch-tracked perishable, and uncategorised."""
    return {
        "cola": ProductInfo(product_id=uuid4(), category="Beverages"),
        "yogurt": ProductInfo(
            product_id=uuid4(), category="Dairy", is_batch_tracked=True, is_perishable=True
        ),
        "widget": ProductInfo(product_id=uuid4(), category=None),
    }


@pytest.fixture
def catalog(products):
    return StaticProductCatalog(products.values())


@pytest.fixture
def procurement(session, catalog, deterministic_clock):
    return ProcurementService(
        session, catalog, config=ProcurementConfig.with_defaults(), clock=deterministic_clock
    )


@pytest.fixture
def sales(session, catalog, deterministic_clock):
    return SalesService(session, catalog, config=SalesConfig.with_defaults(), clock=deterministic_clock)


@pytest.fixture
def inventory(session, catalog, deterministic_clock):
    return InventoryService(
        session, catalog, config=InventoryConfig.with_defaults(), clock=deterministic_clock
    )


@pytest.fixture
def tolerances(session, catalog):
    return ToleranceModuleService(session, catalog)


@pytest.fixture
def company_tolerance(tolerances, ctx):
    """COMPANY tolerance of 5% under / 10% over."""
    return tolerances.create_tolerance(
        ctx,
        ToleranceCommand(level="COMPANY", under_pct="5", over_pct="10"),
    )


# =============================================================================
# Flow helpers
# =============================================================================


@pytest.fixture
def confirmed_po(procurement, ctx, products, warehouse_id):
    """A CONFIRMED purchase order for 100 cola."""
    po = procurement.create_purchase_order(
        ctx,
        supplier_id=uuid4(),
        warehouse_id=warehouse_id,
        lines=[OrderLineCommand(product_id=products["cola"].product_id, quantity=Decimal("100"))],
    )
    procurement.confirm_purchase_order(ctx, po.document_id)
    return procurement.get_document(ctx, po.document_id)


@pytest.fixture
def stock_in(inventory, ctx):
    """Put stock on the shelf through an approved INCREASE adjustment."""

    def _stock_in(warehouse_id, product_id, qty):
        adj = inventory.create_inventory_adjustment(
            ctx,
            warehouse_id=warehouse_id,
            lines=[AdjustmentLineCommand(
                product_id=product_id, quantity=Decimal(qty),
                direction="INCREASE", reason="CORRECTION",
            )],
        )
        inventory.approve_inventory_adjustment(ctx, adj.document_id)

    return _stock_in
