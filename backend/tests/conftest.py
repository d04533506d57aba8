from __future__ import annotations

import os
import sys
from pathlib import Path
from collections.abc import AsyncIterator
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# stockline.core.db builds its engine at import time; give it something to parse.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BASIC_AUTH_USERNAME", "test-user")
os.environ.setdefault("BASIC_AUTH_PASSWORD", "test-pass")

import stockline.models  # noqa: E402,F401
from stockline.core.config import get_settings  # noqa: E402
from stockline.core.security import Actor  # noqa: E402
from stockline.models.base import Base  # noqa: E402
from stockline.models.product_variant import ProductVariant  # noqa: E402
from stockline.models.vendor import Vendor  # noqa: E402
from stockline.services.approvals import ApprovalWorkflowService  # noqa: E402
from stockline.services.inventory_transactions import InventoryTransactionService  # noqa: E402
from stockline.services.stock_ledger import SqlStockLedger  # noqa: E402
from stockline.services.vendor_balance import VendorBalanceService  # noqa: E402


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch) -> AsyncIterator[AsyncEngine]:
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("BASIC_AUTH_USERNAME", "test-user")
    monkeypatch.setenv("BASIC_AUTH_PASSWORD", "test-pass")
    monkeypatch.setenv("PRIVILEGED_ROLES", "admin,manager")
    monkeypatch.setenv("IDEMPOTENCY_BACKEND", "memory")
    get_settings.cache_clear()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", future=True, connect_args={"timeout": 15})

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        # Let SQLAlchemy own BEGIN so SAVEPOINT (begin_nested) works under aiosqlite.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:
        # Writers queue up front, the SQLite stand-in for the row locks used on PostgreSQL.
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def operator() -> Actor:
    return Actor(id="maker-1", role="operator")


@pytest.fixture
def manager() -> Actor:
    return Actor(id="checker-1", role="manager")


@pytest.fixture
def stock_ledger() -> SqlStockLedger:
    return SqlStockLedger()


@pytest.fixture
def vendor_balance() -> VendorBalanceService:
    return VendorBalanceService()


@pytest.fixture
def approvals(stock_ledger, vendor_balance) -> ApprovalWorkflowService:
    return ApprovalWorkflowService(stock_ledger=stock_ledger, vendor_balance=vendor_balance)


@pytest.fixture
def transactions(approvals, stock_ledger, vendor_balance) -> InventoryTransactionService:
    return InventoryTransactionService(approvals=approvals, stock_ledger=stock_ledger, vendor_balance=vendor_balance)


@pytest_asyncio.fixture
async def catalog(db_session) -> SimpleNamespace:
    """One vendor and two variants with 10 units each."""
    async with db_session.begin():
        vendor = Vendor(name="Himalayan Textiles", phone="9800000000")
        other_vendor = Vendor(name="Kathmandu Weaves")
        kurta = ProductVariant(sku="KURTA-M-RED", name="Kurta (M, red)", current_stock=10, cost_price_paisa=50_000)
        shawl = ProductVariant(sku="SHAWL-PASH", name="Pashmina shawl", current_stock=10, cost_price_paisa=200_000)
        db_session.add_all([vendor, other_vendor, kurta, shawl])
    return SimpleNamespace(vendor=vendor, other_vendor=other_vendor, kurta=kurta, shawl=shawl)


@pytest.fixture
def kurta_id(catalog):
    return catalog.kurta.id
