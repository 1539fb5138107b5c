"""Pytest configuration and fixtures for pickflow tests.

Every test gets its own SQLite database file, so tests never share state
and need no running PostgreSQL or Redis.
"""

import os

# Settings are read at import time; point them at test values first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"
os.environ["PUBLISH_EVENTS_TO_REDIS"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6399/15"

from datetime import date, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pickflow import models  # noqa: F401
from pickflow.database import Base, get_db, unit_of_work
from pickflow.events import bus
from pickflow.main import app
from pickflow.services import batches as batch_service
from pickflow.services import orders as order_service


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine with working SAVEPOINTs."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pickflow.db'}", echo=False)

    # pysqlite's implicit transaction handling breaks SAVEPOINT; take it over
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        # writers queue on the database lock the way they queue on row locks
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for service-level tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test client; each request is its own unit of work."""

    async def override_get_db():
        async with unit_of_work(session_factory) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Actor-Id": "tester"},
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def published_events():
    """Collect every domain event published during the test."""
    received = []

    async def _collect(evt):
        received.append(evt)

    bus.subscribe("*", _collect)
    yield received
    bus.unsubscribe("*", _collect)


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def make_batch(db_session: AsyncSession):
    """Factory: receive a batch of stock."""

    async def _make(
        quantity: int,
        *,
        product_key: str = "hebe-green",
        size_key: str | None = "2L",
        location_key: str = "tunnel-1",
        received_days_ago: int = 10,
        expires_in_days: int | None = None,
        batch_number: str | None = None,
    ):
        today = date.today()
        return await batch_service.receive_stock(
            db_session, "tester",
            product_key=product_key,
            size_key=size_key,
            location_key=location_key,
            quantity=quantity,
            batch_number=batch_number,
            received_at=today - timedelta(days=received_days_ago),
            expires_at=today + timedelta(days=expires_in_days) if expires_in_days else None,
        )

    return _make


@pytest.fixture
def make_order(db_session: AsyncSession):
    """Factory: create an order; ``lines`` is a list of (product, qty[, location])."""
    counter = {"n": 0}

    async def _make(lines, *, status: str = "confirmed", size_key: str | None = "2L"):
        counter["n"] += 1
        return await order_service.create_order(
            db_session,
            order_number=f"SO-{1000 + counter['n']}",
            customer_name=f"Garden Centre {counter['n']}",
            status=status,
            lines=[
                {
                    "product_key": line[0],
                    "quantity": line[1],
                    "location_key": line[2] if len(line) > 2 else "tunnel-1",
                    "size_key": size_key,
                    "description": None,
                }
                for line in lines
            ],
        )

    return _make


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
