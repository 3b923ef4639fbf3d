"""Pytest configuration and shared fixtures."""

import os
from types import SimpleNamespace
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Point the application engine at SQLite before any stockcount module is imported
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")

from stockcount.database.crud import (  # noqa: E402
    create_location,
    create_product,
    create_sublocation,
    set_inventory_quantity,
)
from stockcount.database.models import Base  # noqa: E402
from stockcount.lifecycle import schedule_count, start_count  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[Any, None]:
    """Create an isolated in-memory database for one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine: Any) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


class AsyncContextManagerMock:
    """Mock async context manager for testing."""

    def __init__(self, return_value: Any) -> None:
        self.return_value = return_value

    async def __aenter__(self) -> Any:
        return self.return_value

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        return False


@pytest.fixture
def mock_session_factory(db_session: AsyncSession) -> Any:
    """Create a mock session factory that returns the test session."""

    def factory() -> AsyncContextManagerMock:
        return AsyncContextManagerMock(db_session)

    return factory


@pytest_asyncio.fixture
async def warehouse(db_session: AsyncSession) -> SimpleNamespace:
    """A small warehouse: two locations, one bin, three products with stock.

    Main Warehouse holds widget x100 (bin A-01), gadget x50 and cable x20;
    Overflow holds widget x7.
    """
    main = await create_location(db_session, "Main Warehouse")
    overflow = await create_location(db_session, "Overflow")
    bin_a = await create_sublocation(db_session, main.id, "A-01", "Aisle A, shelf 1")

    widget = await create_product(
        db_session, "WID-001", "Widget", "2.50", barcode="0123456789012", abc_class="A"
    )
    gadget = await create_product(db_session, "GAD-002", "Gadget", "10.00", abc_class="B")
    cable = await create_product(db_session, "CAB-003", "Cable", "1.00", barcode="CBL-XYZ", abc_class="C")

    await set_inventory_quantity(db_session, widget.id, main.id, 100, sublocation_id=bin_a.id)
    await set_inventory_quantity(db_session, gadget.id, main.id, 50)
    await set_inventory_quantity(db_session, cable.id, main.id, 20)
    await set_inventory_quantity(db_session, widget.id, overflow.id, 7)

    return SimpleNamespace(
        main=main,
        overflow=overflow,
        bin_a=bin_a,
        widget=widget,
        gadget=gadget,
        cable=cable,
    )


@pytest_asyncio.fixture
async def in_progress_count(db_session: AsyncSession, warehouse: SimpleNamespace) -> Any:
    """A started cycle count over every product in Main Warehouse."""
    count = await schedule_count(
        db_session, "cycle", location_id=warehouse.main.id, created_by="planner"
    )
    return await start_count(db_session, count.id)
