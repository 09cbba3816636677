"""Pytest configuration and fixtures for async testing.

Every test gets its own SQLite database file, so tests that open several
sessions (concurrency, reconciliation) see real cross-connection behaviour.
"""
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ledger.auth.capabilities import Capability, StaticCapabilityChecker
from ledger.database import Base, engine_options
from ledger.main import app
from ledger.models.admin_user import AdminRole, AdminUser
from ledger.models.order import Order, OrderStatus
from tests.utils.factories import OrderFactory
from tests.utils.identities import ADMIN_ID, CASHIER_ID


@pytest_asyncio.fixture(scope="function")
async def ledger_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:  # noqa: ANN001
    """
    Create a file-backed SQLite engine with all tables.

    Yields:
        AsyncEngine: Engine bound to a fresh database
    """
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'ledger_test.db'}"
    engine = create_async_engine(database_url, **engine_options(database_url))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(ledger_engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        ledger_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def capabilities() -> StaticCapabilityChecker:
    """Identity port with one cashier and one administrator."""
    return StaticCapabilityChecker({CASHIER_ID: Capability.CASHIER, ADMIN_ID: Capability.ADMIN})


@pytest.fixture(scope="function")
def make_order(db_session: AsyncSession) -> Callable[..., Awaitable[Order]]:
    """
    Insert an order row directly, bypassing the approval chain.

    Returns:
        Coroutine function accepting field overrides
    """

    async def _make_order(**overrides) -> Order:  # noqa: ANN003
        order = Order(**OrderFactory.create(overrides))
        db_session.add(order)
        await db_session.flush()
        return order

    return _make_order


@pytest.fixture(scope="function")
def make_authorized_order(make_order: Callable[..., Awaitable[Order]]) -> Callable[..., Awaitable[Order]]:
    """Insert an order that is already authorized (its pool is not created)."""

    async def _make_authorized_order(**overrides) -> Order:  # noqa: ANN003
        overrides.setdefault("status", OrderStatus.AUTHORIZED)
        overrides.setdefault("authorized_by", ADMIN_ID)
        return await make_order(**overrides)

    return _make_authorized_order


@pytest_asyncio.fixture(scope="function")
async def async_client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing with database dependency override.

    Cashier and administrator roles are seeded in ``admin_users`` so the
    production capability checker is exercised.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from ledger.api.deps import get_db, get_session_factory

    async with session_factory() as session:
        session.add_all(
            [
                AdminUser(user_id=CASHIER_ID, name="Awa Cashier", role=AdminRole.CASHIER, is_active=True),
                AdminUser(user_id=ADMIN_ID, name="Koffi Admin", role=AdminRole.ADMIN, is_active=True),
            ]
        )
        await session.commit()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        """Override database dependency to use test database."""
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
